"""Application configuration with environment-based settings"""
import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Service configuration read once from the environment"""

    # Redis
    REDIS_URL: Optional[str] = os.getenv("REDIS_URL") or None
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))

    # Provider events stream (outbox relay from the Providers module)
    REDIS_STREAM_NAME: str = os.getenv("REDIS_STREAM_NAME", "provider-events")
    REDIS_CONSUMER_GROUP: str = os.getenv("REDIS_CONSUMER_GROUP", "search-providers")
    REDIS_CONSUMER_NAME: str = os.getenv("REDIS_CONSUMER_NAME", "search-providers-1")
    REDIS_DEAD_LETTER_STREAM: str = os.getenv("REDIS_DEAD_LETTER_STREAM", "provider-events:dead-letter")
    STREAM_MAX_DELIVERIES: int = int(os.getenv("STREAM_MAX_DELIVERIES", "5"))
    STREAM_CLAIM_IDLE_MS: int = int(os.getenv("STREAM_CLAIM_IDLE_MS", "60000"))
    STREAM_READ_COUNT: int = int(os.getenv("STREAM_READ_COUNT", "10"))
    STREAM_BLOCK_MS: int = int(os.getenv("STREAM_BLOCK_MS", "5000"))

    # Search index
    INDEX_BACKEND: str = os.getenv("INDEX_BACKEND", "memory").lower()
    INDEX_KEY_PREFIX: str = os.getenv("INDEX_KEY_PREFIX", "search:index")

    # Query cache
    CACHE_BACKEND: str = os.getenv("CACHE_BACKEND", "memory").lower()
    SEARCH_CACHE_TTL_SECONDS: int = int(os.getenv("SEARCH_CACHE_TTL_SECONDS", "300"))

    # Search limits
    MAX_RADIUS_KM: float = float(os.getenv("MAX_RADIUS_KM", "500"))
    MAX_PAGE_SIZE: int = int(os.getenv("MAX_PAGE_SIZE", "100"))
    DEFAULT_PAGE_SIZE: int = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))

    # Providers module API used to refresh snapshots
    PROVIDERS_API_URL: Optional[str] = os.getenv("PROVIDERS_API_URL") or None
    PROVIDERS_API_TIMEOUT: float = float(os.getenv("PROVIDERS_API_TIMEOUT", "5"))

    # Application
    START_CONSUMER: bool = _bool("START_CONSUMER")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values"""
        problems = []
        if cls.INDEX_BACKEND not in ("memory", "redis"):
            problems.append(f"INDEX_BACKEND must be 'memory' or 'redis', got '{cls.INDEX_BACKEND}'")
        if cls.CACHE_BACKEND not in ("memory", "redis"):
            problems.append(f"CACHE_BACKEND must be 'memory' or 'redis', got '{cls.CACHE_BACKEND}'")
        if cls.SEARCH_CACHE_TTL_SECONDS <= 0:
            problems.append("SEARCH_CACHE_TTL_SECONDS must be positive")
        if not 0 < cls.DEFAULT_PAGE_SIZE <= cls.MAX_PAGE_SIZE:
            problems.append("DEFAULT_PAGE_SIZE must be between 1 and MAX_PAGE_SIZE")
        if problems:
            raise ValueError("; ".join(problems))
