"""Redis client factory"""
import logging
from typing import Optional

import redis

from app.config import Config

logger = logging.getLogger(__name__)


def _mask_url(url: str) -> str:
    """Mask the password of a Redis URL for logging"""
    if "@" in url:
        auth_part, host_part = url.split("@", 1)
        if ":" in auth_part:
            return f"{auth_part.rsplit(':', 1)[0]}:***@{host_part}"
    return url


def create_redis_client(url: Optional[str] = None, decode_responses: bool = True) -> redis.Redis:
    """Create a Redis client from a URL or the host/port/db settings"""
    redis_url = url or Config.REDIS_URL
    if redis_url:
        logger.info(f"Connecting to Redis at {_mask_url(redis_url)}")
        return redis.Redis.from_url(
            redis_url,
            decode_responses=decode_responses,
            socket_connect_timeout=10,
            retry_on_timeout=True,
            health_check_interval=30,
        )

    logger.info(f"Connecting to Redis at {Config.REDIS_HOST}:{Config.REDIS_PORT}/{Config.REDIS_DB}")
    return redis.Redis(
        host=Config.REDIS_HOST,
        port=Config.REDIS_PORT,
        db=Config.REDIS_DB,
        decode_responses=decode_responses,
        socket_connect_timeout=10,
        retry_on_timeout=True,
        health_check_interval=30,
    )
