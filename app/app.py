"""Flask application factory"""
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from flask import Flask

from app.config import Config
from app.routes import create_routes
from services.geo_index import GeoSearchIndex
from services.geo_store import InMemoryGeoStore, RedisGeoStore
from services.providers_client import ProvidersClient
from services.query_cache import InMemoryCacheBackend, QueryCache, RedisCacheBackend
from services.redis_client import create_redis_client
from services.search_service import SearchService
from sync_service.consumer import RedisStreamConsumer
from sync_service.projector import IndexProjector
from sync_service.sync_processor import SyncProcessor
from utils.validators import SearchRequestValidator

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Services shared by the HTTP app and the sync worker"""
    index: GeoSearchIndex
    cache: QueryCache
    search_service: SearchService
    projector: IndexProjector


def build_components(config=Config) -> Components:
    """Wire index, cache and projector according to the configured backends"""
    redis_client = None
    if config.INDEX_BACKEND == "redis" or config.CACHE_BACKEND == "redis":
        redis_client = create_redis_client()

    if config.INDEX_BACKEND == "redis":
        store = RedisGeoStore(redis_client, key_prefix=config.INDEX_KEY_PREFIX)
    else:
        store = InMemoryGeoStore()
    index = GeoSearchIndex(store, max_radius_km=config.MAX_RADIUS_KM, max_take=config.MAX_PAGE_SIZE)

    if config.CACHE_BACKEND == "redis":
        backend = RedisCacheBackend(redis_client)
    else:
        backend = InMemoryCacheBackend()
    cache = QueryCache(backend, default_ttl=config.SEARCH_CACHE_TTL_SECONDS)

    validator = SearchRequestValidator(max_radius_km=config.MAX_RADIUS_KM, max_page_size=config.MAX_PAGE_SIZE)
    search_service = SearchService(index, cache, validator, cache_ttl=config.SEARCH_CACHE_TTL_SECONDS)

    providers_client = None
    if config.PROVIDERS_API_URL:
        providers_client = ProvidersClient(config.PROVIDERS_API_URL, timeout=config.PROVIDERS_API_TIMEOUT)
    projector = IndexProjector(index, cache, providers_client)

    logger.info(
        f"✓ Components built: index={config.INDEX_BACKEND}, cache={config.CACHE_BACKEND}, "
        f"providers_api={'on' if providers_client else 'off'}"
    )
    return Components(index=index, cache=cache, search_service=search_service, projector=projector)


def start_consumer_thread(projector: IndexProjector) -> threading.Thread:
    """Run the provider events consumer in a daemon thread next to the app"""

    def start_consumer():
        try:
            logger.info("Starting Redis Stream consumer thread...")
            consumer = RedisStreamConsumer(SyncProcessor(projector))
            logger.info("✓ Consumer initialized, starting to process messages...")
            consumer.run()
        except Exception as e:
            logger.error(f"❌ Consumer thread error: {e}", exc_info=True)
            logger.warning("⚠️  Consumer thread stopped, but Flask app continues")

    consumer_thread = threading.Thread(target=start_consumer, daemon=True, name="RedisStreamConsumer")
    consumer_thread.start()
    logger.info("✓ Redis Stream consumer thread started")
    return consumer_thread


def create_app(
    config=Config,
    components: Optional[Components] = None,
    start_consumer: Optional[bool] = None,
) -> Flask:
    """Create and configure Flask application"""
    app = Flask(__name__)

    logger.info("Initializing services...")
    try:
        config.validate()
        if components is None:
            components = build_components(config)
        logger.info("✓ Services initialized successfully")
    except Exception as e:
        logger.error(f"❌ Failed to initialize services: {e}", exc_info=True)
        raise

    app.extensions["provider_discovery"] = components

    create_routes(app, components.search_service, default_page_size=config.DEFAULT_PAGE_SIZE)
    logger.info("✓ Routes registered")

    if start_consumer is None:
        start_consumer = config.START_CONSUMER
    if start_consumer:
        start_consumer_thread(components.projector)

    logger.info("✓ Flask application created successfully")
    return app
