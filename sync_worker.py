"""Entry point for the provider index sync worker"""
import logging
import signal
import sys

from app.app import build_components
from app.config import Config
from sync_service.consumer import RedisStreamConsumer
from sync_service.sync_processor import SyncProcessor

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

consumer = None


def signal_handler(sig, frame):
    """Handle shutdown signals"""
    logger.info("Received shutdown signal")
    if consumer:
        consumer.stop()
    sys.exit(0)


if __name__ == "__main__":
    try:
        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        logger.info("=" * 60)
        logger.info("Starting Provider Index Sync Worker")
        logger.info("=" * 60)

        Config.validate()
        if Config.INDEX_BACKEND != "redis":
            logger.warning("INDEX_BACKEND is 'memory': the worker's index is not shared with the API process")

        components = build_components(Config)
        consumer = RedisStreamConsumer(SyncProcessor(components.projector))
        logger.info("Consumer initialized, starting to process messages...")
        consumer.run()

    except Exception as e:
        logger.exception(f"Failed to start sync worker: {e}")
        if consumer:
            consumer.stop()
        sys.exit(1)
