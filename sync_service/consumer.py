"""Redis stream consumer for provider lifecycle events"""
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import redis

from app.config import Config
from models.errors import ProjectionError, UnknownEventType, ValidationError
from services.redis_client import create_redis_client
from sync_service.sync_processor import SyncProcessor

logger = logging.getLogger(__name__)

StreamMessage = Tuple[str, Optional[Dict[str, Any]]]


def _is_permanent(error: Exception) -> bool:
    """Failures that redelivery cannot fix"""
    if isinstance(error, UnknownEventType):
        return True
    return isinstance(error, ProjectionError) and isinstance(error.__cause__, ValidationError)


class RedisStreamConsumer:
    """
    Consumer for the provider events stream.

    A message is acknowledged only after the index accepted it. Failed
    messages stay pending, are reclaimed after ``claim_idle_ms`` and are
    moved to the dead-letter stream once delivered ``max_deliveries`` times.
    """

    def __init__(
        self,
        sync_processor: SyncProcessor,
        redis_client: Optional[redis.Redis] = None,
        stream_name: Optional[str] = None,
        consumer_group: Optional[str] = None,
        consumer_name: Optional[str] = None,
        dead_letter_stream: Optional[str] = None,
        max_deliveries: Optional[int] = None,
        claim_idle_ms: Optional[int] = None,
    ):
        self.redis_client = redis_client if redis_client is not None else create_redis_client()
        self.stream_name = stream_name or Config.REDIS_STREAM_NAME
        self.consumer_group = consumer_group or Config.REDIS_CONSUMER_GROUP
        self.consumer_name = consumer_name or Config.REDIS_CONSUMER_NAME
        self.dead_letter_stream = dead_letter_stream or Config.REDIS_DEAD_LETTER_STREAM
        self.max_deliveries = max_deliveries or Config.STREAM_MAX_DELIVERIES
        self.claim_idle_ms = claim_idle_ms or Config.STREAM_CLAIM_IDLE_MS
        self.sync_processor = sync_processor
        self.running = False
        self._setup_consumer_group()

    def _setup_consumer_group(self):
        """Create the consumer group from the start of the stream if it does not exist"""
        try:
            self.redis_client.xgroup_create(
                name=self.stream_name,
                groupname=self.consumer_group,
                id="0",
                mkstream=True,
            )
            logger.info(
                f"✓ Created consumer group '{self.consumer_group}' for stream '{self.stream_name}'"
            )
        except redis.exceptions.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                logger.error(f"Failed to create consumer group: {e}")
                raise
            logger.info(
                f"Consumer group '{self.consumer_group}' already exists for stream '{self.stream_name}'"
            )

    def _delivery_count(self, message_id: str) -> int:
        pending = self.redis_client.xpending_range(
            name=self.stream_name,
            groupname=self.consumer_group,
            min=message_id,
            max=message_id,
            count=1,
        )
        if not pending:
            return 0
        return int(pending[0].get("times_delivered", 0))

    def _ack(self, message_id: str) -> None:
        self.redis_client.xack(self.stream_name, self.consumer_group, message_id)

    def _dead_letter(self, message_id: str, fields: Dict[str, Any], error: Exception) -> None:
        """Park a message on the dead-letter stream, then acknowledge it"""
        entry = {str(k): str(v) for k, v in fields.items()}
        entry["sourceStream"] = self.stream_name
        entry["sourceMessageId"] = message_id
        entry["error"] = str(error)
        self.redis_client.xadd(self.dead_letter_stream, entry)
        self._ack(message_id)
        logger.error(f"✗ Moved message {message_id} to dead-letter stream '{self.dead_letter_stream}': {error}")

    def _handle(self, message_id: str, fields: Optional[Dict[str, Any]]) -> int:
        """Process one message; returns 1 when it was applied"""
        if fields is None:
            # Trimmed from the stream while pending
            self._ack(message_id)
            return 0

        try:
            logger.info(f"Processing message {message_id} from stream '{self.stream_name}'")
            result = self.sync_processor.process_stream_message(fields)
        except redis.exceptions.ConnectionError:
            raise
        except Exception as e:
            logger.error(f"✗ Failed to process message {message_id}: {e}")
            if _is_permanent(e) or self._delivery_count(message_id) >= self.max_deliveries:
                self._dead_letter(message_id, fields, e)
            else:
                logger.warning(f"Message {message_id} left pending for redelivery")
            return 0

        self._ack(message_id)
        logger.info(f"✓ Acknowledged message {message_id}, result: {result.to_dict()}")
        return result.processed

    def process_messages(self, count: Optional[int] = None, block: Optional[int] = None) -> int:
        """
        Read and process new messages from the stream

        Reads with xreadgroup (">" means never delivered to this group) and
        acknowledges each message after it was applied to the index.
        """
        messages = self.redis_client.xreadgroup(
            groupname=self.consumer_group,
            consumername=self.consumer_name,
            streams={self.stream_name: ">"},
            count=count or Config.STREAM_READ_COUNT,
            block=block if block is not None else Config.STREAM_BLOCK_MS,
        )

        if not messages:
            logger.debug(f"No new messages in stream '{self.stream_name}'")
            return 0

        processed_count = 0
        for stream, message_list in messages:
            logger.info(f"Received {len(message_list)} message(s) from stream '{stream}'")
            for message_id, fields in message_list:
                processed_count += self._handle(message_id, fields)
        return processed_count

    def reclaim_stale_messages(self, count: int = 10) -> int:
        """Take over messages left pending longer than ``claim_idle_ms`` and retry them"""
        response = self.redis_client.xautoclaim(
            name=self.stream_name,
            groupname=self.consumer_group,
            consumername=self.consumer_name,
            min_idle_time=self.claim_idle_ms,
            start_id="0-0",
            count=count,
        )
        claimed: List[StreamMessage] = response[1] if len(response) > 1 else []
        if not claimed:
            return 0

        logger.info(f"Reclaimed {len(claimed)} stale message(s) from stream '{self.stream_name}'")
        processed_count = 0
        for message_id, fields in claimed:
            processed_count += self._handle(message_id, fields)
        return processed_count

    def run(self):
        """Run the consumer until stopped"""
        self.running = True
        logger.info(
            f"Starting Redis stream consumer: consumer='{self.consumer_name}' "
            f"group='{self.consumer_group}' stream='{self.stream_name}'"
        )

        while self.running:
            try:
                processed = self.reclaim_stale_messages()
                processed += self.process_messages()
                if processed > 0:
                    logger.debug(f"Processed {processed} messages in this cycle")
            except KeyboardInterrupt:
                logger.info("Received interrupt signal, shutting down gracefully...")
                self.stop()
                break
            except Exception as e:
                logger.exception(f"Error in consumer loop: {e}")
                time.sleep(5)

    def stop(self):
        """Stop the consumer"""
        logger.info("Stopping Redis stream consumer...")
        self.running = False
        if self.redis_client:
            self.redis_client.close()
