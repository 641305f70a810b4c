"""Mutation event publisher for Redis Streams."""

import logging

from app.core.config_file import get_settings
from app.core.pubsub.client import RedisStreamsClient
from app.core.pubsub.errors import PublishError
from app.core.pubsub.models import RecordMutationEvent

logger = logging.getLogger(__name__)


class EventPublisher:
    """Publisher of record mutation events."""

    def __init__(self, client: RedisStreamsClient, stream_name: str | None = None):
        """Initialize event publisher.

        Args:
            client: RedisStreamsClient instance
            stream_name: Target stream (default: REDIS_STREAM_RECORDS)
        """
        self.client = client
        self.stream_name = stream_name or get_settings().REDIS_STREAM_RECORDS

    async def publish(self, event: RecordMutationEvent) -> str:
        """Append a mutation event to the records stream.

        Returns:
            Message ID from Redis Streams

        Raises:
            PublishError: If publication fails
        """
        try:
            message_id = await self.client.add(self.stream_name, event.to_redis_dict())
        except Exception as e:
            logger.error(f"Failed to publish event {event.event_id}: {e}", exc_info=True)
            raise PublishError(f"Failed to publish event: {e}") from e

        logger.info(
            f"Published {event.kind.value} of record {event.record_id} "
            f"(ID: {event.event_id}) to stream '{self.stream_name}' (Redis ID: {message_id})"
        )
        return message_id
