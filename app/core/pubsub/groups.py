"""Consumer group management utilities."""

import logging

from app.core.pubsub.client import RedisStreamsClient
from app.core.pubsub.errors import PubSubError

logger = logging.getLogger(__name__)


async def ensure_group_exists(
    client: RedisStreamsClient,
    stream_name: str,
    group_name: str,
    start_id: str = "0",
    recreate_if_exists: bool = False,
) -> bool:
    """Ensure a consumer group exists for a stream.

    Args:
        client: RedisStreamsClient instance
        stream_name: Name of the stream
        group_name: Name of the consumer group
        start_id: Starting ID for a new group ('0' for all messages, '$' for new ones)
        recreate_if_exists: Drop an existing group first so ``start_id`` applies

    Returns:
        True if group was created, False if it already existed
    """
    try:
        if recreate_if_exists and await client.destroy_group(stream_name, group_name):
            logger.info(f"Dropped consumer group '{group_name}' of stream '{stream_name}'")
        return await client.create_group(stream_name, group_name, start_id)
    except PubSubError as e:
        logger.error(f"Failed to ensure group exists: {e}")
        raise
