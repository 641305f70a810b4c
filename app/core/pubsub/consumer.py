"""Record mutation consumer for Redis Streams."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as aioredis
from pydantic import ValidationError

from app.core.config_file import get_settings
from app.core.pubsub.client import RedisStreamsClient
from app.core.pubsub.errors import ConsumeError, MalformedEventError
from app.core.pubsub.groups import ensure_group_exists
from app.core.pubsub.models import RecordMutationEvent
from app.core.pubsub.retry import RetryHandler

logger = logging.getLogger(__name__)

MutationCallback = Callable[[RecordMutationEvent], Awaitable[Any]]


def decode_message(data: Any) -> RecordMutationEvent:
    """Decode a stream message into a mutation event.

    Raises:
        MalformedEventError: If the message is not a valid mutation event
    """
    if isinstance(data, (list, tuple)):
        data = dict(data)
    if not isinstance(data, dict):
        raise MalformedEventError(f"Unexpected message payload: {type(data).__name__}")
    try:
        return RecordMutationEvent.from_redis_dict(data)
    except (KeyError, ValueError, ValidationError, json.JSONDecodeError) as e:
        raise MalformedEventError(f"Malformed mutation event: {e}") from e


class EventConsumer:
    """Consumer of record mutation events from Redis Streams."""

    def __init__(self, client: RedisStreamsClient, retry_handler: RetryHandler | None = None):
        """Initialize event consumer.

        Args:
            client: RedisStreamsClient instance
            retry_handler: Retry policy for the callback (default: 3 attempts)
        """
        self.client = client
        self.settings = get_settings()
        self.retry_handler = retry_handler or RetryHandler(max_attempts=3)
        self._running = False
        self._tasks: list[asyncio.Task] = []

    async def subscribe(
        self,
        group_name: str,
        consumer_name: str,
        callback: MutationCallback,
        stream_name: str | None = None,
        start_id: str = "0",
        recreate_group: bool = False,
    ):
        """Start consuming mutation events.

        Args:
            group_name: Name of the consumer group
            consumer_name: Name of this consumer instance
            callback: Async function called for each event
            stream_name: Stream name (default: REDIS_STREAM_RECORDS)
            start_id: Starting ID of a new consumer group ("$" for new messages only)
            recreate_group: Drop and recreate the group so ``start_id`` applies
        """
        if stream_name is None:
            stream_name = self.settings.REDIS_STREAM_RECORDS

        try:
            await ensure_group_exists(
                self.client,
                stream_name,
                group_name,
                start_id=start_id,
                recreate_if_exists=recreate_group,
            )
        except Exception as e:
            logger.error(f"Failed to ensure group exists: {e}")
            raise ConsumeError(f"Failed to setup consumer group: {e}") from e

        self._running = True
        task = asyncio.create_task(
            self._consume_loop(stream_name, group_name, consumer_name, callback)
        )
        self._tasks.append(task)
        logger.info(
            f"Started consumer '{consumer_name}' in group '{group_name}' "
            f"for stream '{stream_name}'"
        )

    async def _consume_loop(
        self,
        stream_name: str,
        group_name: str,
        consumer_name: str,
        callback: MutationCallback,
    ):
        while self._running:
            try:
                async with self.client.connection() as redis_client:
                    messages = await redis_client.xreadgroup(
                        groupname=group_name,
                        consumername=consumer_name,
                        streams={stream_name: ">"},
                        count=10,
                        block=1000,
                    )
                    for _stream, message_list in messages or []:
                        for message_id, data in message_list:
                            await self.handle_message(
                                redis_client, stream_name, group_name, message_id, data, callback
                            )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in consumption loop: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def handle_message(
        self,
        redis_client: aioredis.Redis,
        stream_name: str,
        group_name: str,
        message_id: str,
        data: Any,
        callback: MutationCallback,
    ) -> bool:
        """Process one message and ACK it.

        Messages that cannot be decoded or keep failing are copied to the
        failed stream before being ACKed.

        Returns:
            True if the callback succeeded
        """
        try:
            event = decode_message(data)
            await self.retry_handler.retry_with_backoff(
                lambda: callback(event),
                operation_name=f"Processing event {event.event_id}",
            )
        except Exception as e:
            logger.error(f"Failed to process message {message_id}: {e}", exc_info=True)
            try:
                await self._move_to_failed_stream(
                    redis_client, stream_name, message_id, data, str(e)
                )
                await redis_client.xack(stream_name, group_name, message_id)
            except Exception as move_error:
                logger.error(
                    f"Failed to move message to failed stream: {move_error}",
                    exc_info=True,
                )
            return False

        await redis_client.xack(stream_name, group_name, message_id)
        logger.debug(f"Processed and ACKed event {event.event_id} (Redis ID: {message_id})")
        return True

    async def _move_to_failed_stream(
        self,
        redis_client: aioredis.Redis,
        stream_name: str,
        message_id: str,
        original_data: Any,
        error_info: str,
    ):
        failed_data = dict(original_data) if original_data else {}
        failed_data["original_stream"] = stream_name
        failed_data["original_message_id"] = message_id
        failed_data["error_info"] = error_info
        failed_data["failed_at"] = datetime.now(UTC).isoformat()

        await redis_client.xadd(self.settings.REDIS_STREAM_FAILED, failed_data)
        logger.warning(
            f"Moved failed message {message_id} from '{stream_name}' "
            f"to '{self.settings.REDIS_STREAM_FAILED}'"
        )

    async def claim_pending_messages(
        self,
        stream_name: str,
        group_name: str,
        consumer_name: str,
        min_idle_time: int = 60000,
        count: int = 10,
    ) -> list[tuple[str, dict[str, str]]]:
        """Claim messages left pending by crashed consumers.

        Args:
            min_idle_time: Minimum idle time in milliseconds
            count: Maximum number of messages to claim

        Returns:
            List of (message_id, data) tuples
        """
        try:
            async with self.client.connection() as redis_client:
                pending = await redis_client.xpending_range(
                    name=stream_name, groupname=group_name, min="-", max="+", count=count
                )
                if not pending:
                    return []

                claimed = await redis_client.xclaim(
                    name=stream_name,
                    groupname=group_name,
                    consumername=consumer_name,
                    min_idle_time=min_idle_time,
                    message_ids=[msg["message_id"] for msg in pending],
                )
        except Exception as e:
            logger.error(f"Failed to claim pending messages: {e}")
            raise ConsumeError(f"Failed to claim pending messages: {e}") from e

        result = [(msg_id, dict(data)) for msg_id, data in claimed]
        if result:
            logger.info(f"Claimed {len(result)} pending messages for consumer '{consumer_name}'")
        return result

    async def stop(self):
        """Stop the consumer."""
        self._running = False

        for task in self._tasks:
            if not task.done():
                task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()

        logger.info("Stopped event consumer")
