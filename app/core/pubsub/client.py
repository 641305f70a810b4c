"""Redis Streams client wrapper."""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError, RedisError

from app.core.pubsub.errors import PubSubError

logger = logging.getLogger(__name__)


class RedisStreamsClient:
    """Lazily connected Redis client with the stream operations the engine needs."""

    def __init__(self, redis_url: str, password: str = ""):
        """Initialize Redis client.

        Args:
            redis_url: Redis connection URL (e.g., 'redis://localhost:6379/0')
            password: Redis password, used when the URL carries none
        """
        self.redis_url = redis_url
        self.password = password
        self._client: aioredis.Redis | None = None

    async def _get_client(self) -> aioredis.Redis:
        if self._client is not None:
            return self._client

        connection_kwargs = {}
        if self.password and "@" not in self.redis_url:
            connection_kwargs["password"] = self.password
        try:
            client = aioredis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                **connection_kwargs,
            )
            await client.ping()
        except (ConnectionError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise PubSubError(f"Failed to connect to Redis: {e}") from e

        logger.info("Connected to Redis successfully")
        self._client = client
        return client

    @asynccontextmanager
    async def connection(self):
        """Yield the Redis client; drop it on connection errors so the next use reconnects."""
        client = await self._get_client()
        try:
            yield client
        except (ConnectionError, RedisError) as e:
            logger.error(f"Redis connection error: {e}")
            await self.close()
            raise PubSubError(f"Redis connection error: {e}") from e

    async def create_group(self, stream_name: str, group_name: str, start_id: str = "0") -> bool:
        """Create a consumer group, creating the stream if needed.

        Returns:
            True if the group was created, False if it already exists
        """
        async with self.connection() as client:
            try:
                await client.xgroup_create(
                    name=stream_name, groupname=group_name, id=start_id, mkstream=True
                )
            except aioredis.ResponseError as e:
                if "BUSYGROUP" in str(e):
                    logger.debug(
                        f"Consumer group '{group_name}' already exists for stream '{stream_name}'"
                    )
                    return False
                raise PubSubError(f"Failed to create consumer group: {e}") from e
        logger.info(f"Created consumer group '{group_name}' for stream '{stream_name}'")
        return True

    async def destroy_group(self, stream_name: str, group_name: str) -> bool:
        """Delete a consumer group. Returns False if it did not exist."""
        async with self.connection() as client:
            try:
                return bool(await client.xgroup_destroy(stream_name, group_name))
            except aioredis.ResponseError as e:
                raise PubSubError(f"Failed to destroy consumer group: {e}") from e

    async def add(self, stream_name: str, fields: dict[str, str]) -> str:
        """Append a message to a stream and return its id."""
        async with self.connection() as client:
            return await client.xadd(stream_name, fields)

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Closed Redis connection")
