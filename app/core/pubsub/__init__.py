"""Record mutation stream based on Redis Streams."""

from app.core.pubsub.client import RedisStreamsClient
from app.core.pubsub.consumer import EventConsumer
from app.core.pubsub.errors import (
    ConsumeError,
    MalformedEventError,
    PublishError,
    PubSubError,
)
from app.core.pubsub.models import MutationKind, ProvenanceTag, RecordMutationEvent
from app.core.pubsub.publisher import EventPublisher
from app.core.pubsub.retry import RetryHandler

__all__ = [
    "RedisStreamsClient",
    "EventPublisher",
    "EventConsumer",
    "RecordMutationEvent",
    "MutationKind",
    "ProvenanceTag",
    "RetryHandler",
    "PubSubError",
    "PublishError",
    "ConsumeError",
    "MalformedEventError",
    "get_event_publisher",
]


def get_event_publisher() -> EventPublisher:
    """Dependency function to get EventPublisher instance."""
    from app.core.config_file import get_settings

    settings = get_settings()
    client = RedisStreamsClient(redis_url=settings.REDIS_URL, password=settings.REDIS_PASSWORD)
    return EventPublisher(client=client)
