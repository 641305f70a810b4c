"""Custom exceptions for the mutation stream."""


class PubSubError(Exception):
    """Base exception for Pub-Sub errors."""

    pass


class ConsumeError(PubSubError):
    """Raised when event consumption fails."""

    pass


class MalformedEventError(ConsumeError):
    """Raised when a stream message cannot be decoded into a mutation event."""

    pass


class PublishError(PubSubError):
    """Raised when a mutation event cannot be published."""

    pass
