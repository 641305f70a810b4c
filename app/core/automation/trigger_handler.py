"""Trigger handler feeding stream mutations to the automation engine."""

import logging

from app.core.automation.dispatcher import MutationDispatcher
from app.core.config_file import get_settings
from app.core.pubsub.client import RedisStreamsClient
from app.core.pubsub.consumer import EventConsumer
from app.core.pubsub.models import RecordMutationEvent

logger = logging.getLogger(__name__)


class TriggerHandler:
    """Subscribes to the records stream and dispatches every mutation."""

    def __init__(
        self,
        dispatcher: MutationDispatcher,
        event_consumer: EventConsumer | None = None,
    ):
        """Initialize trigger handler.

        Args:
            dispatcher: Dispatcher running the chains
            event_consumer: EventConsumer instance (optional, will create if not provided)
        """
        self.settings = get_settings()
        self.dispatcher = dispatcher
        if event_consumer is None:
            client = RedisStreamsClient(
                redis_url=self.settings.REDIS_URL, password=self.settings.REDIS_PASSWORD
            )
            self.event_consumer = EventConsumer(client)
        else:
            self.event_consumer = event_consumer

    async def handle(self, event: RecordMutationEvent) -> None:
        """Run the chain of one mutation; the message is ACKed once it returns."""
        report = await self.dispatcher.dispatch(event)
        logger.debug(
            f"Event {event.event_id} on table {event.table_id}: {len(report.steps)} step(s)"
        )

    async def start(
        self,
        group_name: str | None = None,
        consumer_name: str = "automation_engine",
        start_id: str = "0",
    ) -> None:
        """Start the dispatcher and subscribe to the records stream.

        Args:
            group_name: Consumer group name (default: REDIS_CONSUMER_GROUP)
            consumer_name: Consumer instance name
            start_id: Starting ID of a new consumer group
        """
        if not self.dispatcher.running:
            self.dispatcher.start()
        await self.event_consumer.subscribe(
            group_name=group_name or self.settings.REDIS_CONSUMER_GROUP,
            consumer_name=consumer_name,
            callback=self.handle,
            stream_name=self.settings.REDIS_STREAM_RECORDS,
            start_id=start_id,
        )
        logger.info(f"Listening for record mutations on '{self.settings.REDIS_STREAM_RECORDS}'")

    async def stop(self) -> None:
        """Stop consuming, then drain the dispatcher."""
        await self.event_consumer.stop()
        await self.dispatcher.stop()
        logger.info("Stopped trigger handler")
