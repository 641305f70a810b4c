"""Unit tests for TriggerHandler."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.automation.dispatcher import MutationDispatcher
from app.core.automation.trigger_handler import TriggerHandler
from app.core.config_file import get_settings
from app.core.pubsub.consumer import EventConsumer
from app.core.pubsub.models import MutationKind, RecordMutationEvent
from app.schemas.automation import ChainReport

settings = get_settings()


@pytest.fixture
def dispatcher():
    """Create a mock MutationDispatcher."""
    mock = MagicMock(spec=MutationDispatcher)
    mock.running = False
    mock.dispatch = AsyncMock(side_effect=lambda event: ChainReport(event_id=event.event_id))
    mock.stop = AsyncMock()
    return mock


@pytest.fixture
def event_consumer():
    """Create a mock EventConsumer."""
    consumer = MagicMock(spec=EventConsumer)
    consumer.subscribe = AsyncMock()
    consumer.stop = AsyncMock()
    return consumer


@pytest.fixture
def trigger_handler(dispatcher, event_consumer):
    return TriggerHandler(dispatcher, event_consumer=event_consumer)


@pytest.mark.asyncio
async def test_start_subscribes_to_records_stream(trigger_handler, dispatcher, event_consumer):
    await trigger_handler.start()

    dispatcher.start.assert_called_once()
    event_consumer.subscribe.assert_awaited_once()
    kwargs = event_consumer.subscribe.await_args.kwargs
    assert kwargs["stream_name"] == settings.REDIS_STREAM_RECORDS
    assert kwargs["group_name"] == settings.REDIS_CONSUMER_GROUP
    assert kwargs["consumer_name"] == "automation_engine"
    assert kwargs["callback"] == trigger_handler.handle


@pytest.mark.asyncio
async def test_start_with_running_dispatcher(trigger_handler, dispatcher):
    dispatcher.running = True

    await trigger_handler.start(group_name="replay", start_id="$")

    dispatcher.start.assert_not_called()


@pytest.mark.asyncio
async def test_handle_dispatches_event(trigger_handler, dispatcher):
    event = RecordMutationEvent(kind=MutationKind.CREATED, table_id="leads", record_id="r1")

    await trigger_handler.handle(event)

    dispatcher.dispatch.assert_awaited_once_with(event)


@pytest.mark.asyncio
async def test_handle_propagates_chain_failure(trigger_handler, dispatcher):
    """A failed chain is raised so the consumer can retry or park the message."""
    dispatcher.dispatch.side_effect = RuntimeError("database down")
    event = RecordMutationEvent(kind=MutationKind.CREATED, table_id="leads", record_id="r1")

    with pytest.raises(RuntimeError):
        await trigger_handler.handle(event)


@pytest.mark.asyncio
async def test_stop(trigger_handler, dispatcher, event_consumer):
    await trigger_handler.stop()

    event_consumer.stop.assert_awaited_once()
    dispatcher.stop.assert_awaited_once()
