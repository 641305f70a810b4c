"""Unit tests for ActionExecutor."""

from uuid import uuid4

import pytest

from app.core.automation.action_executor import ActionExecutor, ExecutionContext
from app.core.automation.errors import (
    ConfigurationError,
    FieldMappingError,
    InvalidReferenceError,
    TransientStoreError,
)
from app.core.automation.rule_parser import RuleParser
from app.core.pubsub.models import MutationKind, derived_event_id
from app.models.workspace import DataRecord
from app.repositories.automation_repository import AutomationRepository
from tests.helpers import (
    FlakyRecordStore,
    build_leads_customers,
    copy_to_customers,
    create_record,
    create_table,
    created_event,
    user_update,
)

@pytest.fixture
def action_executor(db_session, record_store, fast_retry):
    """Create ActionExecutor on the test database."""
    return ActionExecutor(db_session, record_store, retry_handler=fast_retry)


@pytest.fixture
def lead(db_session):
    build_leads_customers(db_session)
    return create_record(
        db_session,
        "leads",
        {"lead_name": "Ada", "lead_email": "ada@example.com", "status": "opt_new"},
    )


async def make_context(store, record, automation_id=None, event=None) -> ExecutionContext:
    return ExecutionContext(
        automation_id=automation_id or uuid4(),
        event=event or created_event(record),
        source_table=await store.get_table(record.table_id),
        source_record=await store.get_record(record.table_id, record.id),
    )


def customers(db_session) -> list[DataRecord]:
    return db_session.query(DataRecord).filter(DataRecord.table_id == "customers").all()


@pytest.mark.asyncio
async def test_create_record(action_executor, record_store, db_session, lead):
    """A new record gets the mapped values, type defaults elsewhere and a tagged event."""
    action = RuleParser.parse_action(
        {
            "type": "create_record",
            "target_table_id": "customers",
            "field_mappings": [{"source_field_id": "lead_name", "target_field_id": "name"}],
        }
    )
    context = await make_context(record_store, lead)

    result = await action_executor.execute(action, context)

    assert result.outcome == "created"
    [customer] = customers(db_session)
    assert customer.values == {"name": "Ada", "email": ""}
    [event] = result.events
    assert event.kind == MutationKind.CREATED
    assert event.table_id == "customers"
    assert event.record_id == customer.id
    assert event.produced_by(context.automation_id)
    assert event.event_id == derived_event_id(
        context.event.event_id, context.automation_id, customer.id, MutationKind.CREATED
    )


@pytest.mark.asyncio
async def test_create_record_unknown_target_table(action_executor, record_store, lead):
    action = RuleParser.parse_action({"type": "create_record", "target_table_id": "missing"})

    with pytest.raises(InvalidReferenceError):
        await action_executor.execute(action, await make_context(record_store, lead))


@pytest.mark.asyncio
async def test_update_record_writes_only_changes(action_executor, record_store, db_session):
    create_table(db_session, "deals", [("amount", "number"), ("amount_label", "text")])
    deal = create_record(db_session, "deals", {"amount": 42, "amount_label": ""})
    action = RuleParser.parse_action(
        {
            "type": "update_record",
            "target_table_id": "deals",
            "field_mappings": [
                {"source_field_id": "amount", "target_field_id": "amount_label"}
            ],
        }
    )

    first = await action_executor.execute(action, await make_context(record_store, deal))
    second = await action_executor.execute(action, await make_context(record_store, deal))

    assert first.outcome == "updated"
    assert first.events[0].new_values == {"amount_label": "42"}
    assert first.events[0].old_values == {"amount_label": ""}
    assert second.outcome == "unchanged"
    assert second.events == []
    db_session.refresh(deal)
    assert deal.values == {"amount": 42, "amount_label": "42"}


@pytest.mark.asyncio
async def test_update_record_must_target_own_table(action_executor, record_store, lead):
    action = RuleParser.parse_action({"type": "update_record", "target_table_id": "customers"})

    with pytest.raises(ConfigurationError) as exc_info:
        await action_executor.execute(action, await make_context(record_store, lead))

    assert exc_info.value.code == "INVALID_TARGET_TABLE"


@pytest.mark.asyncio
async def test_copy_fields_rejects_self_mapping(action_executor, record_store, lead):
    action = RuleParser.parse_action(
        {
            "type": "copy_fields",
            "target_table_id": "leads",
            "field_mappings": [{"source_field_id": "lead_name", "target_field_id": "lead_name"}],
        }
    )

    with pytest.raises(ConfigurationError) as exc_info:
        await action_executor.execute(action, await make_context(record_store, lead))

    assert exc_info.value.code == "MAPPING_ERROR"


@pytest.mark.asyncio
async def test_copy_to_table_creates_and_links(action_executor, record_store, db_session, lead):
    action = RuleParser.parse_action(copy_to_customers())
    context = await make_context(record_store, lead)

    result = await action_executor.execute(action, context)

    assert result.outcome == "created"
    [customer] = customers(db_session)
    assert customer.values == {"name": "Ada", "email": "ada@example.com"}
    link = AutomationRepository(db_session).get_sync_link(context.automation_id, lead.id)
    assert link.target_record_id == customer.id
    assert link.source_table_id == "leads"
    assert link.target_table_id == "customers"


@pytest.mark.asyncio
async def test_copy_to_table_skip_existing_match(action_executor, record_store, db_session, lead):
    """With 'skip', an exact match in the target table means no write and no link."""
    existing = create_record(db_session, "customers", {"name": "Ada", "email": "ada@example.com"})
    action = RuleParser.parse_action(copy_to_customers("skip"))
    context = await make_context(record_store, lead)

    result = await action_executor.execute(action, context)

    assert result.outcome == "skipped"
    assert result.target_record_id == existing.id
    assert result.events == []
    assert len(customers(db_session)) == 1
    assert AutomationRepository(db_session).get_sync_link(context.automation_id, lead.id) is None


@pytest.mark.asyncio
async def test_copy_to_table_update_existing_match(
    action_executor, record_store, db_session, lead
):
    """With 'update', the matching record is adopted and linked."""
    existing = create_record(db_session, "customers", {"name": "Ada", "email": "ada@example.com"})
    action = RuleParser.parse_action(copy_to_customers("update"))
    context = await make_context(record_store, lead)

    result = await action_executor.execute(action, context)

    assert result.outcome == "unchanged"
    assert result.target_record_id == existing.id
    assert len(customers(db_session)) == 1
    link = AutomationRepository(db_session).get_sync_link(context.automation_id, lead.id)
    assert link.target_record_id == existing.id


@pytest.mark.asyncio
async def test_copy_to_table_create_new_ignores_match(
    action_executor, record_store, db_session, lead
):
    create_record(db_session, "customers", {"name": "Ada", "email": "ada@example.com"})
    action = RuleParser.parse_action(copy_to_customers("create_new"))

    result = await action_executor.execute(action, await make_context(record_store, lead))

    assert result.outcome == "created"
    assert len(customers(db_session)) == 2


@pytest.mark.asyncio
async def test_linked_target_wins_over_duplicate_detection(
    action_executor, record_store, db_session, lead
):
    """A second firing updates the linked record instead of creating another one."""
    action = RuleParser.parse_action(copy_to_customers("create_new"))
    automation_id = uuid4()
    await action_executor.execute(action, await make_context(record_store, lead, automation_id))

    event = await user_update(record_store, "leads", lead.id, {"lead_name": "Ada Lovelace"})
    result = await action_executor.execute(
        action, await make_context(record_store, lead, automation_id, event)
    )

    assert result.outcome == "updated"
    [customer] = customers(db_session)
    db_session.refresh(customer)
    assert customer.values["name"] == "Ada Lovelace"
    assert result.events[0].new_values == {"name": "Ada Lovelace"}


@pytest.mark.asyncio
async def test_stale_link_is_replaced(action_executor, record_store, db_session, lead):
    """A link whose target record was deleted is dropped and a new target is created."""
    action = RuleParser.parse_action(copy_to_customers("create_new"))
    automation_id = uuid4()
    first = await action_executor.execute(
        action, await make_context(record_store, lead, automation_id)
    )
    await record_store.delete_record("customers", first.target_record_id)

    second = await action_executor.execute(
        action, await make_context(record_store, lead, automation_id)
    )

    assert second.outcome == "created"
    assert second.target_record_id != first.target_record_id
    link = AutomationRepository(db_session).get_sync_link(automation_id, lead.id)
    assert link.target_record_id == second.target_record_id


@pytest.mark.asyncio
async def test_mapping_failure_writes_nothing(action_executor, record_store, db_session):
    """A failing mapping aborts the action before any write."""
    create_table(db_session, "imports", [("raw_title", "text"), ("raw_amount", "text")])
    create_table(db_session, "orders", [("title", "text"), ("amount", "number")])
    source = create_record(db_session, "imports", {"raw_title": "Desk", "raw_amount": "n/a"})
    action = RuleParser.parse_action(
        {
            "type": "copy_to_table",
            "target_table_id": "orders",
            "duplicate_handling": "create_new",
            "field_mappings": [
                {"source_field_id": "raw_title", "target_field_id": "title"},
                {"source_field_id": "raw_amount", "target_field_id": "amount"},
            ],
        }
    )

    with pytest.raises(FieldMappingError) as exc_info:
        await action_executor.execute(action, await make_context(record_store, source))

    assert exc_info.value.mapping_index == 1
    assert db_session.query(DataRecord).filter(DataRecord.table_id == "orders").count() == 0


@pytest.mark.asyncio
async def test_move_to_table(action_executor, record_store, db_session, lead):
    """Moving copies the record, deletes the source and reports both writes."""
    action = RuleParser.parse_action(
        {**copy_to_customers("create_new"), "type": "move_to_table"}
    )
    context = await make_context(record_store, lead)

    result = await action_executor.execute(action, context)

    assert result.outcome == "moved"
    assert await record_store.get_record("leads", lead.id) is None
    assert len(customers(db_session)) == 1
    assert [e.kind for e in result.events] == [MutationKind.CREATED, MutationKind.DELETED]
    deleted = result.events[1]
    assert deleted.record_id == lead.id
    assert deleted.old_values["lead_name"] == "Ada"
    assert AutomationRepository(db_session).get_sync_link(context.automation_id, lead.id) is None


@pytest.mark.asyncio
async def test_move_to_table_preserve_original(action_executor, record_store, db_session, lead):
    action = RuleParser.parse_action(
        {**copy_to_customers("create_new"), "type": "move_to_table", "preserve_original": True}
    )

    result = await action_executor.execute(action, await make_context(record_store, lead))

    assert result.outcome == "created"
    assert await record_store.get_record("leads", lead.id) is not None


@pytest.mark.asyncio
async def test_move_to_table_skipped_keeps_source(
    action_executor, record_store, db_session, lead
):
    create_record(db_session, "customers", {"name": "Ada", "email": "ada@example.com"})
    action = RuleParser.parse_action({**copy_to_customers("skip"), "type": "move_to_table"})

    result = await action_executor.execute(action, await make_context(record_store, lead))

    assert result.outcome == "skipped"
    assert await record_store.get_record("leads", lead.id) is not None


@pytest.fixture
def directory(db_session, lead):
    create_table(db_session, "directory", [("dir_email", "email"), ("listed", "checkbox")])
    return {
        "type": "show_in_table",
        "target_table_id": "directory",
        "field_mappings": [{"source_field_id": "lead_email", "target_field_id": "dir_email"}],
        "visibility_field_id": "listed",
        "visibility_value": True,
    }


@pytest.mark.asyncio
async def test_show_in_table_sets_visibility(
    action_executor, record_store, db_session, lead, directory
):
    entry = create_record(
        db_session, "directory", {"dir_email": "ada@example.com", "listed": False}
    )
    action = RuleParser.parse_action(directory)
    context = await make_context(record_store, lead)

    result = await action_executor.execute(action, context)

    assert result.outcome == "updated"
    assert result.events[0].new_values == {"listed": True}
    db_session.refresh(entry)
    assert entry.values == {"dir_email": "ada@example.com", "listed": True}
    link = AutomationRepository(db_session).get_sync_link(context.automation_id, lead.id)
    assert link.target_record_id == entry.id


@pytest.mark.asyncio
async def test_show_in_table_never_creates(
    action_executor, record_store, db_session, lead, directory
):
    action = RuleParser.parse_action(directory)

    result = await action_executor.execute(action, await make_context(record_store, lead))

    assert result.outcome == "not_found"
    assert db_session.query(DataRecord).filter(DataRecord.table_id == "directory").count() == 0


@pytest.mark.asyncio
async def test_show_in_table_empty_value_resets_to_default(
    action_executor, record_store, db_session, lead, directory
):
    entry = create_record(
        db_session, "directory", {"dir_email": "ada@example.com", "listed": True}
    )
    action = RuleParser.parse_action({**directory, "visibility_value": ""})

    result = await action_executor.execute(action, await make_context(record_store, lead))

    assert result.outcome == "updated"
    db_session.refresh(entry)
    assert entry.values["listed"] is False


@pytest.mark.asyncio
async def test_show_in_table_unknown_visibility_field(
    action_executor, record_store, lead, directory
):
    action = RuleParser.parse_action({**directory, "visibility_field_id": "hidden"})

    with pytest.raises(InvalidReferenceError):
        await action_executor.execute(action, await make_context(record_store, lead))


@pytest.mark.asyncio
async def test_reverse_sync_requires_link(action_executor, record_store, db_session, lead):
    action = RuleParser.parse_action(
        {**copy_to_customers("create_new"), "type": "sync_to_table", "sync_mode": "two_way"}
    )
    customer = create_record(db_session, "customers", {"name": "Ada", "email": "a@b.c"})
    event = await user_update(record_store, "customers", customer.id, {"name": "Grace"})

    result = await action_executor.execute_reverse_sync(action, uuid4(), event)

    assert result.outcome == "not_linked"


@pytest.mark.asyncio
async def test_reverse_sync_propagates_changed_fields(
    action_executor, record_store, db_session, lead
):
    action = RuleParser.parse_action(
        {**copy_to_customers("create_new"), "type": "sync_to_table", "sync_mode": "two_way"}
    )
    automation_id = uuid4()
    forward = await action_executor.execute(
        action, await make_context(record_store, lead, automation_id)
    )
    event = await user_update(
        record_store, "customers", forward.target_record_id, {"name": "Ada King"}
    )

    result = await action_executor.execute_reverse_sync(action, automation_id, event)

    assert result.outcome == "updated"
    assert result.target_record_id == lead.id
    [back] = result.events
    assert back.table_id == "leads"
    assert back.new_values == {"lead_name": "Ada King"}
    assert back.produced_by(automation_id)
    source = await record_store.get_record("leads", lead.id)
    assert source.values["lead_name"] == "Ada King"
    assert source.values["lead_email"] == "ada@example.com"


@pytest.mark.asyncio
async def test_reverse_sync_writes_every_linked_source(
    action_executor, record_store, db_session, lead
):
    """Sources sharing a target all get the edit; a vanished one loses its link."""
    action = RuleParser.parse_action(
        {**copy_to_customers("create_new"), "type": "sync_to_table", "sync_mode": "two_way"}
    )
    automation_id = uuid4()
    forward = await action_executor.execute(
        action, await make_context(record_store, lead, automation_id)
    )
    repository = AutomationRepository(db_session)
    twin = create_record(
        db_session,
        "leads",
        {"lead_name": "Ada", "lead_email": "ada@example.com", "status": "opt_new"},
    )
    gone = create_record(
        db_session,
        "leads",
        {"lead_name": "Ada", "lead_email": "ada@example.com", "status": "opt_new"},
    )
    for record in (twin, gone):
        repository.create_sync_link(
            {
                "automation_id": automation_id,
                "source_record_id": record.id,
                "target_record_id": forward.target_record_id,
                "source_table_id": "leads",
                "target_table_id": "customers",
            }
        )
    await record_store.delete_record("leads", gone.id)
    event = await user_update(
        record_store, "customers", forward.target_record_id, {"name": "Ada King"}
    )

    result = await action_executor.execute_reverse_sync(action, automation_id, event)

    assert result.outcome == "updated"
    assert {e.record_id for e in result.events} == {lead.id, twin.id}
    for record in (lead, twin):
        source = await record_store.get_record("leads", record.id)
        assert source.values["lead_name"] == "Ada King"
    assert repository.get_sync_link(automation_id, gone.id) is None
    assert len(repository.list_sync_links_by_target(automation_id, forward.target_record_id)) == 2


@pytest.mark.asyncio
async def test_transient_store_error_is_retried(db_session, fast_retry, lead):
    store = FlakyRecordStore(db_session, failures=2)
    executor = ActionExecutor(db_session, store, retry_handler=fast_retry)
    action = RuleParser.parse_action(copy_to_customers("create_new"))

    result = await executor.execute(action, await make_context(store, lead))

    assert result.outcome == "created"
    assert store.create_calls == 3
    assert len(customers(db_session)) == 1


@pytest.mark.asyncio
async def test_transient_store_error_exhausts_retries(db_session, fast_retry, lead):
    store = FlakyRecordStore(db_session, failures=5)
    executor = ActionExecutor(db_session, store, retry_handler=fast_retry)
    action = RuleParser.parse_action(copy_to_customers("create_new"))

    with pytest.raises(TransientStoreError):
        await executor.execute(action, await make_context(store, lead))

    assert store.create_calls == fast_retry.max_attempts
    assert customers(db_session) == []
