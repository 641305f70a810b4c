"""Helper functions for tests."""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.core.automation.errors import TransientStoreError
from app.core.automation.record_store import RecordStore, SqlRecordStore
from app.core.pubsub.models import MutationKind, RecordMutationEvent
from app.models.automation import Automation
from app.models.workspace import DataRecord, DataTable
from app.repositories.automation_repository import AutomationRepository
from app.repositories.record_repository import RecordRepository
from app.schemas.workspace import FieldDefinition, FieldType, SelectOption

STATUS_OPTIONS = {
    "opt_new": {"label": "New", "color": "gray"},
    "opt_qualified": {"label": "Qualified", "color": "green"},
}

_automation_clock = datetime(2026, 1, 1, tzinfo=UTC)


def make_field(
    field_id: str,
    field_type: FieldType,
    table_id: str = "t1",
    options: dict[str, dict[str, str]] | None = None,
) -> FieldDefinition:
    """Build a FieldDefinition without touching the database."""
    return FieldDefinition(
        id=field_id,
        table_id=table_id,
        name=field_id,
        type=field_type,
        options={k: SelectOption(**v) for k, v in options.items()} if options else None,
    )


def create_table(
    db_session: Session, table_id: str, fields: list[tuple], base_id: str = "base-1"
) -> DataTable:
    """
    Create a table with its fields.

    Args:
        fields: ``(field_id, type)`` or ``(field_id, type, options)`` tuples.
    """
    repository = RecordRepository(db_session)
    table = repository.create_table({"id": table_id, "base_id": base_id, "name": table_id})
    for index, definition in enumerate(fields):
        field_id, field_type = definition[0], definition[1]
        repository.create_field(
            {
                "id": field_id,
                "table_id": table_id,
                "name": field_id,
                "type": FieldType(field_type).value,
                "order_index": index,
                "options": definition[2] if len(definition) > 2 else None,
            }
        )
    return table


def create_record(db_session: Session, table_id: str, values: dict[str, Any]) -> DataRecord:
    return RecordRepository(db_session).create_record(table_id, values)


def create_automation(
    db_session: Session,
    table_id: str,
    trigger: dict[str, Any],
    action: dict[str, Any],
    name: str = "Automation",
    enabled: bool = True,
) -> Automation:
    """Insert an automation without schema validation, in strictly increasing creation order."""
    global _automation_clock
    _automation_clock += timedelta(seconds=1)
    return AutomationRepository(db_session).create_automation(
        {
            "name": name,
            "table_id": table_id,
            "enabled": enabled,
            "trigger": {"table_id": table_id, **trigger},
            "action": action,
            "target_table_id": action["target_table_id"],
            "created_at": _automation_clock,
            "updated_at": _automation_clock,
        }
    )


def created_event(record: DataRecord) -> RecordMutationEvent:
    return RecordMutationEvent(
        kind=MutationKind.CREATED,
        table_id=record.table_id,
        record_id=record.id,
        new_values=dict(record.values),
    )


async def user_update(
    store: RecordStore, table_id: str, record_id: str, values: dict[str, Any]
) -> RecordMutationEvent:
    """Apply a user edit through the store and return its mutation event."""
    before = await store.get_record(table_id, record_id)
    await store.update_record(table_id, record_id, values)
    return RecordMutationEvent(
        kind=MutationKind.UPDATED,
        table_id=table_id,
        record_id=record_id,
        changed_field_ids=list(values),
        old_values={k: before.values.get(k) for k in values},
        new_values=dict(values),
    )


def build_leads_customers(db_session: Session) -> None:
    """Leads (lead_name, lead_email, status) and Customers (name, email)."""
    create_table(
        db_session,
        "leads",
        [
            ("lead_name", "text"),
            ("lead_email", "email"),
            ("status", "single_select", STATUS_OPTIONS),
        ],
    )
    create_table(db_session, "customers", [("name", "text"), ("email", "email")])


LEADS_TO_CUSTOMERS_TRIGGER = {
    "type": "field_change",
    "field_id": "status",
    "condition": {"operator": "equals", "value": "Qualified"},
}


def copy_to_customers(duplicate_handling: str = "create_new", **extra: Any) -> dict[str, Any]:
    return {
        "type": "copy_to_table",
        "target_table_id": "customers",
        "field_mappings": [
            {"source_field_id": "lead_name", "target_field_id": "name"},
            {"source_field_id": "lead_email", "target_field_id": "email"},
        ],
        "duplicate_handling": duplicate_handling,
        **extra,
    }


class FlakyRecordStore(SqlRecordStore):
    """SQL store whose first inserts fail with a transient error."""

    def __init__(self, db: Session, failures: int):
        super().__init__(db)
        self.failures = failures
        self.create_calls = 0

    async def create_record(self, table_id, values, provenance=None):
        self.create_calls += 1
        if self.create_calls <= self.failures:
            raise TransientStoreError("connection reset")
        return await super().create_record(table_id, values, provenance)
