"""Pydantic models for record mutation events."""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4, uuid5

from pydantic import BaseModel, Field, model_validator

# Namespace for deterministic ids of engine-produced events
DERIVED_EVENT_NAMESPACE = UUID("6f1f3d52-8a4e-4b8e-9c57-2f0a4c1d9e73")


class MutationKind(str, Enum):
    """Kind of record mutation."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ProvenanceTag(BaseModel):
    """Identifies the automation that produced a write."""

    automation_id: UUID = Field(..., description="Automation that performed the write")
    originating_event_id: UUID = Field(..., description="Event the automation reacted to")


class RecordMutationEvent(BaseModel):
    """A create/update/delete of one record."""

    event_id: UUID = Field(default_factory=uuid4, description="Unique event identifier")
    kind: MutationKind = Field(..., description="Mutation kind")
    table_id: str = Field(..., description="Table of the mutated record")
    record_id: str = Field(..., description="Mutated record")
    changed_field_ids: list[str] = Field(default_factory=list)
    old_values: dict[str, Any] = Field(default_factory=dict)
    new_values: dict[str, Any] = Field(default_factory=dict)
    provenance: ProvenanceTag | None = Field(
        default=None, description="Set on writes produced by an automation"
    )
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Event timestamp (UTC)",
    )

    @model_validator(mode="after")
    def default_changed_fields(self):
        # Creations and deletions touch every field they carry
        if not self.changed_field_ids:
            if self.kind == MutationKind.CREATED:
                self.changed_field_ids = list(self.new_values)
            elif self.kind == MutationKind.DELETED:
                self.changed_field_ids = list(self.old_values)
        return self

    def effective_changed_fields(self) -> set[str]:
        """Changed field ids whose value actually differs between old and new."""
        effective = set()
        for field_id in self.changed_field_ids:
            if (
                field_id in self.old_values
                and field_id in self.new_values
                and self.old_values[field_id] == self.new_values[field_id]
            ):
                continue
            effective.add(field_id)
        return effective

    def produced_by(self, automation_id: UUID) -> bool:
        """Whether this event is a write made by ``automation_id``."""
        return self.provenance is not None and self.provenance.automation_id == automation_id

    def to_redis_dict(self) -> dict[str, str]:
        """Convert event to dictionary for Redis Streams."""
        return {
            "event_id": str(self.event_id),
            "kind": self.kind.value,
            "table_id": self.table_id,
            "record_id": self.record_id,
            "changed_field_ids": json.dumps(self.changed_field_ids),
            "old_values": json.dumps(self.old_values, default=str),
            "new_values": json.dumps(self.new_values, default=str),
            "provenance": self.provenance.model_dump_json() if self.provenance else "",
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_redis_dict(cls, data: dict[str, str]) -> "RecordMutationEvent":
        """Create an event from a Redis Streams dictionary."""
        provenance = None
        if data.get("provenance"):
            provenance = ProvenanceTag.model_validate_json(data["provenance"])

        return cls(
            event_id=UUID(data["event_id"]),
            kind=MutationKind(data["kind"]),
            table_id=data["table_id"],
            record_id=data["record_id"],
            changed_field_ids=json.loads(data.get("changed_field_ids") or "[]"),
            old_values=json.loads(data.get("old_values") or "{}"),
            new_values=json.loads(data.get("new_values") or "{}"),
            provenance=provenance,
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
        )


def derived_event_id(
    originating_event_id: UUID, automation_id: UUID, record_id: str, kind: MutationKind
) -> UUID:
    """Deterministic id for an event produced by an automation.

    Replaying the originating event yields the same derived ids, so downstream
    idempotency checks recognise already-processed steps.
    """
    return uuid5(
        DERIVED_EVENT_NAMESPACE,
        f"{originating_event_id}:{automation_id}:{record_id}:{kind.value}",
    )
