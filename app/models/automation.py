"""Automation models for the record trigger/action engine."""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB

from app.core.db.session import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class AutomationExecutionStatus(str, Enum):
    """Status of automation execution."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"  # Trigger or condition not met


class ExecutionDirection(str, Enum):
    """Which leg of an automation produced an execution."""

    FORWARD = "forward"
    REVERSE = "reverse"  # Return leg of a two-way sync


class Automation(Base):
    """Automation watching one source table."""

    __tablename__ = "automations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    table_id = Column(String(36), nullable=False, index=True)  # Source table
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, default=True, nullable=False, index=True)
    trigger = Column(JSONType, nullable=False)  # AutomationTrigger variant
    action = Column(JSONType, nullable=False)  # AutomationAction variant
    # Denormalised from action for reverse lookups of two-way syncs
    target_table_id = Column(String(36), nullable=False, index=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_automations_table_enabled", "table_id", "enabled"),
    )


class SyncLink(Base):
    """Pairing between a source record and the target record it was propagated to.

    Links are intentionally not tied to the automation row by a foreign key:
    deleting or disabling an automation leaves its links in place.
    """

    __tablename__ = "automation_sync_links"

    automation_id = Column(Uuid, primary_key=True)
    source_record_id = Column(String(36), primary_key=True)
    target_record_id = Column(String(36), nullable=False, index=True)
    source_table_id = Column(String(36), nullable=False)
    target_table_id = Column(String(36), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_sync_links_automation_target", "automation_id", "target_record_id"),
    )


class AutomationExecution(Base):
    """Automation execution model for tracking automation runs per event."""

    __tablename__ = "automation_executions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    automation_id = Column(Uuid, nullable=False, index=True)
    event_id = Column(Uuid, nullable=False, index=True)  # Triggering event (idempotency)
    direction = Column(
        String(10), nullable=False, default=ExecutionDirection.FORWARD.value
    )
    status = Column(
        String(20),
        nullable=False,
        default=AutomationExecutionStatus.SUCCESS.value,
        index=True,
    )
    depth = Column(Integer, nullable=False, default=0)
    result = Column(JSONType, nullable=True)
    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    executed_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index(
            "idx_automation_executions_automation_event",
            "automation_id",
            "event_id",
            "direction",
            unique=True,
        ),
        Index("idx_automation_executions_automation_status", "automation_id", "status"),
    )
