"""Workspace models backing the bundled SQL record store."""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.core.db.session import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid4())


class DataTable(Base):
    """A named collection of fields and records inside a base."""

    __tablename__ = "data_tables"

    id = Column(String(36), primary_key=True, default=_new_id)
    base_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    # Relationships
    fields = relationship(
        "DataField",
        back_populates="table",
        cascade="all, delete-orphan",
        order_by="DataField.order_index",
    )
    records = relationship(
        "DataRecord", back_populates="table", cascade="all, delete-orphan"
    )


class DataField(Base):
    """Typed column of a table. Select fields carry their options."""

    __tablename__ = "data_fields"

    id = Column(String(36), primary_key=True, default=_new_id)
    table_id = Column(
        String(36),
        ForeignKey("data_tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False)
    order_index = Column(Integer, nullable=False, default=0)
    options = Column(JSONType, nullable=True)  # {option_id: {label, color}}

    # Relationships
    table = relationship("DataTable", back_populates="fields")


class DataRecord(Base):
    """Row of a table holding values keyed by field id."""

    __tablename__ = "data_records"

    id = Column(String(36), primary_key=True, default=_new_id)
    table_id = Column(
        String(36),
        ForeignKey("data_tables.id", ondelete="CASCADE"),
        nullable=False,
    )
    values = Column(JSONType, nullable=False, default=dict)
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

    # Relationships
    table = relationship("DataTable", back_populates="records")

    __table_args__ = (
        Index("idx_data_records_table_created", "table_id", "created_at"),
    )
