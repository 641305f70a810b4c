"""Record store abstraction used by the automation engine."""

import logging
from abc import ABC, abstractmethod
from typing import Any

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from app.core.automation.errors import TransientStoreError
from app.core.pubsub.models import ProvenanceTag
from app.repositories.record_repository import RecordRepository
from app.schemas.workspace import FieldDefinition, RecordSnapshot, TableDefinition

logger = logging.getLogger(__name__)

TRANSIENT_DB_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)


class RecordStore(ABC):
    """CRUD over records keyed by table id and record id.

    Writes are the only suspension points of an automation chain. Failures
    that may succeed on retry must be raised as ``TransientStoreError``.
    """

    @abstractmethod
    async def get_table(self, table_id: str) -> TableDefinition | None:
        """Get a table with its fields, or None if it does not exist."""

    @abstractmethod
    async def get_record(self, table_id: str, record_id: str) -> RecordSnapshot | None:
        """Get a record, or None if it does not exist."""

    @abstractmethod
    async def create_record(
        self,
        table_id: str,
        values: dict[str, Any],
        provenance: ProvenanceTag | None = None,
    ) -> RecordSnapshot:
        """Insert a record."""

    @abstractmethod
    async def update_record(
        self,
        table_id: str,
        record_id: str,
        values: dict[str, Any],
        provenance: ProvenanceTag | None = None,
    ) -> RecordSnapshot | None:
        """Merge values into a record. Returns None if the record is gone."""

    @abstractmethod
    async def delete_record(
        self,
        table_id: str,
        record_id: str,
        provenance: ProvenanceTag | None = None,
    ) -> RecordSnapshot | None:
        """Delete a record and return its last snapshot, or None if it was already gone."""

    @abstractmethod
    async def find_matching(
        self, table_id: str, values: dict[str, Any]
    ) -> list[RecordSnapshot]:
        """Records whose values equal every given field value, oldest first."""

    async def get_fields(self, table_id: str) -> dict[str, FieldDefinition] | None:
        """Fields of a table keyed by id, or None if the table does not exist."""
        table = await self.get_table(table_id)
        if table is None:
            return None
        return table.field_map()


class SqlRecordStore(RecordStore):
    """Record store backed by the workspace SQL tables."""

    def __init__(self, db: Session):
        """Initialize record store.

        Args:
            db: Database session
        """
        self.db = db
        self.repository = RecordRepository(db)

    def _transient(self, operation: str, error: Exception) -> TransientStoreError:
        self.db.rollback()
        logger.warning(f"Record store {operation} failed: {error}")
        return TransientStoreError(
            f"Record store {operation} failed: {error}", details={"operation": operation}
        )

    async def get_table(self, table_id: str) -> TableDefinition | None:
        try:
            table = self.repository.get_table(table_id)
            if table is None:
                return None
            return TableDefinition(
                id=table.id,
                base_id=table.base_id,
                name=table.name,
                fields=[
                    FieldDefinition.model_validate(f)
                    for f in self.repository.get_fields(table_id)
                ],
            )
        except TRANSIENT_DB_ERRORS as e:
            raise self._transient("get_table", e) from e

    async def get_record(self, table_id: str, record_id: str) -> RecordSnapshot | None:
        try:
            record = self.repository.get_record(record_id, table_id)
        except TRANSIENT_DB_ERRORS as e:
            raise self._transient("get_record", e) from e
        return RecordSnapshot.model_validate(record) if record else None

    async def create_record(
        self,
        table_id: str,
        values: dict[str, Any],
        provenance: ProvenanceTag | None = None,
    ) -> RecordSnapshot:
        try:
            record = self.repository.create_record(table_id, values)
        except TRANSIENT_DB_ERRORS as e:
            raise self._transient("create_record", e) from e
        logger.debug(
            f"Created record {record.id} in table {table_id}"
            + (f" (automation {provenance.automation_id})" if provenance else "")
        )
        return RecordSnapshot.model_validate(record)

    async def update_record(
        self,
        table_id: str,
        record_id: str,
        values: dict[str, Any],
        provenance: ProvenanceTag | None = None,
    ) -> RecordSnapshot | None:
        try:
            record = self.repository.get_record(record_id, table_id)
            if record is None:
                return None
            record = self.repository.update_record(record, values)
        except TRANSIENT_DB_ERRORS as e:
            raise self._transient("update_record", e) from e
        return RecordSnapshot.model_validate(record)

    async def delete_record(
        self,
        table_id: str,
        record_id: str,
        provenance: ProvenanceTag | None = None,
    ) -> RecordSnapshot | None:
        try:
            record = self.repository.get_record(record_id, table_id)
            if record is None:
                return None
            snapshot = RecordSnapshot.model_validate(record)
            self.repository.delete_record(record)
        except TRANSIENT_DB_ERRORS as e:
            raise self._transient("delete_record", e) from e
        return snapshot

    async def find_matching(
        self, table_id: str, values: dict[str, Any]
    ) -> list[RecordSnapshot]:
        # No criteria would match every record
        if not values:
            return []
        try:
            records = self.repository.list_records(table_id)
        except TRANSIENT_DB_ERRORS as e:
            raise self._transient("find_matching", e) from e
        return [
            RecordSnapshot.model_validate(record)
            for record in records
            if all((record.values or {}).get(k) == v for k, v in values.items())
        ]
