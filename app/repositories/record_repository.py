"""Record repository for workspace data access operations."""

from typing import Any

from sqlalchemy.orm import Session

from app.models.workspace import DataField, DataRecord, DataTable


class RecordRepository:
    """Repository for tables, fields and records."""

    def __init__(self, db: Session):
        """Initialize repository with database session."""
        self.db = db

    # Table operations
    def create_table(self, table_data: dict) -> DataTable:
        """Create a new table."""
        table = DataTable(**table_data)
        self.db.add(table)
        self.db.commit()
        self.db.refresh(table)
        return table

    def get_table(self, table_id: str) -> DataTable | None:
        """Get table by ID."""
        return self.db.query(DataTable).filter(DataTable.id == table_id).first()

    # Field operations
    def create_field(self, field_data: dict) -> DataField:
        """Create a new field."""
        field = DataField(**field_data)
        self.db.add(field)
        self.db.commit()
        self.db.refresh(field)
        return field

    def get_fields(self, table_id: str) -> list[DataField]:
        """Get all fields of a table in display order."""
        return (
            self.db.query(DataField)
            .filter(DataField.table_id == table_id)
            .order_by(DataField.order_index, DataField.name)
            .all()
        )

    # Record operations
    def create_record(self, table_id: str, values: dict[str, Any]) -> DataRecord:
        """Create a new record."""
        record = DataRecord(table_id=table_id, values=dict(values))
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def get_record(self, record_id: str, table_id: str) -> DataRecord | None:
        """Get record by ID and table ID."""
        return (
            self.db.query(DataRecord)
            .filter(DataRecord.id == record_id, DataRecord.table_id == table_id)
            .first()
        )

    def list_records(self, table_id: str) -> list[DataRecord]:
        """Get all records of a table, oldest first."""
        return (
            self.db.query(DataRecord)
            .filter(DataRecord.table_id == table_id)
            .order_by(DataRecord.created_at, DataRecord.id)
            .all()
        )

    def update_record(self, record: DataRecord, values: dict[str, Any]) -> DataRecord:
        """Merge values into a record."""
        # Reassign so the JSON column is flagged as modified
        record.values = {**(record.values or {}), **values}
        self.db.commit()
        self.db.refresh(record)
        return record

    def delete_record(self, record: DataRecord) -> None:
        """Delete a record."""
        self.db.delete(record)
        self.db.commit()
