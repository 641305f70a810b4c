"""Read models for tables, fields and records as seen by the automation engine."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FieldType(str, Enum):
    """Supported field types."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    DATETIME = "datetime"
    EMAIL = "email"
    PHONE = "phone"
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    CHECKBOX = "checkbox"
    LINK = "link"


class SelectOption(BaseModel):
    """Option of a single/multi select field."""

    label: str
    color: str | None = None


class FieldDefinition(BaseModel):
    """Typed field of a table."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    table_id: str
    name: str
    type: FieldType
    options: dict[str, SelectOption] | None = Field(
        default=None, description="Option id -> {label, color} (select fields only)"
    )

    def option_id_for_label(self, label: str) -> str | None:
        """Return the id of the option carrying ``label``, if any."""
        for option_id, option in (self.options or {}).items():
            if option.label == label:
                return option_id
        return None

    def option_label(self, option_id: str) -> str | None:
        option = (self.options or {}).get(option_id)
        return option.label if option else None


class TableDefinition(BaseModel):
    """Table with its fields in display order."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    base_id: str
    name: str
    fields: list[FieldDefinition] = Field(default_factory=list)

    def field_map(self) -> dict[str, FieldDefinition]:
        return {f.id: f for f in self.fields}


class RecordSnapshot(BaseModel):
    """Point-in-time copy of a record's values."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    table_id: str
    values: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
