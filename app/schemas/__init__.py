"""Pydantic schemas for API requests and responses."""

from app.schemas.automation import (
    AutomationCreate,
    AutomationExecutionResponse,
    AutomationResponse,
    AutomationUpdate,
    ChainReport,
    ChainStep,
    SyncLinkResponse,
)
from app.schemas.common import (
    PaginationMeta,
    StandardListResponse,
    StandardResponse,
)
from app.schemas.workspace import (
    FieldDefinition,
    FieldType,
    RecordSnapshot,
    SelectOption,
    TableDefinition,
)

__all__ = [
    "AutomationCreate",
    "AutomationExecutionResponse",
    "AutomationResponse",
    "AutomationUpdate",
    "ChainReport",
    "ChainStep",
    "FieldDefinition",
    "FieldType",
    "PaginationMeta",
    "RecordSnapshot",
    "SelectOption",
    "StandardListResponse",
    "StandardResponse",
    "SyncLinkResponse",
    "TableDefinition",
]
