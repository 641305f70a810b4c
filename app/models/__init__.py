from app.core.db.session import Base
from app.models.automation import (
    Automation,
    AutomationExecution,
    AutomationExecutionStatus,
    ExecutionDirection,
    SyncLink,
)
from app.models.workspace import DataField, DataRecord, DataTable

__all__ = [
    "Automation",
    "AutomationExecution",
    "AutomationExecutionStatus",
    "Base",
    "DataField",
    "DataRecord",
    "DataTable",
    "ExecutionDirection",
    "SyncLink",
]
