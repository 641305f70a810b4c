"""Automation schemas: trigger/action variants and API requests and responses."""

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

ConditionOperator = Literal[
    "equals",
    "not_equals",
    "contains",
    "greater_than",
    "less_than",
    "greater_than_or_equal",
    "less_than_or_equal",
]
ORDERING_OPERATORS = frozenset(
    {"greater_than", "less_than", "greater_than_or_equal", "less_than_or_equal"}
)
DuplicateHandling = Literal["skip", "update", "create_new"]
SyncMode = Literal["one_way", "two_way"]


class TriggerCondition(BaseModel):
    """Condition evaluated against the trigger field's new value."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"operator": "equals", "value": "Qualified"}}
    )

    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(..., description="Literal compared in the field's value domain")


class _TriggerBase(BaseModel):
    table_id: str = Field(..., description="Source table watched by the trigger")
    field_id: str | None = Field(None, description="Field the condition applies to")
    condition: TriggerCondition | None = Field(None, description="Optional condition")

    @model_validator(mode="after")
    def condition_requires_field(self):
        # A condition without a value is no condition at all
        if self.condition is not None and self.condition.value in (None, "", []):
            self.condition = None
        if self.condition is not None and not self.field_id:
            raise ValueError("a trigger condition requires 'field_id'")
        return self


class FieldChangeTrigger(_TriggerBase):
    """Fires when a specific field changes."""

    type: Literal["field_change"] = "field_change"
    field_id: str = Field(..., description="Watched field (required)")


class RecordCreatedTrigger(_TriggerBase):
    """Fires when a record is inserted."""

    type: Literal["record_created"] = "record_created"


class RecordUpdatedTrigger(_TriggerBase):
    """Fires when a record is updated."""

    type: Literal["record_updated"] = "record_updated"


AutomationTrigger = Annotated[
    FieldChangeTrigger | RecordCreatedTrigger | RecordUpdatedTrigger,
    Field(discriminator="type"),
]


class FieldMappingSchema(BaseModel):
    """Source field projected onto a target field."""

    source_field_id: str
    target_field_id: str


class _ActionBase(BaseModel):
    target_table_id: str = Field(..., description="Table written by the action")
    field_mappings: list[FieldMappingSchema] = Field(default_factory=list)


class CreateRecordAction(_ActionBase):
    type: Literal["create_record"] = "create_record"


class UpdateRecordAction(_ActionBase):
    type: Literal["update_record"] = "update_record"


class CopyFieldsAction(_ActionBase):
    type: Literal["copy_fields"] = "copy_fields"


class CopyToTableAction(_ActionBase):
    type: Literal["copy_to_table"] = "copy_to_table"
    duplicate_handling: DuplicateHandling = "skip"


class MoveToTableAction(_ActionBase):
    type: Literal["move_to_table"] = "move_to_table"
    duplicate_handling: DuplicateHandling = "skip"
    preserve_original: bool = False


class SyncToTableAction(_ActionBase):
    type: Literal["sync_to_table"] = "sync_to_table"
    duplicate_handling: DuplicateHandling = "skip"
    sync_mode: SyncMode = "one_way"


class ShowInTableAction(_ActionBase):
    type: Literal["show_in_table"] = "show_in_table"
    visibility_field_id: str = Field(..., description="Field holding the visibility flag")
    visibility_value: Any = Field(None, description="Value to set; empty clears the flag")


AutomationAction = Annotated[
    CreateRecordAction
    | UpdateRecordAction
    | CopyFieldsAction
    | CopyToTableAction
    | MoveToTableAction
    | SyncToTableAction
    | ShowInTableAction,
    Field(discriminator="type"),
]

# Actions that maintain a SyncLink and honour duplicate handling
LinkingAction = CopyToTableAction | MoveToTableAction | SyncToTableAction

trigger_adapter: TypeAdapter[AutomationTrigger] = TypeAdapter(AutomationTrigger)
action_adapter: TypeAdapter[AutomationAction] = TypeAdapter(AutomationAction)


class AutomationBase(BaseModel):
    """Base schema for automations."""

    name: str = Field(..., description="Automation name", min_length=1, max_length=255)
    description: str | None = Field(None, description="Automation description")
    table_id: str = Field(..., description="Source table")
    enabled: bool = Field(default=True, description="Whether automation is enabled")
    trigger: AutomationTrigger = Field(..., description="Trigger configuration")
    action: AutomationAction = Field(..., description="Action configuration")


class AutomationCreate(AutomationBase):
    """Schema for creating an automation."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Qualified leads become customers",
                "table_id": "leads",
                "trigger": {
                    "type": "field_change",
                    "table_id": "leads",
                    "field_id": "status",
                    "condition": {"operator": "equals", "value": "Qualified"},
                },
                "action": {
                    "type": "copy_to_table",
                    "target_table_id": "customers",
                    "field_mappings": [
                        {"source_field_id": "lead_name", "target_field_id": "name"}
                    ],
                    "duplicate_handling": "create_new",
                },
            }
        }
    )


class AutomationUpdate(BaseModel):
    """Schema for updating an automation."""

    name: str | None = Field(None, description="Automation name", min_length=1, max_length=255)
    description: str | None = Field(None, description="Automation description")
    enabled: bool | None = Field(None, description="Whether automation is enabled")
    trigger: AutomationTrigger | None = Field(None, description="Trigger configuration")
    action: AutomationAction | None = Field(None, description="Action configuration")


class AutomationResponse(BaseModel):
    """Schema for automation response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    table_id: str
    name: str
    description: str | None
    enabled: bool
    trigger: dict[str, Any]
    action: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class AutomationExecutionResponse(BaseModel):
    """Schema for automation execution response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    automation_id: UUID
    event_id: UUID
    direction: str
    status: str
    depth: int
    result: dict[str, Any] | None
    error_code: str | None
    error_message: str | None
    executed_at: datetime


class SyncLinkResponse(BaseModel):
    """Schema for sync link response."""

    model_config = ConfigDict(from_attributes=True)

    automation_id: UUID
    source_record_id: str
    target_record_id: str
    source_table_id: str
    target_table_id: str
    created_at: datetime


class ChainStep(BaseModel):
    """One automation firing (or refusal) inside a chain."""

    automation_id: UUID
    event_id: UUID
    direction: str
    status: str
    depth: int
    error_code: str | None = None
    outcome: str | None = None


class ChainReport(BaseModel):
    """Summary of the chain caused by one originating mutation."""

    event_id: UUID
    steps: list[ChainStep] = Field(default_factory=list)
    events_processed: int = 0
    halted: bool = Field(False, description="True when a branch hit the depth cap")
