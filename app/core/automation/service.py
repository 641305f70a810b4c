"""Automation service for automation management."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.automation.condition_evaluator import ConditionEvaluator
from app.core.automation.errors import ConfigurationError, InvalidReferenceError
from app.core.automation.field_mapper import FieldMapper
from app.core.automation.field_types import registry
from app.core.automation.record_store import RecordStore, SqlRecordStore
from app.core.automation.rule_parser import ParsedAutomation, RuleParser
from app.models.automation import Automation, AutomationExecution, SyncLink
from app.repositories.automation_repository import AutomationRepository
from app.schemas.automation import (
    CopyFieldsAction,
    ShowInTableAction,
    SyncToTableAction,
    UpdateRecordAction,
)
from app.schemas.workspace import FieldDefinition

logger = logging.getLogger(__name__)


class AutomationService:
    """Service for automation management."""

    def __init__(self, db: Session, record_store: RecordStore | None = None):
        """Initialize service with database session."""
        self.db = db
        self.repository = AutomationRepository(db)
        self.record_store = record_store or SqlRecordStore(db)
        self.field_mapper = FieldMapper()
        self.condition_evaluator = ConditionEvaluator()

    async def create_automation(
        self,
        name: str,
        table_id: str,
        trigger: dict[str, Any],
        action: dict[str, Any],
        description: str | None = None,
        enabled: bool = True,
    ) -> Automation:
        """Create a new automation.

        Args:
            name: Automation name
            table_id: Source table
            trigger: Trigger configuration
            action: Action configuration
            description: Automation description (optional)
            enabled: Whether automation is enabled

        Returns:
            Created automation

        Raises:
            ConfigurationError: If the definition is invalid for the current schema
        """
        parsed = await self.validate_definition(table_id, trigger, action)
        automation = self.repository.create_automation(
            {
                "name": name,
                "description": description,
                "table_id": table_id,
                "enabled": enabled,
                "trigger": parsed.trigger.model_dump(mode="json"),
                "action": parsed.action.model_dump(mode="json"),
                "target_table_id": parsed.action.target_table_id,
            }
        )
        logger.info(f"Created automation '{name}' (ID: {automation.id}) on table {table_id}")
        return automation

    def get_automation(self, automation_id: UUID) -> Automation | None:
        """Get an automation by ID."""
        return self.repository.get_automation_by_id(automation_id)

    def get_all_automations(
        self,
        table_id: str | None = None,
        enabled_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Automation]:
        """Get automations in creation order.

        Args:
            table_id: Only automations of this source table (optional)
            enabled_only: Only return enabled automations
            skip: Pagination offset
            limit: Pagination limit
        """
        return self.repository.get_all_automations(table_id, enabled_only, skip, limit)

    def count_automations(self, table_id: str | None = None, enabled_only: bool = False) -> int:
        return self.repository.count_all_automations(table_id, enabled_only)

    def list_enabled_for_table(self, table_id: str) -> list[Automation]:
        """Enabled automations of a table in evaluation order."""
        return self.repository.list_enabled_for_table(table_id)

    async def update_automation(
        self,
        automation_id: UUID,
        name: str | None = None,
        description: str | None = None,
        trigger: dict[str, Any] | None = None,
        action: dict[str, Any] | None = None,
        enabled: bool | None = None,
    ) -> Automation | None:
        """Update an automation. The source table cannot change.

        Returns:
            Updated automation or None if not found

        Raises:
            ConfigurationError: If the new definition is invalid
        """
        automation = self.repository.get_automation_by_id(automation_id)
        if not automation:
            return None

        update_data: dict[str, Any] = {}
        if name is not None:
            update_data["name"] = name
        if description is not None:
            update_data["description"] = description
        if enabled is not None:
            update_data["enabled"] = enabled

        if trigger is not None or action is not None:
            parsed = await self.validate_definition(
                automation.table_id,
                trigger if trigger is not None else automation.trigger,
                action if action is not None else automation.action,
            )
            update_data["trigger"] = parsed.trigger.model_dump(mode="json")
            update_data["action"] = parsed.action.model_dump(mode="json")
            update_data["target_table_id"] = parsed.action.target_table_id

        updated = self.repository.update_automation(automation_id, update_data)
        logger.info(f"Updated automation {automation_id}")
        return updated

    def toggle_automation(self, automation_id: UUID) -> Automation | None:
        """Flip the enabled flag. Existing sync links are kept either way."""
        automation = self.repository.get_automation_by_id(automation_id)
        if not automation:
            return None
        updated = self.repository.update_automation(
            automation_id, {"enabled": not automation.enabled}
        )
        logger.info(
            f"Automation {automation_id} {'enabled' if updated.enabled else 'disabled'}"
        )
        return updated

    def delete_automation(self, automation_id: UUID) -> bool:
        """Delete an automation.

        Returns:
            True if deleted, False if not found
        """
        result = self.repository.delete_automation(automation_id)
        if result:
            logger.info(f"Deleted automation {automation_id}")
        return result

    def get_executions(
        self, automation_id: UUID, skip: int = 0, limit: int = 100
    ) -> list[AutomationExecution]:
        """Get execution history for an automation, newest first."""
        return self.repository.get_executions_by_automation(automation_id, skip, limit)

    def count_executions(self, automation_id: UUID) -> int:
        return self.repository.count_executions_by_automation(automation_id)

    def get_sync_links(
        self, automation_id: UUID, skip: int = 0, limit: int = 100
    ) -> list[SyncLink]:
        """Get the record pairings maintained by an automation."""
        return self.repository.get_sync_links_by_automation(automation_id, skip, limit)

    def count_sync_links(self, automation_id: UUID) -> int:
        return self.repository.count_sync_links_by_automation(automation_id)

    async def validate_definition(
        self, table_id: str, trigger: dict[str, Any], action: dict[str, Any]
    ) -> ParsedAutomation:
        """Check a definition against the tables and fields it references.

        Raises:
            ConfigurationError: On the first problem found
        """
        parsed = RuleParser.parse({"table_id": table_id, "trigger": trigger, "action": action})
        source_fields = await self._fields(table_id)

        trigger_model = parsed.trigger
        if trigger_model.field_id is not None:
            field = self._field(source_fields, trigger_model.field_id, table_id)
            if trigger_model.condition is not None:
                self.condition_evaluator.check_operator(field, trigger_model.condition.operator)
                registry.parse_literal(field, trigger_model.condition.value)

        action_model = parsed.action
        target_fields = await self._fields(action_model.target_table_id)

        if isinstance(action_model, (UpdateRecordAction, CopyFieldsAction)):
            if action_model.target_table_id != table_id:
                raise ConfigurationError(
                    f"{action_model.type} must target its own table {table_id!r}",
                    code="INVALID_TARGET_TABLE",
                )
        if isinstance(action_model, CopyFieldsAction):
            for index, mapping in enumerate(action_model.field_mappings):
                if mapping.source_field_id == mapping.target_field_id:
                    raise ConfigurationError(
                        f"copy_fields mapping #{index} copies field "
                        f"{mapping.source_field_id!r} onto itself",
                        code="MAPPING_ERROR",
                    )
        if isinstance(action_model, ShowInTableAction):
            field = self._field(
                target_fields, action_model.visibility_field_id, action_model.target_table_id
            )
            registry.parse_literal(field, action_model.visibility_value)

        two_way = (
            isinstance(action_model, SyncToTableAction) and action_model.sync_mode == "two_way"
        )
        self.field_mapper.validate(
            action_model.field_mappings, source_fields, target_fields, require_inverse=two_way
        )
        return parsed

    async def _fields(self, table_id: str) -> dict[str, FieldDefinition]:
        fields = await self.record_store.get_fields(table_id)
        if fields is None:
            raise InvalidReferenceError(
                f"Table {table_id!r} does not exist", details={"table_id": table_id}
            )
        return fields

    @staticmethod
    def _field(
        fields: dict[str, FieldDefinition], field_id: str, table_id: str
    ) -> FieldDefinition:
        field = fields.get(field_id)
        if field is None:
            raise InvalidReferenceError(
                f"Field {field_id!r} does not exist on table {table_id!r}",
                details={"field_id": field_id, "table_id": table_id},
            )
        return field
