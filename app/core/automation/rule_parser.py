"""Parser for stored automation definitions."""

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from app.core.automation.errors import ConfigurationError
from app.schemas.automation import (
    AutomationAction,
    AutomationTrigger,
    action_adapter,
    trigger_adapter,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedAutomation:
    """Typed trigger and action of an automation."""

    table_id: str
    trigger: AutomationTrigger
    action: AutomationAction


def _format_errors(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in e["loc"]), "msg": e["msg"]}
        for e in error.errors()
    ]


class RuleParser:
    """Parser for automation trigger/action JSON."""

    @staticmethod
    def parse_trigger(trigger: dict[str, Any] | AutomationTrigger) -> AutomationTrigger:
        """Parse a trigger into its typed variant.

        Raises:
            ConfigurationError: If the trigger type is unknown or malformed
        """
        if not isinstance(trigger, dict):
            return trigger
        try:
            return trigger_adapter.validate_python(trigger)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid trigger: {e.error_count()} error(s)",
                code="INVALID_TRIGGER",
                details={"errors": _format_errors(e)},
            ) from e

    @staticmethod
    def parse_action(action: dict[str, Any] | AutomationAction) -> AutomationAction:
        """Parse an action into its typed variant.

        Raises:
            ConfigurationError: If the action type is unknown or malformed
        """
        if not isinstance(action, dict):
            return action
        try:
            return action_adapter.validate_python(action)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid action: {e.error_count()} error(s)",
                code="INVALID_ACTION",
                details={"errors": _format_errors(e)},
            ) from e

    @staticmethod
    def parse(definition: dict[str, Any]) -> ParsedAutomation:
        """Parse an automation definition.

        Args:
            definition: Mapping with ``table_id``, ``trigger`` and ``action``

        Returns:
            ParsedAutomation

        Raises:
            ConfigurationError: If the definition is invalid
        """
        for required in ("table_id", "trigger", "action"):
            if required not in definition:
                raise ConfigurationError(
                    f"Missing required field: {required}", code="INVALID_DEFINITION"
                )

        table_id = definition["table_id"]
        trigger = RuleParser.parse_trigger(definition["trigger"])
        action = RuleParser.parse_action(definition["action"])

        if trigger.table_id != table_id:
            raise ConfigurationError(
                f"Trigger watches table {trigger.table_id!r} but the automation "
                f"belongs to table {table_id!r}",
                code="INVALID_DEFINITION",
                details={"table_id": table_id, "trigger_table_id": trigger.table_id},
            )

        return ParsedAutomation(table_id=table_id, trigger=trigger, action=action)

    @staticmethod
    def validate(definition: dict[str, Any]) -> bool:
        """Validate an automation definition.

        Returns:
            True if valid, False otherwise
        """
        try:
            RuleParser.parse(definition)
            return True
        except ConfigurationError as e:
            logger.warning(f"Invalid automation definition: {e.message}")
            return False
