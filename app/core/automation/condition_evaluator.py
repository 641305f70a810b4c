"""Condition evaluator for automation triggers."""

import logging
from typing import Any, assert_never

from app.core.automation.errors import InvalidReferenceError, TypeMismatchError
from app.core.automation.field_types import TEXT_LIKE, FieldTypeRegistry, registry
from app.core.pubsub.models import MutationKind, RecordMutationEvent
from app.schemas.automation import (
    ORDERING_OPERATORS,
    AutomationTrigger,
    FieldChangeTrigger,
    RecordCreatedTrigger,
    RecordUpdatedTrigger,
    TriggerCondition,
)
from app.schemas.workspace import FieldDefinition, FieldType

logger = logging.getLogger(__name__)


class ConditionEvaluator:
    """Evaluator for trigger conditions."""

    def __init__(self, field_registry: FieldTypeRegistry | None = None):
        self.registry = field_registry or registry

    def evaluate(
        self,
        trigger: AutomationTrigger,
        event: RecordMutationEvent,
        current_values: dict[str, Any],
        fields: dict[str, FieldDefinition],
    ) -> bool:
        """Evaluate a trigger against a mutation event.

        Args:
            trigger: Trigger of the automation
            event: Mutation event on the trigger's table
            current_values: Current values of the mutated record
            fields: Fields of the trigger's table keyed by id

        Returns:
            True if the trigger fires, False otherwise

        Raises:
            ConfigurationError: If the trigger references an unknown field or
                its condition does not fit the field's type
        """
        if event.table_id != trigger.table_id:
            return False

        match trigger:
            case FieldChangeTrigger():
                if event.kind == MutationKind.DELETED:
                    return False
                if trigger.field_id not in event.effective_changed_fields():
                    return False
            case RecordCreatedTrigger():
                if event.kind != MutationKind.CREATED:
                    return False
            case RecordUpdatedTrigger():
                if event.kind != MutationKind.UPDATED:
                    return False
            case _:
                assert_never(trigger)

        if trigger.condition is None:
            return True

        field = fields.get(trigger.field_id)
        if field is None:
            raise InvalidReferenceError(
                f"Trigger field {trigger.field_id!r} does not exist on table {trigger.table_id!r}",
                details={"field_id": trigger.field_id, "table_id": trigger.table_id},
            )

        if trigger.field_id in event.new_values:
            actual = event.new_values[trigger.field_id]
        else:
            actual = current_values.get(trigger.field_id)
        return self.check_condition(field, trigger.condition, actual)

    def check_condition(
        self, field: FieldDefinition, condition: TriggerCondition, actual_value: Any
    ) -> bool:
        """Evaluate a single condition against a value of ``field``.

        Comparison happens in the field's value domain: the configured literal
        is parsed with the field's type, never compared raw.
        """
        self.check_operator(field, condition.operator)

        expected = self.registry.normalize(
            field, self.registry.parse_literal(field, condition.value)
        )
        actual = self.registry.normalize(field, actual_value)
        operator = condition.operator

        if operator == "equals":
            return actual == expected
        if operator == "not_equals":
            return actual != expected
        if actual is None or expected is None:
            return False

        if operator == "contains":
            if field.type == FieldType.MULTI_SELECT:
                return expected <= actual
            return expected in actual
        if operator == "greater_than":
            return actual > expected
        if operator == "less_than":
            return actual < expected
        if operator == "greater_than_or_equal":
            return actual >= expected
        if operator == "less_than_or_equal":
            return actual <= expected

        logger.warning(f"Unknown operator: {operator}")
        return False

    def check_operator(self, field: FieldDefinition, operator: str) -> None:
        """Reject operators that do not apply to the field's type.

        Raises:
            TypeMismatchError: Ordering on a non-ordinal field, or containment
                on a field that is neither text nor multi select
        """
        if operator in ORDERING_OPERATORS and not self.registry.is_ordinal(field.type):
            raise TypeMismatchError(
                f"Operator '{operator}' requires a number or date field, "
                f"field {field.id!r} is {field.type.value}",
                code="ORDERING_ON_NON_ORDINAL",
                details={"field_id": field.id, "operator": operator},
            )
        if operator == "contains" and not (
            field.type in TEXT_LIKE or field.type == FieldType.MULTI_SELECT
        ):
            raise TypeMismatchError(
                f"Operator 'contains' requires a text or multi select field, "
                f"field {field.id!r} is {field.type.value}",
                details={"field_id": field.id, "operator": operator},
            )
