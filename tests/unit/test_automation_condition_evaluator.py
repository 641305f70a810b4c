"""Unit tests for ConditionEvaluator."""

import pytest

from app.core.automation.condition_evaluator import ConditionEvaluator
from app.core.automation.errors import InvalidReferenceError, TypeMismatchError
from app.core.pubsub.models import MutationKind, RecordMutationEvent
from app.schemas.automation import (
    FieldChangeTrigger,
    RecordCreatedTrigger,
    RecordUpdatedTrigger,
    TriggerCondition,
)
from app.schemas.workspace import FieldType
from tests.helpers import STATUS_OPTIONS, make_field


@pytest.fixture
def evaluator():
    """Create ConditionEvaluator instance."""
    return ConditionEvaluator()


@pytest.fixture
def fields():
    return {
        "status": make_field("status", FieldType.SINGLE_SELECT, "leads", STATUS_OPTIONS),
        "score": make_field("score", FieldType.NUMBER, "leads"),
        "note": make_field("note", FieldType.TEXT, "leads"),
        "due": make_field("due", FieldType.DATE, "leads"),
        "tags": make_field("tags", FieldType.MULTI_SELECT, "leads", STATUS_OPTIONS),
    }


def status_update(old: str, new: str) -> RecordMutationEvent:
    return RecordMutationEvent(
        kind=MutationKind.UPDATED,
        table_id="leads",
        record_id="r1",
        changed_field_ids=["status"],
        old_values={"status": old},
        new_values={"status": new},
    )


def qualified_trigger() -> FieldChangeTrigger:
    return FieldChangeTrigger(
        table_id="leads",
        field_id="status",
        condition=TriggerCondition(operator="equals", value="Qualified"),
    )


def test_field_change_with_condition_fires(evaluator, fields):
    """New -> Qualified satisfies 'equals Qualified' (label resolved to option id)."""
    event = status_update("opt_new", "opt_qualified")

    assert evaluator.evaluate(qualified_trigger(), event, {"status": "opt_qualified"}, fields)


def test_field_change_condition_not_met(evaluator, fields):
    event = status_update("opt_qualified", "opt_new")

    assert not evaluator.evaluate(qualified_trigger(), event, {"status": "opt_new"}, fields)


def test_field_change_ignores_no_op_update(evaluator, fields):
    """Qualified -> Qualified is not a change of the field."""
    event = status_update("opt_qualified", "opt_qualified")

    assert not evaluator.evaluate(qualified_trigger(), event, {"status": "opt_qualified"}, fields)


def test_field_change_other_field(evaluator, fields):
    trigger = FieldChangeTrigger(table_id="leads", field_id="score")
    event = status_update("opt_new", "opt_qualified")

    assert not evaluator.evaluate(trigger, event, {}, fields)


def test_field_change_fires_on_create(evaluator, fields):
    """A created record carrying the field counts as a change of it."""
    trigger = FieldChangeTrigger(table_id="leads", field_id="status")
    event = RecordMutationEvent(
        kind=MutationKind.CREATED,
        table_id="leads",
        record_id="r1",
        new_values={"status": "opt_new"},
    )

    assert evaluator.evaluate(trigger, event, {"status": "opt_new"}, fields)


def test_field_change_never_fires_on_delete(evaluator, fields):
    trigger = FieldChangeTrigger(table_id="leads", field_id="status")
    event = RecordMutationEvent(
        kind=MutationKind.DELETED,
        table_id="leads",
        record_id="r1",
        old_values={"status": "opt_new"},
    )

    assert not evaluator.evaluate(trigger, event, {}, fields)


def test_trigger_on_other_table(evaluator, fields):
    event = status_update("opt_new", "opt_qualified").model_copy(update={"table_id": "other"})

    assert not evaluator.evaluate(qualified_trigger(), event, {}, fields)


def test_record_created_and_updated_triggers(evaluator, fields):
    created = RecordMutationEvent(
        kind=MutationKind.CREATED, table_id="leads", record_id="r1", new_values={}
    )
    updated = status_update("opt_new", "opt_qualified")

    assert evaluator.evaluate(RecordCreatedTrigger(table_id="leads"), created, {}, fields)
    assert not evaluator.evaluate(RecordCreatedTrigger(table_id="leads"), updated, {}, fields)
    assert evaluator.evaluate(RecordUpdatedTrigger(table_id="leads"), updated, {}, fields)
    assert not evaluator.evaluate(RecordUpdatedTrigger(table_id="leads"), created, {}, fields)


def test_record_updated_condition_uses_current_values(evaluator, fields):
    """Fields absent from the event are read from the current record."""
    trigger = RecordUpdatedTrigger(
        table_id="leads",
        field_id="score",
        condition=TriggerCondition(operator="greater_than", value=50),
    )
    event = status_update("opt_new", "opt_qualified")

    assert evaluator.evaluate(trigger, event, {"score": 80}, fields)
    assert not evaluator.evaluate(trigger, event, {"score": 20}, fields)


def test_condition_on_unknown_field_raises(evaluator, fields):
    trigger = RecordUpdatedTrigger(
        table_id="leads",
        field_id="missing",
        condition=TriggerCondition(operator="equals", value="x"),
    )

    with pytest.raises(InvalidReferenceError):
        evaluator.evaluate(trigger, status_update("opt_new", "opt_qualified"), {}, fields)


def test_numeric_comparisons(evaluator, fields):
    score = fields["score"]

    assert evaluator.check_condition(
        score, TriggerCondition(operator="greater_than", value="100"), 150
    )
    assert evaluator.check_condition(score, TriggerCondition(operator="less_than", value=100), 50)
    assert evaluator.check_condition(
        score, TriggerCondition(operator="greater_than_or_equal", value=100), 100
    )
    assert evaluator.check_condition(
        score, TriggerCondition(operator="less_than_or_equal", value=100), 100
    )
    assert not evaluator.check_condition(
        score, TriggerCondition(operator="greater_than", value=100), None
    )


def test_date_comparison_is_chronological(evaluator, fields):
    condition = TriggerCondition(operator="less_than", value="2026-02-01")

    assert evaluator.check_condition(fields["due"], condition, "2026-01-15")
    assert not evaluator.check_condition(fields["due"], condition, "2026-03-01")


def test_contains(evaluator, fields):
    assert evaluator.check_condition(
        fields["note"], TriggerCondition(operator="contains", value="urgent"), "very urgent call"
    )
    assert evaluator.check_condition(
        fields["tags"],
        TriggerCondition(operator="contains", value="Qualified"),
        ["opt_new", "opt_qualified"],
    )
    assert not evaluator.check_condition(
        fields["tags"], TriggerCondition(operator="contains", value="Qualified"), ["opt_new"]
    )


def test_not_equals(evaluator, fields):
    condition = TriggerCondition(operator="not_equals", value="New")

    assert evaluator.check_condition(fields["status"], condition, "opt_qualified")
    assert not evaluator.check_condition(fields["status"], condition, "opt_new")


def test_ordering_on_non_ordinal_field_is_rejected(evaluator, fields):
    with pytest.raises(TypeMismatchError) as exc_info:
        evaluator.check_condition(
            fields["note"], TriggerCondition(operator="greater_than", value="a"), "b"
        )

    assert exc_info.value.code == "ORDERING_ON_NON_ORDINAL"


def test_contains_on_number_is_rejected(evaluator, fields):
    with pytest.raises(TypeMismatchError):
        evaluator.check_operator(fields["score"], "contains")


def test_literal_outside_field_domain_is_rejected(evaluator, fields):
    with pytest.raises(TypeMismatchError):
        evaluator.check_condition(
            fields["score"], TriggerCondition(operator="equals", value="lots"), 3
        )


def test_empty_condition_value_fires_on_any_change(evaluator, fields):
    """Clearing a text field fires a trigger whose condition value was left empty."""
    trigger = FieldChangeTrigger(
        table_id="leads",
        field_id="note",
        condition=TriggerCondition(operator="equals", value=""),
    )
    cleared = RecordMutationEvent(
        kind=MutationKind.UPDATED,
        table_id="leads",
        record_id="r1",
        changed_field_ids=["note"],
        old_values={"note": "x"},
        new_values={"note": ""},
    )

    assert trigger.condition is None
    assert evaluator.evaluate(trigger, cleared, {"note": ""}, fields)
