"""Automation module: record triggers, actions and chain execution."""

from app.core.automation.action_executor import ActionExecutor, ActionResult
from app.core.automation.condition_evaluator import ConditionEvaluator
from app.core.automation.dispatcher import MutationDispatcher
from app.core.automation.engine import AutomationEngine
from app.core.automation.field_mapper import FieldMapper
from app.core.automation.field_types import FieldTypeRegistry
from app.core.automation.record_store import RecordStore, SqlRecordStore
from app.core.automation.rule_parser import RuleParser
from app.core.automation.service import AutomationService
from app.core.automation.trigger_handler import TriggerHandler

__all__ = [
    "ActionExecutor",
    "ActionResult",
    "AutomationEngine",
    "AutomationService",
    "ConditionEvaluator",
    "FieldMapper",
    "FieldTypeRegistry",
    "MutationDispatcher",
    "RecordStore",
    "RuleParser",
    "SqlRecordStore",
    "TriggerHandler",
]
