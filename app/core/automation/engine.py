"""Automation engine driving trigger evaluation and action chains."""

import asyncio
import logging
from collections import deque

from sqlalchemy.orm import Session

from app.core.automation.action_executor import (
    ActionExecutor,
    ActionResult,
    ExecutionContext,
)
from app.core.automation.condition_evaluator import ConditionEvaluator
from app.core.automation.errors import (
    AutomationError,
    ChainCancelledError,
    ChainDepthExceeded,
    ConfigurationError,
    InvalidReferenceError,
    TransientStoreError,
)
from app.core.automation.record_store import RecordStore, SqlRecordStore
from app.core.automation.rule_parser import RuleParser
from app.core.config_file import Settings, get_settings
from app.core.logging import log_chain_depth_exceeded, log_configuration_error
from app.core.pubsub.models import MutationKind, RecordMutationEvent
from app.core.pubsub.retry import RetryHandler
from app.models.automation import (
    Automation,
    AutomationExecutionStatus,
    ExecutionDirection,
)
from app.repositories.automation_repository import AutomationRepository
from app.schemas.automation import (
    AutomationAction,
    ChainReport,
    ChainStep,
    SyncToTableAction,
)

logger = logging.getLogger(__name__)

# Outcomes after which nothing was written
_NO_WRITE_OUTCOMES = frozenset({"skipped", "unchanged", "not_found", "not_linked"})


class AutomationEngine:
    """Engine processing record mutations against registered automations.

    A mutation and every write it causes downstream form a chain. The chain
    is processed breadth-first from a work queue; each item carries its depth
    so runaway cascades stop at the configured cap.
    """

    def __init__(
        self,
        db: Session,
        record_store: RecordStore | None = None,
        settings: Settings | None = None,
        retry_handler: RetryHandler | None = None,
    ):
        """Initialize automation engine.

        Args:
            db: Database session (automations, sync links, executions)
            record_store: Store holding the records (default: SQL store on ``db``)
            settings: Settings (default: application settings)
            retry_handler: Retry policy for store calls
        """
        self.db = db
        self.settings = settings or get_settings()
        self.repository = AutomationRepository(db)
        self.record_store = record_store or SqlRecordStore(db)
        self.condition_evaluator = ConditionEvaluator()
        self.action_executor = ActionExecutor(db, self.record_store, retry_handler)
        self.max_chain_depth = self.settings.AUTOMATION_MAX_CHAIN_DEPTH

    async def process_event(
        self, event: RecordMutationEvent, timeout: float | None = None
    ) -> ChainReport:
        """Process a mutation and the whole chain of writes it causes.

        Args:
            event: Originating mutation event
            timeout: Seconds after which the chain stops between two steps
                (default: ``AUTOMATION_CHAIN_TIMEOUT``)

        Returns:
            ChainReport of every step taken

        Raises:
            ChainCancelledError: If the timeout elapsed; steps already taken stand
        """
        if timeout is None:
            timeout = self.settings.AUTOMATION_CHAIN_TIMEOUT
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        report = ChainReport(event_id=event.event_id)
        queue: deque[tuple[RecordMutationEvent, int]] = deque([(event, 0)])

        while queue:
            current, depth = queue.popleft()
            report.events_processed += 1

            if current.kind == MutationKind.DELETED:
                removed = self.repository.delete_sync_links_for_record(current.record_id)
                if removed:
                    logger.info(
                        f"Removed {removed} sync link(s) of deleted record {current.record_id}"
                    )

            for automation in self.repository.list_enabled_for_table(current.table_id):
                self._check_deadline(deadline, report, len(queue))
                produced = await self._run_step(
                    automation, current, depth, ExecutionDirection.FORWARD, report
                )
                queue.extend((e, depth + 1) for e in produced)

            if current.kind != MutationKind.UPDATED:
                continue

            for automation in self.repository.list_enabled_targeting_table(current.table_id):
                self._check_deadline(deadline, report, len(queue))
                produced = await self._run_step(
                    automation, current, depth, ExecutionDirection.REVERSE, report
                )
                queue.extend((e, depth + 1) for e in produced)

        logger.info(
            f"Chain of event {event.event_id} finished: {len(report.steps)} step(s), "
            f"{report.events_processed} event(s)"
        )
        return report

    def _check_deadline(
        self, deadline: float | None, report: ChainReport, pending: int
    ) -> None:
        if deadline is None or asyncio.get_running_loop().time() < deadline:
            return
        logger.warning(
            f"Chain of event {report.event_id} cancelled after "
            f"{len(report.steps)} step(s), {pending} event(s) pending"
        )
        raise ChainCancelledError(
            f"Chain of event {report.event_id} timed out",
            details={"steps": len(report.steps), "pending_events": pending},
        )

    async def _run_step(
        self,
        automation: Automation,
        event: RecordMutationEvent,
        depth: int,
        direction: ExecutionDirection,
        report: ChainReport,
    ) -> list[RecordMutationEvent]:
        """Run one automation against one event and return the events it produced."""
        if event.produced_by(automation.id):
            logger.debug(
                f"Automation {automation.id} ignores its own write {event.event_id}"
            )
            return []

        if self.repository.is_processed(automation.id, event.event_id, direction):
            logger.info(
                f"Event {event.event_id} already processed by automation "
                f"{automation.id} ({direction.value}), skipping"
            )
            return []

        # The write and its bookkeeping complete even if the caller is cancelled
        step = await asyncio.shield(self._execute(automation, event, depth, direction))
        if step is None:
            return []

        chain_step, result = step
        report.steps.append(chain_step)
        if chain_step.error_code == ChainDepthExceeded.code:
            report.halted = True
        return result.events if result else []

    async def _execute(
        self,
        automation: Automation,
        event: RecordMutationEvent,
        depth: int,
        direction: ExecutionDirection,
    ) -> tuple[ChainStep, ActionResult | None] | None:
        """Evaluate, execute and record one step. None when the automation does not apply."""
        try:
            if direction == ExecutionDirection.FORWARD:
                context, action = await self._match_forward(automation, event)
                if context is None:
                    return None
            else:
                action = RuleParser.parse_action(automation.action)
                if not (isinstance(action, SyncToTableAction) and action.sync_mode == "two_way"):
                    return None
                if not self.repository.list_sync_links_by_target(automation.id, event.record_id):
                    return None

            if depth >= self.max_chain_depth:
                raise ChainDepthExceeded(
                    f"Chain depth {depth} reached the limit of {self.max_chain_depth}",
                    details={"depth": depth, "max_chain_depth": self.max_chain_depth},
                )

            if direction == ExecutionDirection.FORWARD:
                result = await self.action_executor.execute(action, context)
            else:
                result = await self.action_executor.execute_reverse_sync(
                    action, automation.id, event
                )
        except ChainDepthExceeded as e:
            log_chain_depth_exceeded(str(automation.id), str(event.event_id), depth)
            return self._record(automation, event, depth, direction, error=e), None
        except ConfigurationError as e:
            log_configuration_error(str(automation.id), str(event.event_id), e.code, e.message)
            return self._record(automation, event, depth, direction, error=e), None
        except TransientStoreError as e:
            logger.error(
                f"Automation {automation.id} gave up on event {event.event_id} "
                f"after retries: {e.message}"
            )
            return self._record(automation, event, depth, direction, error=e), None
        except AutomationError as e:
            logger.error(f"Automation {automation.id} failed on event {event.event_id}: {e}")
            return self._record(automation, event, depth, direction, error=e), None
        except Exception as e:
            logger.error(
                f"Failed to execute automation {automation.id} for event {event.event_id}: {e}",
                exc_info=True,
            )
            return self._record(automation, event, depth, direction, error=e), None

        logger.info(
            f"Automation {automation.id} ({direction.value}) on event {event.event_id}: "
            f"{result.outcome}"
        )
        return self._record(automation, event, depth, direction, result=result), result

    async def _match_forward(
        self, automation: Automation, event: RecordMutationEvent
    ) -> tuple[ExecutionContext | None, AutomationAction | None]:
        parsed = RuleParser.parse(
            {
                "table_id": automation.table_id,
                "trigger": automation.trigger,
                "action": automation.action,
            }
        )
        source_table = await self.action_executor.retry_handler.retry_with_backoff(
            lambda: self.record_store.get_table(event.table_id), operation_name="get_table"
        )
        if source_table is None:
            raise InvalidReferenceError(
                f"Table {event.table_id!r} does not exist", details={"table_id": event.table_id}
            )
        source_record = None
        if event.kind != MutationKind.DELETED:
            source_record = await self.action_executor.retry_handler.retry_with_backoff(
                lambda: self.record_store.get_record(event.table_id, event.record_id),
                operation_name="get_record",
            )
        current_values = source_record.values if source_record else event.new_values

        if not self.condition_evaluator.evaluate(
            parsed.trigger, event, current_values, source_table.field_map()
        ):
            logger.debug(
                f"Trigger of automation {automation.id} not met by event {event.event_id}"
            )
            return None, None

        context = ExecutionContext(
            automation_id=automation.id,
            event=event,
            source_table=source_table,
            source_record=source_record,
        )
        return context, parsed.action

    def _record(
        self,
        automation: Automation,
        event: RecordMutationEvent,
        depth: int,
        direction: ExecutionDirection,
        result: ActionResult | None = None,
        error: Exception | None = None,
    ) -> ChainStep:
        """Persist the execution row of a step and describe it for the chain report."""
        error_code = None
        error_message = None
        if error is not None:
            status = AutomationExecutionStatus.FAILED
            error_code = error.code if isinstance(error, AutomationError) else "UNEXPECTED_ERROR"
            error_message = str(error)
        elif result.outcome in _NO_WRITE_OUTCOMES:
            status = AutomationExecutionStatus.SKIPPED
        else:
            status = AutomationExecutionStatus.SUCCESS

        if result is not None and result.duplicate_race is not None:
            error_code = result.duplicate_race.code
            error_message = result.duplicate_race.message

        self.repository.record_execution(
            {
                "automation_id": automation.id,
                "event_id": event.event_id,
                "direction": direction.value,
                "status": status.value,
                "depth": depth,
                "result": result.to_dict() if result else None,
                "error_code": error_code,
                "error_message": error_message,
            }
        )
        return ChainStep(
            automation_id=automation.id,
            event_id=event.event_id,
            direction=direction.value,
            status=status.value,
            depth=depth,
            error_code=error_code,
            outcome=result.outcome if result else None,
        )
