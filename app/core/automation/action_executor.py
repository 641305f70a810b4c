"""Action executor for automations."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar, assert_never
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.automation.errors import (
    ConfigurationError,
    DuplicateRaceDetected,
    InvalidReferenceError,
    TransientStoreError,
)
from app.core.automation.field_mapper import FieldMapper
from app.core.automation.field_types import FieldTypeRegistry, registry
from app.core.automation.record_store import RecordStore
from app.core.config_file import get_settings
from app.core.logging import log_duplicate_race
from app.core.pubsub.models import (
    MutationKind,
    ProvenanceTag,
    RecordMutationEvent,
    derived_event_id,
)
from app.core.pubsub.retry import RetryHandler
from app.models.automation import SyncLink
from app.repositories.automation_repository import AutomationRepository
from app.schemas.automation import (
    AutomationAction,
    CopyFieldsAction,
    CopyToTableAction,
    CreateRecordAction,
    LinkingAction,
    MoveToTableAction,
    ShowInTableAction,
    SyncToTableAction,
    UpdateRecordAction,
)
from app.schemas.workspace import FieldDefinition, RecordSnapshot, TableDefinition

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ExecutionContext:
    """What an action needs to know about the mutation that triggered it."""

    automation_id: UUID
    event: RecordMutationEvent
    source_table: TableDefinition
    source_record: RecordSnapshot | None

    @property
    def source_fields(self) -> dict[str, FieldDefinition]:
        return self.source_table.field_map()

    @property
    def source_values(self) -> dict[str, Any]:
        """Latest values of the triggering record."""
        if self.source_record is not None:
            return self.source_record.values
        return self.event.new_values

    @property
    def provenance(self) -> ProvenanceTag:
        return ProvenanceTag(
            automation_id=self.automation_id, originating_event_id=self.event.event_id
        )


@dataclass
class ActionResult:
    """Outcome of one action: what happened and which writes it produced."""

    outcome: str  # created, updated, unchanged, skipped, moved, not_found
    target_record_id: str | None = None
    events: list[RecordMutationEvent] = field(default_factory=list)
    duplicate_race: DuplicateRaceDetected | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "target_record_id": self.target_record_id,
            "events": [str(e.event_id) for e in self.events],
            "duplicate_race": self.duplicate_race is not None,
        }


class ActionExecutor:
    """Executor for automation actions."""

    def __init__(
        self,
        db: Session,
        record_store: RecordStore,
        retry_handler: RetryHandler | None = None,
        field_registry: FieldTypeRegistry | None = None,
    ):
        """Initialize action executor.

        Args:
            db: Database session (sync links)
            record_store: Store the actions read from and write to
            retry_handler: Retry policy for store calls (default from settings)
            field_registry: Field type registry (default: module registry)
        """
        settings = get_settings()
        self.db = db
        self.repository = AutomationRepository(db)
        self.record_store = record_store
        self.registry = field_registry or registry
        self.field_mapper = FieldMapper(self.registry)
        self.retry_handler = retry_handler or RetryHandler(
            max_attempts=settings.AUTOMATION_WRITE_MAX_ATTEMPTS,
            base_delay=settings.AUTOMATION_RETRY_BASE_DELAY,
            max_delay=settings.AUTOMATION_RETRY_MAX_DELAY,
            retry_on=(TransientStoreError,),
        )

    async def execute(
        self, action: AutomationAction, context: ExecutionContext
    ) -> ActionResult:
        """Execute an action for a matched trigger.

        Args:
            action: Action variant of the automation
            context: Triggering event and source record

        Returns:
            ActionResult with the produced mutation events

        Raises:
            ConfigurationError: If the action is misconfigured
            TransientStoreError: If the store keeps failing after retries
        """
        match action:
            case CreateRecordAction():
                return await self._create_record(action, context)
            case UpdateRecordAction() | CopyFieldsAction():
                return await self._update_in_place(action, context)
            case CopyToTableAction() | SyncToTableAction():
                return await self._propagate(action, context)
            case MoveToTableAction():
                return await self._move(action, context)
            case ShowInTableAction():
                return await self._show(action, context)
            case _:
                assert_never(action)

    async def execute_reverse_sync(
        self,
        action: SyncToTableAction,
        automation_id: UUID,
        event: RecordMutationEvent,
    ) -> ActionResult:
        """Propagate a change of a linked target record back to its source records.

        Only mappings whose target field changed are replayed, through the
        inverted mapping. A target shared by several source records (merged
        by duplicate handling) is written back to each of them, one write and
        one event per source record.

        Args:
            action: Two-way sync action
            automation_id: Automation owning the sync
            event: Update event on the target table

        Returns:
            ActionResult combining the writes on the source records
        """
        links = self.repository.list_sync_links_by_target(automation_id, event.record_id)
        if not links:
            return ActionResult(outcome="not_linked")

        changed = event.effective_changed_fields()
        inverse = [
            m
            for m in self.field_mapper.invert(action.field_mappings)
            if m.source_field_id in changed
        ]
        if not inverse:
            return ActionResult(outcome="unchanged", target_record_id=links[0].source_record_id)

        target_fields = await self._fields(action.target_table_id)
        target_record = await self._call(
            "get_record",
            lambda: self.record_store.get_record(event.table_id, event.record_id),
        )
        values = target_record.values if target_record else event.new_values
        provenance = ProvenanceTag(
            automation_id=automation_id, originating_event_id=event.event_id
        )

        results = []
        for link in links:
            source_fields = await self._fields(link.source_table_id)
            projected = self.field_mapper.project(values, inverse, target_fields, source_fields)
            source_record = await self._call(
                "get_record",
                lambda link=link: self.record_store.get_record(
                    link.source_table_id, link.source_record_id
                ),
            )
            if source_record is None:
                self.repository.delete_sync_link(automation_id, link.source_record_id)
                results.append(ActionResult(outcome="not_found"))
                continue
            results.append(
                await self._apply_update(
                    link.source_table_id, source_record, projected, provenance
                )
            )
        return self._combine(results)

    @staticmethod
    def _combine(results: list[ActionResult]) -> ActionResult:
        """Merge the per-source results of a reverse sync."""
        outcomes = {r.outcome for r in results}
        if "updated" in outcomes:
            outcome = "updated"
        elif outcomes == {"not_found"}:
            outcome = "not_found"
        else:
            outcome = "unchanged"
        written = [r for r in results if r.target_record_id is not None]
        return ActionResult(
            outcome=outcome,
            target_record_id=written[0].target_record_id if written else None,
            events=[e for r in results for e in r.events],
        )

    # Action implementations

    async def _create_record(
        self, action: CreateRecordAction, context: ExecutionContext
    ) -> ActionResult:
        target_fields = await self._fields(action.target_table_id)
        values = self.field_mapper.project(
            context.source_values,
            action.field_mappings,
            context.source_fields,
            target_fields,
            for_create=True,
        )
        return await self._insert(action.target_table_id, values, context.provenance)

    async def _update_in_place(
        self, action: UpdateRecordAction | CopyFieldsAction, context: ExecutionContext
    ) -> ActionResult:
        if action.target_table_id != context.source_table.id:
            raise ConfigurationError(
                f"{action.type} must target its own table {context.source_table.id!r}, "
                f"got {action.target_table_id!r}",
                code="INVALID_TARGET_TABLE",
            )
        if isinstance(action, CopyFieldsAction):
            for index, mapping in enumerate(action.field_mappings):
                if mapping.source_field_id == mapping.target_field_id:
                    raise ConfigurationError(
                        f"copy_fields mapping #{index} copies field "
                        f"{mapping.source_field_id!r} onto itself",
                        code="MAPPING_ERROR",
                    )
        if context.source_record is None:
            return ActionResult(outcome="not_found")

        fields = context.source_fields
        projected = self.field_mapper.project(
            context.source_values, action.field_mappings, fields, fields
        )
        return await self._apply_update(
            context.source_table.id, context.source_record, projected, context.provenance
        )

    async def _propagate(
        self, action: LinkingAction, context: ExecutionContext
    ) -> ActionResult:
        """Copy the source record into its linked, matched or new target record."""
        source_record = context.source_record
        if source_record is None:
            return ActionResult(outcome="not_found")

        target_table_id = action.target_table_id
        target_fields = await self._fields(target_table_id)

        # A SyncLink always wins over duplicate detection
        target = await self._linked_target(context.automation_id, source_record.id)
        if target is not None:
            projected = self.field_mapper.project(
                context.source_values,
                action.field_mappings,
                context.source_fields,
                target_fields,
            )
            return await self._apply_update(
                target_table_id, target, projected, context.provenance
            )

        mapped = self.field_mapper.project(
            context.source_values,
            action.field_mappings,
            context.source_fields,
            target_fields,
        )
        candidates = await self._call(
            "find_matching",
            lambda: self.record_store.find_matching(target_table_id, mapped),
        )

        if candidates and action.duplicate_handling == "skip":
            logger.info(
                f"Automation {context.automation_id}: record {source_record.id} already "
                f"present in table {target_table_id} as {candidates[0].id}, skipping"
            )
            return ActionResult(outcome="skipped", target_record_id=candidates[0].id)

        if candidates and action.duplicate_handling == "update":
            match = candidates[0]
            result = await self._apply_update(
                target_table_id, match, mapped, context.provenance
            )
        else:
            values = self.field_mapper.project(
                context.source_values,
                action.field_mappings,
                context.source_fields,
                target_fields,
                for_create=True,
            )
            result = await self._insert(target_table_id, values, context.provenance)

        result.duplicate_race = self._link(
            context.automation_id,
            source_record,
            result.target_record_id,
            target_table_id,
        )
        return result

    async def _move(
        self, action: MoveToTableAction, context: ExecutionContext
    ) -> ActionResult:
        result = await self._propagate(action, context)
        if action.preserve_original or result.outcome in ("skipped", "not_found"):
            return result

        source_record = context.source_record
        deleted = await self._call(
            "delete_record",
            lambda: self.record_store.delete_record(
                context.source_table.id, source_record.id, context.provenance
            ),
        )
        if deleted is None:
            return result

        self.repository.delete_sync_links_for_record(source_record.id)
        result.events.append(
            self._build_event(
                MutationKind.DELETED,
                context.source_table.id,
                deleted.id,
                old_values=deleted.values,
                new_values={},
                provenance=context.provenance,
            )
        )
        result.outcome = "moved"
        return result

    async def _show(
        self, action: ShowInTableAction, context: ExecutionContext
    ) -> ActionResult:
        """Set or clear the visibility flag of a record already present in the target table."""
        target_table_id = action.target_table_id
        target_fields = await self._fields(target_table_id)
        visibility_field = target_fields.get(action.visibility_field_id)
        if visibility_field is None:
            raise InvalidReferenceError(
                f"Visibility field {action.visibility_field_id!r} does not exist "
                f"on table {target_table_id!r}",
                details={"field_id": action.visibility_field_id},
            )
        value = self.registry.parse_literal(visibility_field, action.visibility_value)
        if value is None:
            value = self.registry.default_value(visibility_field.type)

        source_record = context.source_record
        if source_record is None:
            return ActionResult(outcome="not_found")

        race = None
        target = await self._linked_target(context.automation_id, source_record.id)
        if target is None:
            mapped = self.field_mapper.project(
                context.source_values,
                action.field_mappings,
                context.source_fields,
                target_fields,
            )
            candidates = await self._call(
                "find_matching",
                lambda: self.record_store.find_matching(target_table_id, mapped),
            )
            if not candidates:
                logger.info(
                    f"Automation {context.automation_id}: no record of table "
                    f"{target_table_id} matches record {source_record.id}"
                )
                return ActionResult(outcome="not_found")
            target = candidates[0]
            race = self._link(context.automation_id, source_record, target.id, target_table_id)

        result = await self._apply_update(
            target_table_id, target, {visibility_field.id: value}, context.provenance
        )
        result.duplicate_race = race
        return result

    # Store helpers

    async def _call(self, operation: str, callback: Callable[[], Awaitable[T]]) -> T:
        """Run a store call under the retry policy."""
        return await self.retry_handler.retry_with_backoff(callback, operation_name=operation)

    async def _fields(self, table_id: str) -> dict[str, FieldDefinition]:
        fields = await self._call("get_fields", lambda: self.record_store.get_fields(table_id))
        if fields is None:
            raise InvalidReferenceError(
                f"Table {table_id!r} does not exist", details={"table_id": table_id}
            )
        return fields

    async def _linked_target(
        self, automation_id: UUID, source_record_id: str
    ) -> RecordSnapshot | None:
        """Record a SyncLink points at, dropping the link if its target is gone."""
        link = self.repository.get_sync_link(automation_id, source_record_id)
        if link is None:
            return None
        target = await self._call(
            "get_record",
            lambda: self.record_store.get_record(link.target_table_id, link.target_record_id),
        )
        if target is None:
            logger.info(
                f"Dropping stale sync link {automation_id}/{source_record_id} "
                f"-> {link.target_record_id}"
            )
            self.repository.delete_sync_link(automation_id, source_record_id)
        return target

    def _link(
        self,
        automation_id: UUID,
        source_record: RecordSnapshot,
        target_record_id: str | None,
        target_table_id: str,
    ) -> DuplicateRaceDetected | None:
        """Persist a SyncLink; report a race if another writer linked the record first."""
        if target_record_id is None:
            return None
        try:
            self.repository.create_sync_link(
                {
                    "automation_id": automation_id,
                    "source_record_id": source_record.id,
                    "target_record_id": target_record_id,
                    "source_table_id": source_record.table_id,
                    "target_table_id": target_table_id,
                }
            )
            return None
        except IntegrityError:
            existing: SyncLink | None = self.repository.get_sync_link(
                automation_id, source_record.id
            )
            if existing is not None and existing.target_record_id == target_record_id:
                return None
            linked = existing.target_record_id if existing else "unknown"
            log_duplicate_race(
                str(automation_id), source_record.id, linked, target_record_id
            )
            return DuplicateRaceDetected(
                f"Record {source_record.id} was propagated twice: linked to {linked}, "
                f"also written to {target_record_id}",
                details={
                    "source_record_id": source_record.id,
                    "linked_target_id": linked,
                    "orphan_target_id": target_record_id,
                },
            )

    async def _insert(
        self, table_id: str, values: dict[str, Any], provenance: ProvenanceTag
    ) -> ActionResult:
        record = await self._call(
            "create_record",
            lambda: self.record_store.create_record(table_id, values, provenance),
        )
        event = self._build_event(
            MutationKind.CREATED,
            table_id,
            record.id,
            old_values={},
            new_values=record.values,
            provenance=provenance,
        )
        return ActionResult(outcome="created", target_record_id=record.id, events=[event])

    async def _apply_update(
        self,
        table_id: str,
        current: RecordSnapshot,
        values: dict[str, Any],
        provenance: ProvenanceTag,
    ) -> ActionResult:
        """Write only the values that differ; a no-op update emits no event."""
        diff = {k: v for k, v in values.items() if current.values.get(k) != v}
        if not diff:
            return ActionResult(outcome="unchanged", target_record_id=current.id)

        updated = await self._call(
            "update_record",
            lambda: self.record_store.update_record(table_id, current.id, diff, provenance),
        )
        if updated is None:
            return ActionResult(outcome="not_found", target_record_id=current.id)

        event = self._build_event(
            MutationKind.UPDATED,
            table_id,
            current.id,
            old_values={k: current.values.get(k) for k in diff},
            new_values=diff,
            provenance=provenance,
        )
        return ActionResult(outcome="updated", target_record_id=current.id, events=[event])

    @staticmethod
    def _build_event(
        kind: MutationKind,
        table_id: str,
        record_id: str,
        old_values: dict[str, Any],
        new_values: dict[str, Any],
        provenance: ProvenanceTag,
    ) -> RecordMutationEvent:
        if kind == MutationKind.DELETED:
            changed = list(old_values)
        else:
            changed = list(new_values)
        return RecordMutationEvent(
            event_id=derived_event_id(
                provenance.originating_event_id, provenance.automation_id, record_id, kind
            ),
            kind=kind,
            table_id=table_id,
            record_id=record_id,
            changed_field_ids=changed,
            old_values=dict(old_values),
            new_values=dict(new_values),
            provenance=provenance,
        )
