"""Automation repository for data access operations."""

from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.automation import (
    Automation,
    AutomationExecution,
    AutomationExecutionStatus,
    ExecutionDirection,
    SyncLink,
)


class AutomationRepository:
    """Repository for automation data access."""

    def __init__(self, db: Session):
        """Initialize repository with database session."""
        self.db = db

    # Automation operations
    def create_automation(self, automation_data: dict) -> Automation:
        """Create a new automation."""
        automation = Automation(**automation_data)
        self.db.add(automation)
        self.db.commit()
        self.db.refresh(automation)
        return automation

    def get_automation_by_id(self, automation_id: UUID) -> Automation | None:
        """Get automation by ID."""
        return self.db.query(Automation).filter(Automation.id == automation_id).first()

    def get_all_automations(
        self,
        table_id: str | None = None,
        enabled_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> list[Automation]:
        """Get automations in creation order with pagination."""
        query = self.db.query(Automation)
        if table_id is not None:
            query = query.filter(Automation.table_id == table_id)
        if enabled_only:
            query = query.filter(Automation.enabled)
        return (
            query.order_by(Automation.created_at, Automation.id)
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count_all_automations(
        self, table_id: str | None = None, enabled_only: bool = False
    ) -> int:
        """Count automations."""
        query = self.db.query(func.count(Automation.id))
        if table_id is not None:
            query = query.filter(Automation.table_id == table_id)
        if enabled_only:
            query = query.filter(Automation.enabled)
        return query.scalar() or 0

    def list_enabled_for_table(self, table_id: str) -> list[Automation]:
        """Enabled automations watching a table, in creation order."""
        return (
            self.db.query(Automation)
            .filter(Automation.table_id == table_id, Automation.enabled)
            .order_by(Automation.created_at, Automation.id)
            .all()
        )

    def list_enabled_targeting_table(self, table_id: str) -> list[Automation]:
        """Enabled automations writing into a table, in creation order."""
        return (
            self.db.query(Automation)
            .filter(Automation.target_table_id == table_id, Automation.enabled)
            .order_by(Automation.created_at, Automation.id)
            .all()
        )

    def update_automation(
        self, automation_id: UUID, automation_data: dict
    ) -> Automation | None:
        """Update an automation."""
        automation = self.get_automation_by_id(automation_id)
        if not automation:
            return None
        for key, value in automation_data.items():
            setattr(automation, key, value)
        self.db.commit()
        self.db.refresh(automation)
        return automation

    def delete_automation(self, automation_id: UUID) -> bool:
        """Delete an automation. Its sync links are kept."""
        automation = self.get_automation_by_id(automation_id)
        if not automation:
            return False
        self.db.delete(automation)
        self.db.commit()
        return True

    # SyncLink operations
    def get_sync_link(self, automation_id: UUID, source_record_id: str) -> SyncLink | None:
        """Get the link of a source record for an automation."""
        return self.db.get(SyncLink, (automation_id, source_record_id))

    def list_sync_links_by_target(
        self, automation_id: UUID, target_record_id: str
    ) -> list[SyncLink]:
        """Get every link pointing at a target record for an automation, oldest first.

        Several source records share a target when duplicate handling merged
        them into one matching record.
        """
        return (
            self.db.query(SyncLink)
            .filter(
                SyncLink.automation_id == automation_id,
                SyncLink.target_record_id == target_record_id,
            )
            .order_by(SyncLink.created_at, SyncLink.source_record_id)
            .all()
        )

    def create_sync_link(self, link_data: dict) -> SyncLink:
        """Create a sync link.

        Raises:
            IntegrityError: If a link already exists for the same
                (automation_id, source_record_id)
        """
        link = SyncLink(**link_data)
        self.db.add(link)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
        self.db.refresh(link)
        return link

    def delete_sync_link(self, automation_id: UUID, source_record_id: str) -> bool:
        """Delete one sync link."""
        link = self.get_sync_link(automation_id, source_record_id)
        if not link:
            return False
        self.db.delete(link)
        self.db.commit()
        return True

    def delete_sync_links_for_record(self, record_id: str) -> int:
        """Delete every link whose source or target is the given record."""
        deleted = (
            self.db.query(SyncLink)
            .filter(
                or_(
                    SyncLink.source_record_id == record_id,
                    SyncLink.target_record_id == record_id,
                )
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

    def get_sync_links_by_automation(
        self, automation_id: UUID, skip: int = 0, limit: int = 100
    ) -> list[SyncLink]:
        """Get all links of an automation."""
        return (
            self.db.query(SyncLink)
            .filter(SyncLink.automation_id == automation_id)
            .order_by(SyncLink.created_at)
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count_sync_links_by_automation(self, automation_id: UUID) -> int:
        """Count all links of an automation."""
        return (
            self.db.query(func.count(SyncLink.source_record_id))
            .filter(SyncLink.automation_id == automation_id)
            .scalar()
            or 0
        )

    # AutomationExecution operations
    def get_execution(
        self,
        automation_id: UUID,
        event_id: UUID,
        direction: ExecutionDirection = ExecutionDirection.FORWARD,
    ) -> AutomationExecution | None:
        """Get the execution of an automation for an event (for idempotency check)."""
        return (
            self.db.query(AutomationExecution)
            .filter(
                AutomationExecution.automation_id == automation_id,
                AutomationExecution.event_id == event_id,
                AutomationExecution.direction == direction.value,
            )
            .first()
        )

    def record_execution(self, execution_data: dict) -> AutomationExecution:
        """Create an execution record, or overwrite a previous failed attempt."""
        direction = execution_data.get("direction", ExecutionDirection.FORWARD)
        execution = self.get_execution(
            execution_data["automation_id"],
            execution_data["event_id"],
            ExecutionDirection(direction),
        )
        if execution is None:
            execution = AutomationExecution(**execution_data)
            self.db.add(execution)
        else:
            for key, value in execution_data.items():
                setattr(execution, key, value)
        self.db.commit()
        self.db.refresh(execution)
        return execution

    def is_processed(
        self, automation_id: UUID, event_id: UUID, direction: ExecutionDirection
    ) -> bool:
        """Whether an automation already handled an event (failed runs may be replayed)."""
        execution = self.get_execution(automation_id, event_id, direction)
        return execution is not None and execution.status != AutomationExecutionStatus.FAILED.value

    def get_executions_by_automation(
        self, automation_id: UUID, skip: int = 0, limit: int = 100
    ) -> list[AutomationExecution]:
        """Get all executions for an automation, newest first."""
        return (
            self.db.query(AutomationExecution)
            .filter(AutomationExecution.automation_id == automation_id)
            .order_by(AutomationExecution.executed_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def count_executions_by_automation(self, automation_id: UUID) -> int:
        """Count all executions for an automation."""
        return (
            self.db.query(func.count(AutomationExecution.id))
            .filter(AutomationExecution.automation_id == automation_id)
            .scalar()
            or 0
        )
