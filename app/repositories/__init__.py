"""Repositories for data access operations."""

from app.repositories.automation_repository import AutomationRepository
from app.repositories.record_repository import RecordRepository

__all__ = [
    "AutomationRepository",
    "RecordRepository",
]
