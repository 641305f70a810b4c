"""API dependencies - re-exports from core modules."""

from app.api.v1.automation import get_automation_service, get_mutation_dispatcher
from app.core.db.deps import get_db
from app.core.pubsub import get_event_publisher

__all__ = [
    "get_automation_service",
    "get_db",
    "get_event_publisher",
    "get_mutation_dispatcher",
]
