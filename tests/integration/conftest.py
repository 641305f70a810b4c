"""Shared fixtures for integration tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.pubsub import EventPublisher
from tests.helpers import build_leads_customers, create_record


@pytest.fixture
def mock_event_publisher():
    """Create a mock EventPublisher."""
    publisher = MagicMock(spec=EventPublisher)
    publisher.publish = AsyncMock(return_value="1700000000000-0")
    return publisher


@pytest.fixture
def workspace(db_session):
    """Leads and Customers tables."""
    build_leads_customers(db_session)
    return db_session


@pytest.fixture
def lead(workspace):
    """A new lead."""
    return create_record(
        workspace,
        "leads",
        {"lead_name": "Ada", "lead_email": "ada@example.com", "status": "opt_new"},
    )
