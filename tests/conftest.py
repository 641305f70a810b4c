import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_db, get_mutation_dispatcher
from app.core.automation.dispatcher import MutationDispatcher
from app.core.automation.engine import AutomationEngine
from app.core.automation.errors import TransientStoreError
from app.core.automation.record_store import SqlRecordStore
from app.core.config_file import get_settings
from app.core.pubsub.retry import RetryHandler
from app.main import app
from app.models import Base

# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite://"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh schema and session for each test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def record_store(db_session):
    """SQL record store on the test session."""
    return SqlRecordStore(db_session)


@pytest.fixture
def fast_retry():
    """Retry policy without backoff delays."""
    return RetryHandler(
        max_attempts=3, base_delay=0, max_delay=0, retry_on=(TransientStoreError,)
    )


@pytest.fixture
def automation_engine(db_session, record_store, fast_retry):
    """AutomationEngine on the test session."""
    return AutomationEngine(db_session, record_store=record_store, retry_handler=fast_retry)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture(scope="function")
def client(db_session):
    """Create a test client with database dependency override."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    # Chains run in their own sessions on the same in-memory database
    dispatcher = MutationDispatcher(session_factory=TestingSessionLocal)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mutation_dispatcher] = lambda: dispatcher
    with TestClient(app) as test_client:
        dispatcher.start()
        yield test_client
        test_client.portal.call(dispatcher.stop)
    app.dependency_overrides.clear()
