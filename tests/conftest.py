"""Pytest configuration and fixtures for the hospitality engine test suite."""

import os
import tempfile
from datetime import datetime, timezone

import pytest

# Configure the application BEFORE importing it: settings and the engine are
# built at import time. A file-backed SQLite database is shared by the
# TestClient worker threads and the concurrency tests.
_db_dir = tempfile.mkdtemp(prefix="hospitality-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["APP_ENV"] = "test"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["NAMED_LOCK_BACKEND"] = "local"

from src.hospitality_engine.database import SessionLocal, engine  # noqa: E402
from src.hospitality_engine.models import Base, RuleCategory  # noqa: E402
from src.hospitality_engine.services.identity import Identity  # noqa: E402
from src.hospitality_engine.services.named_lock import LocalLockProvider  # noqa: E402
from src.hospitality_engine.services.rule_catalog import RuleCatalog  # noqa: E402


@pytest.fixture(autouse=True)
def reset_database():
    """Recreate every table so each test starts from an empty database."""
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog():
    return RuleCatalog(SessionLocal, ttl_seconds=60)


@pytest.fixture
def lock_provider():
    return LocalLockProvider()


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def visitor():
    return Identity(session_id="sess-abc123")


@pytest.fixture
def member():
    return Identity(account_id=42)


@pytest.fixture
def make_rule(db, catalog):
    """Create a rule through the catalog with sensible defaults."""
    counter = {"n": 0}

    def _make_rule(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Test rule {counter['n']}",
            "slug": f"test-rule-{counter['n']}",
            "target_audience": "all",
            "trigger_conditions": {"event_type": "page_view"},
            "action_type": "persona_message",
            "action_config": {"persona_id": "lydia", "title": "Hello"},
            "priority": 100,
            "cooldown_seconds": 300,
            "max_per_session": None,
            "max_per_day": None,
        }
        data.update(overrides)
        return catalog.create_rule(db, data, actor="tests")

    return _make_rule


@pytest.fixture
def make_category(db):
    def _make_category(name="Prayer", slug="prayer", parent_id=None, is_deleted=False):
        category = RuleCategory(name=name, slug=slug, parent_id=parent_id, is_deleted=is_deleted)
        db.add(category)
        db.commit()
        return category

    return _make_category


@pytest.fixture
def client(catalog, lock_provider):
    from fastapi.testclient import TestClient
    from src.hospitality_engine.main import app

    app.state.rule_catalog = catalog
    app.state.lock_provider = lock_provider
    with TestClient(app) as test_client:
        yield test_client
