"""
Pytest configuration and shared fixtures.

Points the app at a throwaway SQLite file before any app imports, so the
engine and settings are built against it.
"""

import os
import tempfile

import pytest

TEST_DB_DIR = tempfile.mkdtemp(prefix="crm-tests-")
TEST_DB_PATH = os.path.join(TEST_DB_DIR, "db", "crm_test.sqlite")

os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from app.config import get_settings
get_settings.cache_clear()

from fastapi.testclient import TestClient

from app.main import app
from app.storage import Base, engine


DEMO_PHONE = "79001234567"
OTHER_DEMO_PHONE = "79009876543"


@pytest.fixture(scope="function")
def client():
    """Test client with a freshly created and seeded database for each test."""
    # Lifespan creates tables and seeds the demo users
    with TestClient(app) as test_client:
        yield test_client

    # Cleanup - drop all tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def deal(client) -> dict:
    """A deal created by the first demo user."""
    response = client.post(
        "/api/deals",
        json={"name": "Test", "amount": 100, "created_by": DEMO_PHONE},
    )
    assert response.status_code == 200
    return response.json()["deal"]
