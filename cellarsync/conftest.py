# cellarsync/conftest.py
import os

import pytest

# Must be set before cellarsync modules read settings
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("ADMIN_KEY", "test-admin-key")
os.environ.pop("STRIPE_SECRET_KEY", None)

TEST_DB_URL = "sqlite+pysqlite:///:memory:"


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """
    Fresh in-memory database for every test.

    All sessions share one connection (StaticPool), so the schema created
    here is visible to the code under test.
    """
    from cellarsync.core.database import init_engine, reset_database

    init_engine(TEST_DB_URL)
    reset_database()
    yield


@pytest.fixture(scope="function", autouse=True)
def reset_metrics():
    """Counters are process-global; start each test from zero."""
    from cellarsync.core.metrics import METRICS

    METRICS.reset()
    yield


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": os.environ["ADMIN_KEY"]}
