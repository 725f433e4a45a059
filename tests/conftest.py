"""Pytest fixtures for docmigrate tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from docmigrate.db.config import MigrateConfig, set_config
from docmigrate.db.connection import Connection
from docmigrate.db.locks import LockManager
from docmigrate.db.state import StateStore
from docmigrate.dsl import parse_schema
from tests.helpers import InMemoryDatabaseClient, RecordingReporter


SAMPLE_SCHEMA = """// Test schema
database {
  name = "Test Database"
  id   = "test-db"
}

collection Users {
  name        String    @size(255) @required
  email       Email     @size(255) @required @unique
  age         Integer   @default(18)
  active      Boolean   @default(yes)
  created_at  DateTime  @default(now)
  tags        String[]  @size(32)

  @@index([email], unique)
  @@index([name desc, age])
}

collection BlogPosts {
  title       String    @size(200) @required
  body        String    @size(10000)
  author      Users     @relationship(to: "Users", type: "many-to-one", twoWayKey: "posts", onDelete: "cascade")

  @@index([title], fulltext)
}
"""


class FakeClock:
    """Controllable UTC clock for lock expiry tests."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# -------------------------------------------------------------------
# Schema fixtures
# -------------------------------------------------------------------


@pytest.fixture
def sample_schema_text():
    """DSL source covering attributes, indexes and a relationship."""
    return SAMPLE_SCHEMA


@pytest.fixture
def sample_schema():
    """Parsed sample schema."""
    return parse_schema(SAMPLE_SCHEMA)


# -------------------------------------------------------------------
# Database fakes
# -------------------------------------------------------------------


@pytest.fixture
def fake_client():
    """Empty in-memory database."""
    return InMemoryDatabaseClient()


@pytest.fixture
def reporter():
    """Reporter recording every message."""
    return RecordingReporter()


@pytest.fixture
def migrate_config(tmp_path):
    """Complete configuration pointing at a temporary project."""
    config = MigrateConfig(
        url="ws://localhost:8000/rpc",
        namespace="test",
        user="root",
        password="root",
        database_id="test-db",
        connect_timeout=5.0,
        query_timeout=30.0,
        schema_path=str(tmp_path / "docmigrate.schema"),
        owner="tester@host:1",
    )
    yield config
    set_config(None)


@pytest.fixture
def state_store(fake_client):
    """State store over the in-memory database (call init() in the test)."""
    return StateStore(fake_client, "dm_state", "dm_locks")


@pytest.fixture
def clock():
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def lock_manager(fake_client, clock):
    """Lock manager with a 600s TTL and a controllable clock."""
    return LockManager(fake_client, "dm_locks", owner="tester@host:1", ttl_seconds=600, clock=clock)


# -------------------------------------------------------------------
# SurrealDB SDK mocks
# -------------------------------------------------------------------


@pytest.fixture
def mock_surreal_client():
    """Create a mock SurrealDB SDK client."""
    client = MagicMock()
    client.connect = AsyncMock()
    client.signin = AsyncMock()
    client.authenticate = AsyncMock()
    client.use = AsyncMock()
    client.close = AsyncMock()
    client.query_raw = AsyncMock(return_value={"result": [{"status": "OK", "result": []}]})
    client.create = AsyncMock(return_value={"id": "test:123"})
    client.select = AsyncMock(return_value=None)
    client.merge = AsyncMock(return_value={"id": "test:123"})
    client.delete = AsyncMock(return_value={"id": "test:123"})
    return client


@pytest.fixture
def mock_connection(mock_surreal_client, migrate_config):
    """Connection with the mock SDK client already attached."""
    conn = Connection(migrate_config, "test-db")
    conn._client = mock_surreal_client
    conn._connected = True
    return conn
