import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import sqlite3
import json

from dayplan.main import app, limiter
from dayplan.db import Base, get_db
from dayplan.services.travel import get_travel_lookup

# --- Test Database Setup ---

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles

@compiles(JSONB, 'sqlite')
def compile_jsonb(element, compiler, **kw):
    return "JSON"

# Register adapters for SQLite to handle list/dict as JSON
sqlite3.register_adapter(list, json.dumps)
sqlite3.register_adapter(dict, json.dumps)

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool # Important for in-memory to share connection across threads/sessions if needed
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

USER = "user-1"
OTHER_USER = "user-2"


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def fixed_travel_lookup(origin, destination, method):
    """20 minutes anywhere by any method; keeps plan tests independent of geography."""
    return 20


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limit counters are process-wide; start every test from zero."""
    limiter.reset()
    yield

@pytest.fixture
def client():
    """Test client with DB and travel overrides, authenticated as USER."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_travel_lookup] = lambda: fixed_travel_lookup
    with TestClient(app, headers={"X-User-Id": USER}) as c:
        yield c
    app.dependency_overrides.clear()

@pytest.fixture
def db_session():
    """Direct database session for setup."""
    session = TestingSessionLocal()
    yield session
    session.close()

import fakeredis
import fakeredis.aioredis
from dayplan.infra import redis_client

@pytest.fixture(autouse=True)
def mock_redis(monkeypatch):
    server = fakeredis.FakeServer()
    # Create fake clients sharing the same server
    async_redis = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
    sync_redis = fakeredis.FakeRedis(server=server, decode_responses=True)

    # Force the clients into the infra module
    redis_client._redis_async = async_redis
    redis_client._redis_sync = sync_redis

    yield sync_redis

    # Cleanup
    redis_client._redis_async = None
    redis_client._redis_sync = None
