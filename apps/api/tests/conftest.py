"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database. The schema is created before and
dropped after every test, so nothing leaks between tests.
"""
import os
import sys
from uuid import uuid4

# Must be set before anything imports core.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sqlalchemy import event

from core.database import Base, SessionLocal, engine
from models import Tenant


# pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself.
@event.listens_for(engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema and session per test."""
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture
def tenant(db_session):
    t = Tenant(slug=f"server-{uuid4().hex[:8]}", name="Test Server")
    db_session.add(t)
    db_session.commit()
    return t


@pytest.fixture
def other_tenant(db_session):
    t = Tenant(slug=f"other-{uuid4().hex[:8]}", name="Other Server")
    db_session.add(t)
    db_session.commit()
    return t



@pytest.fixture
def client(db_session):
    """TestClient whose requests share the test's session."""
    from fastapi.testclient import TestClient
    from core.database import get_db
    from main import app

    def _override_get_db():
        try:
            yield db_session
            db_session.commit()
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)
