"""Pytest configuration and shared fixtures."""

import io

import openpyxl
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from postflow.database import create_db_engine, get_session
from postflow.models import Agency, Base, Client, Upload

# ---------------------------------------------------------------------------
# In-memory database fixtures
#
# create_db_engine() attaches the SQLite hooks that make SAVEPOINT work, so
# the per-row rollback behaviour under test is the same as in production.
# ---------------------------------------------------------------------------


@pytest.fixture(scope="function")
def test_engine():
    """Create a fresh in-memory SQLite engine per test function."""
    engine = create_db_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_session(test_engine):
    """Yield a SQLAlchemy session backed by the in-memory database."""
    TestSession = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Sample database state
# ---------------------------------------------------------------------------


@pytest.fixture
def agency(test_session) -> Agency:
    record = Agency(name="Acme Writers", email="writers@acme.test")
    test_session.add(record)
    test_session.commit()
    return record


@pytest.fixture
def sample_client(test_session, agency) -> Client:
    record = Client(name="Northwind Coffee", agency_id=agency.id, timezone=None)
    test_session.add(record)
    test_session.commit()
    return record


@pytest.fixture
def make_upload(test_session, agency, sample_client):
    """Factory for Upload rows belonging to sample_client."""

    def _make(name: str = "export.csv") -> Upload:
        upload = Upload(
            client_id=sample_client.id,
            uploaded_by_id=agency.id,
            filename=name,
            original_name=name,
        )
        test_session.add(upload)
        test_session.commit()
        return upload

    return _make


# ---------------------------------------------------------------------------
# FastAPI test client
#
# Route tests need data written in the test to be visible to the routes.
# SQLite :memory: databases are per-connection, so the seed session and the
# route sessions are all bound to one shared connection.
# ---------------------------------------------------------------------------


@pytest.fixture(scope="function")
def seeded_client(test_engine, tmp_path):
    """Return (TestClient, Session) where both use the same shared connection."""
    from postflow.main import app
    from postflow import config as app_config
    from postflow import database as app_db

    shared_conn = test_engine.connect()
    SharedSession = sessionmaker(autocommit=False, autoflush=False, bind=shared_conn)

    def override_get_session():
        s = SharedSession()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_session] = override_get_session

    # Mutate the settings singleton in place so every module that imported
    # it sees the override
    original_data_dir = app_config.settings.__dict__["data_dir"]
    app_config.settings.__dict__["data_dir"] = tmp_path

    original_engine = app_db.engine
    original_session_local = app_db.SessionLocal
    app_db.engine = test_engine
    app_db.SessionLocal = SharedSession

    seed_session = SharedSession()

    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, seed_session

    seed_session.close()
    shared_conn.close()
    app.dependency_overrides.clear()
    app_db.engine = original_engine
    app_db.SessionLocal = original_session_local
    app_config.settings.__dict__["data_dir"] = original_data_dir


@pytest.fixture
def strict_parsing():
    """Enable strict parsing for one test."""
    from postflow import config as app_config

    original = app_config.settings.__dict__["strict_parsing"]
    app_config.settings.__dict__["strict_parsing"] = True
    yield
    app_config.settings.__dict__["strict_parsing"] = original


# ---------------------------------------------------------------------------
# Workbook helpers
# ---------------------------------------------------------------------------


def build_workbook(header: list[str], rows: list[list]) -> bytes:
    """Build a one-sheet .xlsx in memory."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(header)
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def workbook_bytes():
    return build_workbook
