from __future__ import annotations

from threading import Lock
from typing import List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from actiongate.db import Base
from actiongate.db.deps import get_db
from actiongate.enums import Role
from actiongate.errors import DispatchError
from actiongate.main import app
from actiongate.services.dispatch.base import Dispatcher, DispatchRequest, DispatchResult
from actiongate.services.tenant_service import add_staff, create_tenant


def _enable_foreign_keys(engine) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover - sqlite setup
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    _enable_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture()
def file_session_factory(tmp_path):
    """File-backed SQLite so each thread or session gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'actiongate.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    _enable_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def tenant(db):
    return create_tenant(db, "Maple Grove Care")


@pytest.fixture()
def staff(db, tenant):
    """One staff member per role, keyed by role."""
    return {role: add_staff(db, tenant.id, f"{role.value.title()} User", role) for role in Role}


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class RecordingDispatcher(Dispatcher):
    """Test dispatcher that records requests and can be told to fail."""

    def __init__(self, fail_with: str | None = None) -> None:
        self.fail_with = fail_with
        self.requests: List[DispatchRequest] = []
        self._lock = Lock()

    def dispatch(self, request: DispatchRequest) -> DispatchResult:
        with self._lock:
            self.requests.append(request)
        if self.fail_with:
            raise DispatchError(self.fail_with)
        return DispatchResult(external_ref=f"ext-{request.card_id}", detail="recorded")

    @property
    def calls(self) -> int:
        with self._lock:
            return len(self.requests)


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()
