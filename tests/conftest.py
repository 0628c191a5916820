"""Pytest fixtures."""

import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("EVIDENCE_STORAGE_DIR", tempfile.mkdtemp(prefix="sos-evidence-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from safety_engine.core.security import create_access_token
from safety_engine.db.base import Base
from safety_engine.db.session import get_db
from safety_engine.db.store import SqlAlchemySosStore
from safety_engine.engine import SafetyEngine
from safety_engine.main import app
from safety_engine.models import SosEscalation, SosEvent, SosEvidence, ZoneRecord  # noqa: F401 - register for create_all
from safety_engine.services.collaborators import Identity, StaticIdentity
from safety_engine.services.evidence_service import LocalEvidenceStorage

TEST_DATABASE_URL = os.environ["DATABASE_URL"]

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="session")
def setup_db():
    """Create tables once for test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(setup_db):
    """Test client with overridden DB."""
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(user_id: str, role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


@pytest.fixture
def new_user_id():
    """Fresh user id per call, so API tests never share rate-limit or active-event state."""
    return lambda prefix="user": f"{prefix}-{uuid.uuid4().hex[:12]}"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def db():
    """Private in-memory database per test for engine-level tests."""
    mem_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=mem_engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=mem_engine)()
    try:
        yield session
    finally:
        session.close()
        mem_engine.dispose()


class RecordingPublisher:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str | None, dict]] = []

    def publish(self, topic, owner_id, payload) -> None:
        self.messages.append((topic, owner_id, payload))

    @property
    def topics(self) -> list[str]:
        return [m[0] for m in self.messages]


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def make_engine(db, clock, publisher, tmp_path):
    """Build a SafetyEngine on the private database for a given caller."""

    def _make(user_id: str | None = "alice", role: str = "user", **kwargs) -> SafetyEngine:
        identity = StaticIdentity(Identity(user_id, role) if user_id is not None else None)
        kwargs.setdefault("publisher", publisher)
        kwargs.setdefault("evidence_storage", LocalEvidenceStorage(tmp_path / "evidence"))
        return SafetyEngine(SqlAlchemySosStore(db), identity, clock=clock, **kwargs)

    return _make
