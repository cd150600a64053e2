"""Pytest configuration and shared fixtures."""

import os
from typing import Callable, List
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from auth import AuthenticatedUser, FirebaseUser
from database import Base
from models import ExerciseDB, UserDB


def get_test_db_url():
    """Get the test database URL from environment or use in-memory SQLite."""
    return os.environ.get("TEST_DATABASE_URL", "sqlite://")


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine that persists for the entire test session."""
    db_url = get_test_db_url()

    if db_url.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory DB
        engine = create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(db_url, echo=False)

    yield engine

    engine.dispose()


@pytest.fixture
def db_session(test_engine):
    """Create a new database session on freshly created tables for each test."""
    Base.metadata.create_all(bind=test_engine)

    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=test_engine
    )
    session = TestingSessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=test_engine)


# Catalog fixtures


@pytest.fixture
def exercise_catalog(db_session: Session) -> List[ExerciseDB]:
    """Seed a few catalog exercises."""
    exercises = [
        ExerciseDB(id="squat", name="Back Squat", image_url="https://img/squat.png"),
        ExerciseDB(id="bench", name="Bench Press", image_url=None),
        ExerciseDB(id="row", name="Barbell Row", image_url=None),
        ExerciseDB(id="curl", name="Bicep Curl", image_url=None),
    ]
    db_session.add_all(exercises)
    db_session.commit()
    return exercises


# Authentication fixtures


@pytest.fixture
def mock_firebase_auth():
    """Mock Firebase auth for testing."""
    with patch("auth.get_firebase_auth") as mock:
        mock_auth = MagicMock()
        mock.return_value = mock_auth
        yield mock_auth


@pytest.fixture
def test_firebase_user() -> FirebaseUser:
    """Create a test Firebase user."""
    return FirebaseUser(
        uid="test_firebase_uid_123",
        email="test@example.com",
        email_verified=True,
        claims={"uid": "test_firebase_uid_123", "email": "test@example.com"},
    )


@pytest.fixture
def test_user(db_session: Session, test_firebase_user: FirebaseUser) -> UserDB:
    """Create a test user in the database."""
    user = UserDB(
        firebase_uid=test_firebase_user.uid,
        email=test_firebase_user.email,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def test_authenticated_user(
    test_user: UserDB, test_firebase_user: FirebaseUser
) -> AuthenticatedUser:
    """Create a test authenticated user context."""
    return AuthenticatedUser(
        firebase_uid=test_user.firebase_uid,
        user_id=test_user.id,
        email=test_user.email,
        firebase_user=test_firebase_user,
    )


# Scheduler fixtures


class FakeTimer:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock with asyncio's ``call_later`` and ``time`` shape.

    ``advance(seconds)`` runs every due callback in time order, including
    ones scheduled by earlier callbacks.
    """

    def __init__(self):
        self.now = 0.0
        self.timers: List[FakeTimer] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.now = timer.due
            timer.callback()
        self.now = target


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()
