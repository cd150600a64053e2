"""Tests for completed-session API endpoints."""

from uuid import uuid4

import pytest
from deepdiff import DeepDiff
from fastapi.testclient import TestClient

from auth import get_or_create_user
from database import get_db
from errors import NotFoundError
from main import app
from models import CompletedSessionDB, SessionBlockDB
from routine_store import SqlRoutineStore


@pytest.fixture
def client(db_session, test_authenticated_user, mock_firebase_auth, exercise_catalog):
    """Create test client with database and auth overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    def override_auth():
        return test_authenticated_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_or_create_user] = override_auth

    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def routine(db_session, test_user):
    return SqlRoutineStore(db_session, test_user.id).create_routine("Full Body")


def session_payload(routine_id: str, started: str = "2025-04-01T07:00:00") -> dict:
    return {
        "routine_id": routine_id,
        "start_time": started,
        "end_time": "2025-04-01T08:05:00",
        "warmup_completed": True,
        "notes": "felt strong",
        "blocks": [
            {
                "type": "superset",
                "sets_completed": 2,
                "rest_seconds": 90,
                "exercises": [
                    {"exercise_id": "bench", "sets_completed": 2,
                     "reps_per_set": [8, 8], "weight_per_set": [60, 62]},
                    {"exercise_id": "row", "sets_completed": 2,
                     "reps_per_set": [10, 10], "weight_per_set": [50, 50]},
                ],
            }
        ],
    }


def test_record_session(client, routine, db_session):
    response = client.post("/api/v1/sessions", json=session_payload(routine.id))

    assert response.status_code == 201
    session_id = response.json()["id"]
    stored = db_session.query(CompletedSessionDB).one()
    assert str(stored.id) == session_id
    assert stored.total_duration_minutes == 65
    assert stored.notes == "felt strong"


def test_record_session_rejects_end_before_start(client, routine):
    payload = session_payload(routine.id, started="2025-04-01T09:00:00")

    response = client.post("/api/v1/sessions", json=payload)

    assert response.status_code == 422


def test_record_session_unknown_routine(client, routine):
    response = client.post("/api/v1/sessions", json=session_payload(str(uuid4())))

    assert response.status_code == 404


def test_list_sessions(client, routine):
    client.post("/api/v1/sessions", json=session_payload(routine.id))

    response = client.get("/api/v1/sessions")

    assert response.status_code == 200
    (summary,) = response.json()
    assert summary["routine_id"] == routine.id
    assert summary["routine_title"] == "Full Body"
    assert summary["total_duration_minutes"] == 65
    assert summary["warmup_completed"] is True
    assert "blocks" not in summary


def test_get_session_detail(client, routine):
    session_id = client.post(
        "/api/v1/sessions", json=session_payload(routine.id)
    ).json()["id"]

    response = client.get(f"/api/v1/sessions/{session_id}")

    assert response.status_code == 200
    expected_blocks = [
        {
            "block_order": 1,
            "block_type": "superset",
            "sets_completed": 2,
            "rest_seconds": 90,
            "exercises": [
                {"exercise_id": "bench", "exercise_name": "Bench Press",
                 "exercise_image_url": None, "exercise_order": 1,
                 "sets_completed": 2, "reps_per_set": [8, 8],
                 "weight_per_set": [60, 62]},
                {"exercise_id": "row", "exercise_name": "Barbell Row",
                 "exercise_image_url": None, "exercise_order": 2,
                 "sets_completed": 2, "reps_per_set": [10, 10],
                 "weight_per_set": [50, 50]},
            ],
        }
    ]
    diff = DeepDiff(expected_blocks, response.json()["blocks"])
    assert not diff, diff.pretty()


def test_get_session_not_found(client):
    response = client.get(f"/api/v1/sessions/{uuid4()}")

    assert response.status_code == 404


def test_delete_session(client, routine, db_session):
    session_id = client.post(
        "/api/v1/sessions", json=session_payload(routine.id)
    ).json()["id"]

    response = client.delete(f"/api/v1/sessions/{session_id}")

    assert response.status_code == 204
    assert client.get(f"/api/v1/sessions/{session_id}").status_code == 404
    assert db_session.query(SessionBlockDB).count() == 0


def test_sessions_of_other_users_are_hidden(client, db_session, routine):
    session_id = client.post(
        "/api/v1/sessions", json=session_payload(routine.id)
    ).json()["id"]
    other = SqlRoutineStore(db_session, uuid4())

    assert other.list_sessions() == []
    with pytest.raises(NotFoundError):
        other.get_session(session_id)
