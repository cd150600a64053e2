"""REST API endpoints for completed-session history."""

from typing import List

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from events import LoggingObserver
from routine_store import SqlRoutineStore
from routines_api import get_routine_store
from session_recorder import SessionRecorder
from typedefs import CompletedSession, SessionDetailResponse, SessionSummaryResponse

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


class SessionCreatedResponse(BaseModel):
    id: str


@router.post("", response_model=SessionCreatedResponse, status_code=201)
def record_session(
    session: CompletedSession,
    store: SqlRoutineStore = Depends(get_routine_store),
) -> SessionCreatedResponse:
    """Store a completed session with its blocks and exercises in one write."""
    recorder = SessionRecorder(store, observer=LoggingObserver(level="INFO"))
    return SessionCreatedResponse(id=recorder.record(session))


@router.get("", response_model=List[SessionSummaryResponse])
def list_sessions(
    store: SqlRoutineStore = Depends(get_routine_store),
) -> List[SessionSummaryResponse]:
    """List the user's sessions, newest first, with routine titles."""
    return store.list_sessions()


@router.get("/{session_id}", response_model=SessionDetailResponse)
def get_session(
    session_id: str,
    store: SqlRoutineStore = Depends(get_routine_store),
) -> SessionDetailResponse:
    return store.get_session(session_id)


@router.delete("/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    store: SqlRoutineStore = Depends(get_routine_store),
) -> Response:
    """Delete a session together with its blocks and exercises."""
    store.delete_session(session_id)
    return Response(status_code=204)
