"""REST API endpoints for routine authoring."""

from typing import List

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth import AuthenticatedUser, get_or_create_user
from database import get_db
from events import LoggingObserver
from routine_builder import BuilderCommandList, RoutineBuilder
from routine_store import SqlRoutineStore
from typedefs import REST_TIME_OPTIONS, Block, Routine, RoutineDetail

router = APIRouter(prefix="/api/v1", tags=["routines"])


def get_routine_store(
    db: Session = Depends(get_db),
    user: AuthenticatedUser = Depends(get_or_create_user),
) -> SqlRoutineStore:
    """Store scoped to the authenticated user."""
    return SqlRoutineStore(db, user.user_id)


class RoutineCreateRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: str | None = None


class ReplaceBlocksRequest(BaseModel):
    """Full block tree to store in place of the current one."""

    blocks: List[Block]


class RestOptionsResponse(BaseModel):
    rest_seconds: List[int]


@router.get(
    "/rest-options",
    response_model=RestOptionsResponse,
    dependencies=[Depends(get_or_create_user)],
)
def get_rest_options() -> RestOptionsResponse:
    """Rest durations (seconds) offered when configuring a block."""
    return RestOptionsResponse(rest_seconds=list(REST_TIME_OPTIONS))


@router.post("/routines", response_model=RoutineDetail, status_code=201)
def create_routine(
    request: RoutineCreateRequest,
    store: SqlRoutineStore = Depends(get_routine_store),
) -> RoutineDetail:
    """Create an empty routine for the authenticated user."""
    return store.create_routine(request.title, request.description)


@router.get("/routines", response_model=List[RoutineDetail])
def list_routines(
    store: SqlRoutineStore = Depends(get_routine_store),
) -> List[RoutineDetail]:
    return store.list_routines()


@router.get("/routines/{routine_id}", response_model=Routine)
def get_routine(
    routine_id: str,
    store: SqlRoutineStore = Depends(get_routine_store),
) -> Routine:
    """Get a routine with its blocks rebuilt from the stored rows."""
    return RoutineBuilder.load(store, routine_id).to_routine()


@router.delete("/routines/{routine_id}", status_code=204)
def delete_routine(
    routine_id: str,
    store: SqlRoutineStore = Depends(get_routine_store),
) -> Response:
    """Delete a routine. Sessions recorded from it stay in the history."""
    store.delete_routine(routine_id)
    return Response(status_code=204)


@router.put("/routines/{routine_id}/blocks", response_model=Routine)
def replace_blocks(
    routine_id: str,
    request: ReplaceBlocksRequest,
    store: SqlRoutineStore = Depends(get_routine_store),
) -> Routine:
    """Replace the routine's whole block tree.

    Blocks must be complete: a placeholder exercise is rejected with 422.
    """
    loaded = store.load_routine(routine_id)
    builder = RoutineBuilder(
        loaded.routine, request.blocks, store=store, observer=LoggingObserver()
    )
    builder.save()
    return RoutineBuilder.load(store, routine_id).to_routine()


@router.post("/routines/{routine_id}/blocks/commands", response_model=Routine)
def apply_commands(
    routine_id: str,
    request: BuilderCommandList,
    store: SqlRoutineStore = Depends(get_routine_store),
) -> Routine:
    """Apply builder commands to the stored routine and save the result.

    Block ids in commands are the ones returned by ``GET /routines/{id}``.
    Either every command applies and the result is saved, or nothing
    changes.
    """
    builder = RoutineBuilder.load(store, routine_id, observer=LoggingObserver())
    builder.apply(request.commands)
    builder.save()
    return RoutineBuilder.load(store, routine_id).to_routine()
