"""REST API endpoints for the shared exercise catalog."""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from routine_store import SqlRoutineStore
from routines_api import get_routine_store
from typedefs import ExercisePick

router = APIRouter(prefix="/api/v1/exercises", tags=["exercises"])


class ExerciseCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    image_url: str | None = None
    # Generated when omitted
    id: str | None = Field(None, min_length=1)


@router.get("", response_model=List[ExercisePick])
def list_exercises(
    store: SqlRoutineStore = Depends(get_routine_store),
) -> List[ExercisePick]:
    """Catalog exercises ordered by name; their ids are valid ``exercise_id``s."""
    return store.list_exercises()


@router.post("", response_model=ExercisePick, status_code=201)
def create_exercise(
    request: ExerciseCreateRequest,
    store: SqlRoutineStore = Depends(get_routine_store),
) -> ExercisePick:
    return store.create_exercise(request.name, request.image_url, request.id)
