import uuid
from datetime import datetime
from typing import List, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Exercise id used for a superset slot that still awaits a real exercise
PLACEHOLDER_EXERCISE_ID = "placeholder"
PLACEHOLDER_EXERCISE_NAME = "Choose exercise"
DEFAULT_EXERCISE_NAME = "Exercise"

DEFAULT_SETS = 3
DEFAULT_REPS = 10
DEFAULT_WEIGHT = 0
DEFAULT_REST_SECONDS = 90
MIN_REST_SECONDS = 30
MAX_REST_SECONDS = 600

# Rest durations the authoring UI lets the user pick from
REST_TIME_OPTIONS: Tuple[int, ...] = (
    30, 45, 60, 75, 90, 105, 120, 150, 180,
    210, 240, 300, 360, 420, 480, 540, 600,
)

BlockType = Literal["single", "superset"]


def fit_array(values: List[int] | None, size: int, base: int) -> List[int]:
    """Resize a per-set array to exactly ``size`` entries.

    Growing repeats the last element (or ``base`` when the array is empty)
    for each new slot; shrinking truncates from the tail.

    Examples:
        >>> fit_array([8, 10], 4, 12)
        [8, 10, 10, 10]
        >>> fit_array([8, 10, 10, 10], 2, 12)
        [8, 10]
        >>> fit_array([], 2, 12)
        [12, 12]
    """
    values = list(values or [])
    if len(values) >= size:
        return values[:size]
    fill = values[-1] if values else base
    return values + [fill] * (size - len(values))


def new_block_id() -> str:
    return uuid.uuid4().hex


class ExercisePick(BaseModel):
    """Result of the exercise-selection UI: a catalog exercise reference."""

    id: str
    name: str | None = None
    image_url: str | None = None


class BlockExercise(BaseModel):
    """An exercise inside a block, with per-set targets.

    ``sets`` mirrors the parent block; ``reps_by_set`` and ``weight_by_set``
    always hold exactly ``sets`` entries.
    """

    exercise_id: str
    name: str = DEFAULT_EXERCISE_NAME
    image_url: str | None = None
    reps: int = DEFAULT_REPS  # Base target reps
    sets: int = DEFAULT_SETS
    reps_by_set: List[int] = []
    weight_by_set: List[int] = []

    @property
    def is_placeholder(self) -> bool:
        return self.exercise_id == PLACEHOLDER_EXERCISE_ID

    @classmethod
    def from_pick(cls, pick: ExercisePick, sets: int) -> "BlockExercise":
        """Build a fresh exercise with default targets for ``sets`` sets."""
        return cls(
            exercise_id=pick.id,
            name=pick.name or DEFAULT_EXERCISE_NAME,
            image_url=pick.image_url,
            reps=DEFAULT_REPS,
            sets=sets,
            reps_by_set=[DEFAULT_REPS] * sets,
            weight_by_set=[DEFAULT_WEIGHT] * sets,
        )

    @classmethod
    def placeholder(cls, sets: int) -> "BlockExercise":
        return cls.from_pick(
            ExercisePick(id=PLACEHOLDER_EXERCISE_ID, name=PLACEHOLDER_EXERCISE_NAME),
            sets,
        )


class Block(BaseModel):
    """An ordered group of exercises sharing a set count and rest period.

    A ``single`` block holds exactly one exercise; a ``superset`` holds two
    or more, performed back to back (an unresolved placeholder counts).
    """

    id: str = Field(default_factory=new_block_id)
    type: BlockType = "single"
    sets: int = Field(default=DEFAULT_SETS, ge=1)
    rest_seconds: int = Field(
        default=DEFAULT_REST_SECONDS, ge=MIN_REST_SECONDS, le=MAX_REST_SECONDS
    )
    order_index: int = 0
    exercises: List[BlockExercise]

    @model_validator(mode="after")
    def check_structure(self) -> "Block":
        if self.type == "single" and len(self.exercises) != 1:
            raise ValueError("A single block must contain exactly one exercise")
        if self.type == "superset" and len(self.exercises) < 2:
            raise ValueError("A superset block must contain at least two exercises")
        for exercise in self.exercises:
            if exercise.sets != self.sets:
                raise ValueError(
                    f"Exercise {exercise.exercise_id} has {exercise.sets} sets, "
                    f"block has {self.sets}"
                )
            if (
                len(exercise.reps_by_set) != self.sets
                or len(exercise.weight_by_set) != self.sets
            ):
                raise ValueError(
                    f"Per-set arrays of exercise {exercise.exercise_id} "
                    f"must have {self.sets} entries"
                )
        return self


class RoutineDetail(BaseModel):
    id: str
    title: str
    description: str | None = None


class Routine(BaseModel):
    """A routine with its block tree ordered by ``order_index``."""

    id: str
    title: str
    description: str | None = None
    blocks: List[Block] = []


class RoutineExerciseRow(BaseModel):
    """Flat persisted row: one per active exercise of a routine.

    ``order_index`` is dense per row; ``block_index`` is the dense position
    of the source block and groups superset rows back together on load.
    Rows written before ``block_index`` existed carry None.
    """

    routine_id: str
    exercise_id: str
    sets: int
    reps: int
    rest_seconds: int
    order_index: int
    block_index: int | None = None
    reps_by_set: List[int] | None = None
    weight_by_set: List[int] | None = None
    exercise_name: str | None = None
    exercise_image_url: str | None = None


class LoadedRoutine(BaseModel):
    routine: RoutineDetail
    rows: List[RoutineExerciseRow]


# Completed sessions are write-once snapshots, hence frozen models and tuples


class CompletedExercise(BaseModel):
    model_config = ConfigDict(frozen=True)

    exercise_id: str
    name: str = DEFAULT_EXERCISE_NAME
    image_url: str | None = None
    sets_completed: int = Field(ge=0)
    reps_per_set: Tuple[int, ...]
    weight_per_set: Tuple[int, ...]


class CompletedBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: BlockType
    sets_completed: int = Field(ge=0)
    rest_seconds: int
    exercises: Tuple[CompletedExercise, ...]


class CompletedSession(BaseModel):
    """Denormalized record of what was actually performed in one session."""

    model_config = ConfigDict(frozen=True)

    routine_id: str
    blocks: Tuple[CompletedBlock, ...]
    start_time: datetime
    end_time: datetime
    warmup_completed: bool = False
    notes: str | None = None

    @model_validator(mode="after")
    def check_times(self) -> "CompletedSession":
        if self.end_time < self.start_time:
            raise ValueError("Session end_time is before start_time")
        return self

    @property
    def total_duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)


# Response models for stored session history


class SessionExerciseResponse(BaseModel):
    exercise_id: str
    exercise_name: str | None = None
    exercise_image_url: str | None = None
    exercise_order: int
    sets_completed: int
    reps_per_set: List[int]
    weight_per_set: List[int]


class SessionBlockResponse(BaseModel):
    block_order: int
    block_type: BlockType
    sets_completed: int
    rest_seconds: int
    exercises: List[SessionExerciseResponse]


class SessionSummaryResponse(BaseModel):
    """A stored completed session without its blocks."""

    id: str
    routine_id: str | None = None
    routine_title: str | None = None
    started_at: datetime
    completed_at: datetime
    total_duration_minutes: int
    warmup_completed: bool
    notes: str | None = None


class SessionDetailResponse(SessionSummaryResponse):
    blocks: List[SessionBlockResponse]
