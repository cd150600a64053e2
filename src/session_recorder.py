"""Turns a finished session into a write-once ``CompletedSession``."""

import threading
from datetime import datetime
from typing import List, Mapping, Optional, Sequence, Tuple

import pydantic
from pydantic import BaseModel

from errors import (
    OperationInProgressError,
    PersistenceError,
    RoutineError,
    ValidationError,
)
from events import EventObserver, NullObserver, emit
from routine_store import RoutineStore
from session_engine import Phase, SessionCursor, SessionEngine
from typedefs import (
    DEFAULT_WEIGHT,
    Block,
    BlockExercise,
    CompletedBlock,
    CompletedExercise,
    CompletedSession,
)


class ExerciseActuals(BaseModel):
    """Reps and weights the user actually logged for one exercise."""

    reps_per_set: List[int] | None = None
    weight_per_set: List[int] | None = None


# Keyed by (block_index, exercise_index) within the played block tree
ActualsMap = Mapping[Tuple[int, int], ExerciseActuals]


def format_duration(start: datetime, end: datetime) -> str:
    """Human duration between two timestamps: ``"1h 5m"`` or ``"45m"``."""
    minutes = max(0, int((end - start).total_seconds() // 60))
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _sets_completed(
    blocks: Sequence[Block], cursor: SessionCursor
) -> List[List[int]]:
    """Completed set count for every exercise of every block.

    A naturally completed session did every set. Otherwise blocks before the
    cursor are done, the current block counts its finished sets (plus the
    running one for exercises already passed), later blocks are untouched.
    """
    if cursor.phase == Phase.COMPLETED and not cursor.finished_early:
        return [[block.sets] * len(block.exercises) for block in blocks]

    counts = []
    for block_index, block in enumerate(blocks):
        if block_index < cursor.block_index:
            counts.append([block.sets] * len(block.exercises))
        elif block_index == cursor.block_index:
            counts.append(
                [
                    min(
                        block.sets,
                        cursor.set_index
                        + (1 if exercise_index < cursor.exercise_index else 0),
                    )
                    for exercise_index in range(len(block.exercises))
                ]
            )
        else:
            counts.append([0] * len(block.exercises))
    return counts


def _per_set(
    actual: List[int] | None, planned: List[int], fallback: int, sets: int
) -> Tuple[int, ...]:
    if actual:
        return tuple(actual)
    if planned:
        return tuple(planned)
    return (fallback,) * sets


class SessionRecorder:
    """Builds completed-session snapshots and hands them to the store.

    ``build`` is pure; only ``record`` touches the store, and only one
    record may be in flight per recorder.

    Args:
        store: Persistence collaborator for ``record``
        observer: Receives ``session.recorded`` / ``session.record_failed``
    """

    def __init__(
        self,
        store: Optional[RoutineStore] = None,
        observer: Optional[EventObserver] = None,
    ):
        self._store = store
        self._observer = observer or NullObserver()
        self._record_lock = threading.Lock()

    def build(
        self,
        routine_id: str,
        blocks: Sequence[Block],
        cursor: SessionCursor,
        start_time: datetime,
        end_time: datetime,
        warmup_completed: bool,
        actuals: Optional[ActualsMap] = None,
        notes: Optional[str] = None,
    ) -> CompletedSession:
        """Snapshot what was performed.

        For each exercise, reps come from the logged actuals, then the
        planned ``reps_by_set``, then ``reps`` repeated per set. Weights
        fall back the same way, ending at 0. Placeholder slots are left out.

        Raises:
            ValidationError: If the snapshot is inconsistent (e.g. end
                before start)
        """
        actuals = actuals or {}
        counts = _sets_completed(blocks, cursor)

        try:
            completed_blocks = []
            for block_index, block in enumerate(blocks):
                exercises = []
                for exercise_index, exercise in enumerate(block.exercises):
                    if exercise.is_placeholder:
                        continue
                    exercises.append(
                        self._complete_exercise(
                            exercise,
                            block,
                            counts[block_index][exercise_index],
                            actuals.get((block_index, exercise_index)),
                        )
                    )
                if not exercises:
                    continue
                completed_blocks.append(
                    CompletedBlock(
                        # A superset with its open slot skipped was played as a single
                        type="single" if len(exercises) == 1 else block.type,
                        sets_completed=min(counts[block_index]),
                        rest_seconds=block.rest_seconds,
                        exercises=tuple(exercises),
                    )
                )

            return CompletedSession(
                routine_id=routine_id,
                blocks=tuple(completed_blocks),
                start_time=start_time,
                end_time=end_time,
                warmup_completed=warmup_completed,
                notes=notes,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid completed session: {e}") from e

    @staticmethod
    def _complete_exercise(
        exercise: BlockExercise,
        block: Block,
        sets_completed: int,
        actual: ExerciseActuals | None,
    ) -> CompletedExercise:
        actual = actual or ExerciseActuals()
        return CompletedExercise(
            exercise_id=exercise.exercise_id,
            name=exercise.name,
            image_url=exercise.image_url,
            sets_completed=sets_completed,
            reps_per_set=_per_set(
                actual.reps_per_set, exercise.reps_by_set, exercise.reps, block.sets
            ),
            weight_per_set=_per_set(
                actual.weight_per_set,
                exercise.weight_by_set,
                DEFAULT_WEIGHT,
                block.sets,
            ),
        )

    def build_from_engine(
        self,
        routine_id: str,
        engine: SessionEngine,
        warmup_completed: bool,
        actuals: Optional[ActualsMap] = None,
        notes: Optional[str] = None,
    ) -> CompletedSession:
        """Snapshot a finished engine; call after it reaches Completed."""
        if not engine.is_completed:
            raise ValidationError("Session is still running; finish it first")
        return self.build(
            routine_id=routine_id,
            blocks=engine.blocks,
            cursor=engine.cursor,
            start_time=engine.started_at,
            end_time=engine.ended_at or engine.started_at,
            warmup_completed=warmup_completed,
            actuals=actuals,
            notes=notes,
        )

    def record(self, session: CompletedSession) -> str:
        """Persist a snapshot through the store and return its id.

        Raises:
            OperationInProgressError: If another record is still running
            AuthRequiredError: If the store has no user
            PersistenceError: If the write fails
        """
        if self._store is None:
            raise PersistenceError("No store configured for session recording")
        if not self._record_lock.acquire(blocking=False):
            raise OperationInProgressError(
                f"A record is already in progress for routine {session.routine_id}"
            )

        try:
            session_id = self._store.record_session(session)
        except RoutineError as e:
            emit(
                self._observer,
                "session.record_failed",
                routine_id=session.routine_id,
                error=str(e),
            )
            raise
        finally:
            self._record_lock.release()

        emit(
            self._observer,
            "session.recorded",
            routine_id=session.routine_id,
            session_id=session_id,
            blocks=len(session.blocks),
        )
        return session_id
