"""Persistence collaborator for routines and completed sessions.

``RoutineStore`` is the contract the builder and recorder depend on;
``SqlRoutineStore`` implements it (plus history and catalog queries) with
SQLAlchemy.
"""

from typing import List, Protocol, Set
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import AuthRequiredError, NotFoundError, PersistenceError, ValidationError
from models import (
    CompletedSessionDB,
    ExerciseDB,
    RoutineDB,
    RoutineExerciseDB,
    SessionBlockDB,
    SessionExerciseDB,
)
from typedefs import (
    PLACEHOLDER_EXERCISE_ID,
    CompletedSession,
    ExercisePick,
    LoadedRoutine,
    RoutineDetail,
    RoutineExerciseRow,
    SessionBlockResponse,
    SessionDetailResponse,
    SessionExerciseResponse,
    SessionSummaryResponse,
)


class RoutineStore(Protocol):
    def load_routine(self, routine_id: str) -> LoadedRoutine: ...

    def save_routine(self, routine_id: str, rows: List[RoutineExerciseRow]) -> None:
        """Replace all rows of the routine with ``rows``, atomically."""
        ...

    def record_session(self, session: CompletedSession) -> str:
        """Write the session with its blocks and exercises, returning its id."""
        ...


def _parse_id(raw_id: str, kind: str) -> UUID:
    try:
        return UUID(str(raw_id))
    except ValueError as e:
        raise NotFoundError(f"{kind} {raw_id} not found") from e


def _routine_detail(routine: RoutineDB) -> RoutineDetail:
    return RoutineDetail(
        id=str(routine.id), title=routine.title, description=routine.description
    )


def _exercise_pick(exercise: ExerciseDB) -> ExercisePick:
    return ExercisePick(id=exercise.id, name=exercise.name, image_url=exercise.image_url)


class SqlRoutineStore:
    """SQLAlchemy-backed store scoped to one user.

    Every multi-statement write runs in a single transaction: either all of
    it is committed or it is rolled back and ``PersistenceError`` is raised.

    Args:
        db: Database session
        user_id: Local id of the authenticated user, or None when anonymous
    """

    def __init__(self, db: Session, user_id: UUID | None):
        self.db = db
        self.user_id = user_id

    def _get_routine(self, routine_id: str) -> RoutineDB:
        parsed_id = _parse_id(routine_id, "Routine")
        try:
            query = self.db.query(RoutineDB).filter(RoutineDB.id == parsed_id)
            if self.user_id is not None:
                query = query.filter(RoutineDB.user_id == self.user_id)
            routine = query.first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load routine {routine_id}: {e}") from e

        if not routine:
            raise NotFoundError(f"Routine {routine_id} not found")
        return routine

    def _get_session(self, session_id: str) -> CompletedSessionDB:
        if self.user_id is None:
            raise AuthRequiredError("Session history requires an authenticated user")

        parsed_id = _parse_id(session_id, "Session")
        try:
            session = (
                self.db.query(CompletedSessionDB)
                .filter(
                    CompletedSessionDB.id == parsed_id,
                    CompletedSessionDB.user_id == self.user_id,
                )
                .first()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load session {session_id}: {e}") from e

        if not session:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    # ========== Routines ==========

    def create_routine(
        self, title: str, description: str | None = None
    ) -> RoutineDetail:
        if self.user_id is None:
            raise AuthRequiredError("Creating a routine requires an authenticated user")

        routine = RoutineDB(user_id=self.user_id, title=title, description=description)
        try:
            self.db.add(routine)
            self.db.commit()
            self.db.refresh(routine)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to create routine: {e}") from e

        return _routine_detail(routine)

    def list_routines(self) -> List[RoutineDetail]:
        if self.user_id is None:
            raise AuthRequiredError("Listing routines requires an authenticated user")

        try:
            routines = (
                self.db.query(RoutineDB)
                .filter(RoutineDB.user_id == self.user_id)
                .order_by(RoutineDB.created_at.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list routines: {e}") from e
        return [_routine_detail(routine) for routine in routines]

    def delete_routine(self, routine_id: str) -> None:
        """Delete a routine and its rows.

        Completed sessions of the routine are kept with ``routine_id`` unset.

        Raises:
            AuthRequiredError: If the store has no authenticated user
            NotFoundError: If the routine doesn't exist or isn't the user's
            PersistenceError: If the delete fails; nothing is changed
        """
        if self.user_id is None:
            raise AuthRequiredError("Deleting a routine requires an authenticated user")

        routine = self._get_routine(routine_id)
        try:
            self.db.query(CompletedSessionDB).filter(
                CompletedSessionDB.routine_id == routine.id
            ).update({CompletedSessionDB.routine_id: None}, synchronize_session="fetch")
            self.db.delete(routine)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to delete routine {routine_id}: {e}") from e

    def load_routine(self, routine_id: str) -> LoadedRoutine:
        """Load a routine header and its rows ordered by ``order_index``.

        Raises:
            NotFoundError: If the routine doesn't exist or isn't the user's
            PersistenceError: If the query fails
        """
        routine = self._get_routine(routine_id)

        try:
            db_rows = (
                self.db.query(RoutineExerciseDB)
                .filter(RoutineExerciseDB.routine_id == routine.id)
                .order_by(RoutineExerciseDB.order_index)
                .all()
            )
            rows = [
                RoutineExerciseRow(
                    routine_id=str(row.routine_id),
                    exercise_id=row.exercise_id,
                    sets=row.sets,
                    reps=row.reps,
                    rest_seconds=row.rest_seconds,
                    order_index=row.order_index,
                    block_index=row.block_index,
                    reps_by_set=row.reps_by_set,
                    weight_by_set=row.weight_by_set,
                    exercise_name=row.exercise.name if row.exercise else None,
                    exercise_image_url=row.exercise.image_url if row.exercise else None,
                )
                for row in db_rows
            ]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load routine {routine_id}: {e}") from e

        return LoadedRoutine(
            routine=_routine_detail(routine),
            rows=rows,
        )

    def save_routine(self, routine_id: str, rows: List[RoutineExerciseRow]) -> None:
        """Replace every row of the routine (delete all, then insert all).

        Raises:
            NotFoundError: If the routine doesn't exist or isn't the user's
            ValidationError: If a row belongs to another routine
            ValidationError: If a row references an exercise missing from the
                catalog
            PersistenceError: If either half fails; nothing is changed
        """
        routine = self._get_routine(routine_id)

        for row in rows:
            if row.routine_id != str(routine.id):
                raise ValidationError(
                    f"Row for routine {row.routine_id} passed to routine {routine_id}"
                )

        self._check_catalog_ids({row.exercise_id for row in rows})

        try:
            self.db.query(RoutineExerciseDB).filter(
                RoutineExerciseDB.routine_id == routine.id
            ).delete()
            self.db.add_all(
                [
                    RoutineExerciseDB(
                        routine_id=routine.id,
                        exercise_id=row.exercise_id,
                        sets=row.sets,
                        reps=row.reps,
                        rest_seconds=row.rest_seconds,
                        order_index=row.order_index,
                        block_index=row.block_index,
                        reps_by_set=row.reps_by_set,
                        weight_by_set=row.weight_by_set,
                    )
                    for row in rows
                ]
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to save routine {routine_id}: {e}") from e

    # ========== Exercise catalog ==========

    def list_exercises(self) -> List[ExercisePick]:
        """Catalog exercises ordered by name."""
        try:
            exercises = self.db.query(ExerciseDB).order_by(ExerciseDB.name).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list exercises: {e}") from e
        return [_exercise_pick(exercise) for exercise in exercises]

    def create_exercise(
        self, name: str, image_url: str | None = None, exercise_id: str | None = None
    ) -> ExercisePick:
        """Add an exercise to the shared catalog.

        Raises:
            AuthRequiredError: If the store has no authenticated user
            ValidationError: If the id is reserved or already taken
            PersistenceError: If the insert fails
        """
        if self.user_id is None:
            raise AuthRequiredError("Adding an exercise requires an authenticated user")

        exercise_id = exercise_id or uuid4().hex
        if exercise_id == PLACEHOLDER_EXERCISE_ID:
            raise ValidationError(f"Exercise id {exercise_id} is reserved")

        try:
            if self.db.get(ExerciseDB, exercise_id) is not None:
                raise ValidationError(f"Exercise {exercise_id} already exists")
            exercise = ExerciseDB(id=exercise_id, name=name, image_url=image_url)
            self.db.add(exercise)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to add exercise {exercise_id}: {e}") from e

        return _exercise_pick(exercise)

    def _check_catalog_ids(self, exercise_ids: Set[str]) -> None:
        if not exercise_ids:
            return
        try:
            known = {
                row.id
                for row in self.db.query(ExerciseDB.id)
                .filter(ExerciseDB.id.in_(exercise_ids))
                .all()
            }
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to check exercise ids: {e}") from e

        unknown = sorted(exercise_ids - known)
        if unknown:
            raise ValidationError(f"Unknown exercise ids: {', '.join(unknown)}")

    # ========== Completed sessions ==========

    def record_session(self, session: CompletedSession) -> str:
        """Write a completed session with its blocks and exercises.

        All inserts share one transaction, so a failure never leaves a
        session without its blocks or exercises.

        Raises:
            AuthRequiredError: If the store has no authenticated user
            NotFoundError: If the routine doesn't exist or isn't the user's
            PersistenceError: If the write fails; nothing is stored
        """
        if self.user_id is None:
            raise AuthRequiredError("Recording a session requires an authenticated user")

        routine = self._get_routine(session.routine_id)

        db_session = CompletedSessionDB(
            user_id=self.user_id,
            routine_id=routine.id,
            started_at=session.start_time,
            completed_at=session.end_time,
            total_duration_minutes=session.total_duration_minutes,
            warmup_completed=session.warmup_completed,
            notes=session.notes,
        )
        for block_order, block in enumerate(session.blocks, start=1):
            db_block = SessionBlockDB(
                block_order=block_order,
                block_type=block.type,
                sets_completed=block.sets_completed,
                rest_seconds=block.rest_seconds,
            )
            for exercise_order, exercise in enumerate(block.exercises, start=1):
                db_block.exercises.append(
                    SessionExerciseDB(
                        exercise_id=exercise.exercise_id,
                        exercise_order=exercise_order,
                        sets_completed=exercise.sets_completed,
                        reps_per_set=list(exercise.reps_per_set),
                        weight_per_set=list(exercise.weight_per_set),
                    )
                )
            db_session.blocks.append(db_block)

        try:
            self.db.add(db_session)
            self.db.commit()
            self.db.refresh(db_session)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to record session: {e}") from e

        return str(db_session.id)

    def list_sessions(self) -> List[SessionSummaryResponse]:
        """List the user's completed sessions, newest first."""
        if self.user_id is None:
            raise AuthRequiredError("Session history requires an authenticated user")

        try:
            sessions = (
                self.db.query(CompletedSessionDB)
                .filter(CompletedSessionDB.user_id == self.user_id)
                .order_by(CompletedSessionDB.created_at.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list sessions: {e}") from e
        return [self._summarize(session) for session in sessions]

    def get_session(self, session_id: str) -> SessionDetailResponse:
        session = self._get_session(session_id)

        blocks = [
            SessionBlockResponse(
                block_order=block.block_order,
                block_type=block.block_type,
                sets_completed=block.sets_completed,
                rest_seconds=block.rest_seconds,
                exercises=[
                    SessionExerciseResponse(
                        exercise_id=exercise.exercise_id,
                        exercise_name=exercise.exercise.name if exercise.exercise else None,
                        exercise_image_url=(
                            exercise.exercise.image_url if exercise.exercise else None
                        ),
                        exercise_order=exercise.exercise_order,
                        sets_completed=exercise.sets_completed,
                        reps_per_set=exercise.reps_per_set,
                        weight_per_set=exercise.weight_per_set,
                    )
                    for exercise in block.exercises
                ],
            )
            for block in session.blocks
        ]
        return SessionDetailResponse(
            **self._summarize(session).model_dump(), blocks=blocks
        )

    def delete_session(self, session_id: str) -> None:
        """Delete a session; its blocks and exercises go with it."""
        session = self._get_session(session_id)
        try:
            self.db.delete(session)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to delete session {session_id}: {e}") from e

    @staticmethod
    def _summarize(session: CompletedSessionDB) -> SessionSummaryResponse:
        return SessionSummaryResponse(
            id=str(session.id),
            routine_id=str(session.routine_id) if session.routine_id else None,
            routine_title=session.routine.title if session.routine else None,
            started_at=session.started_at,
            completed_at=session.completed_at,
            total_duration_minutes=session.total_duration_minutes,
            warmup_completed=session.warmup_completed,
            notes=session.notes,
        )
