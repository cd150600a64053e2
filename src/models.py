"""SQLAlchemy database models."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from database import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


class UserDB(Base):
    """Local user record linked to a Firebase account."""

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    firebase_uid = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<UserDB(id={self.id}, email={self.email})>"


class ExerciseDB(Base):
    """Catalog exercise. Ids are opaque strings chosen by the catalog."""

    __tablename__ = "exercises"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    image_url = Column(String, nullable=True)

    def __repr__(self):
        return f"<ExerciseDB(id={self.id}, name={self.name})>"


class RoutineDB(Base):
    """Database model for routines.

    The block structure is stored flattened in RoutineExerciseDB rows.
    """

    __tablename__ = "routines"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    exercise_rows = relationship(
        "RoutineExerciseDB",
        order_by="RoutineExerciseDB.order_index",
        back_populates="routine",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<RoutineDB(id={self.id}, title={self.title})>"


class RoutineExerciseDB(Base):
    """One flattened exercise row of a routine.

    ``order_index`` is dense per row; ``block_index`` groups rows of the
    same block (NULL for rows written before grouping was stored).
    """

    __tablename__ = "routine_exercises"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    routine_id = Column(
        Uuid, ForeignKey("routines.id", ondelete="CASCADE"), nullable=False
    )
    exercise_id = Column(String, ForeignKey("exercises.id"), nullable=False)
    sets = Column(Integer, nullable=False)
    reps = Column(Integer, nullable=False)
    rest_seconds = Column(Integer, nullable=False)
    order_index = Column(Integer, nullable=False)
    block_index = Column(Integer, nullable=True)
    reps_by_set = Column(JSONType, nullable=True)
    weight_by_set = Column(JSONType, nullable=True)

    routine = relationship("RoutineDB", back_populates="exercise_rows")
    exercise = relationship("ExerciseDB")

    __table_args__ = (
        UniqueConstraint("routine_id", "order_index", name="uq_routine_order"),
    )

    def __repr__(self):
        return (
            f"<RoutineExerciseDB(routine_id={self.routine_id}, "
            f"exercise_id={self.exercise_id}, order={self.order_index})>"
        )


class CompletedSessionDB(Base):
    """A recorded workout session. Blocks and exercises hang off it."""

    __tablename__ = "completed_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    routine_id = Column(
        Uuid, ForeignKey("routines.id", ondelete="SET NULL"), nullable=True
    )
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=False)
    total_duration_minutes = Column(Integer, nullable=False, default=0)
    warmup_completed = Column(Boolean, nullable=False, default=False)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    routine = relationship("RoutineDB")
    blocks = relationship(
        "SessionBlockDB",
        order_by="SessionBlockDB.block_order",
        back_populates="session",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<CompletedSessionDB(id={self.id}, routine_id={self.routine_id})>"


class SessionBlockDB(Base):
    __tablename__ = "session_blocks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(
        Uuid, ForeignKey("completed_sessions.id", ondelete="CASCADE"), nullable=False
    )
    block_order = Column(Integer, nullable=False)  # 1-based
    block_type = Column(String, nullable=False)  # "single" or "superset"
    sets_completed = Column(Integer, nullable=False)
    rest_seconds = Column(Integer, nullable=False)

    session = relationship("CompletedSessionDB", back_populates="blocks")
    exercises = relationship(
        "SessionExerciseDB",
        order_by="SessionExerciseDB.exercise_order",
        back_populates="block",
        cascade="all, delete-orphan",
    )


class SessionExerciseDB(Base):
    __tablename__ = "session_exercises"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_block_id = Column(
        Uuid, ForeignKey("session_blocks.id", ondelete="CASCADE"), nullable=False
    )
    exercise_id = Column(String, ForeignKey("exercises.id"), nullable=False)
    exercise_order = Column(Integer, nullable=False)  # 1-based
    sets_completed = Column(Integer, nullable=False)
    reps_per_set = Column(JSONType, nullable=False)
    weight_per_set = Column(JSONType, nullable=False)

    block = relationship("SessionBlockDB", back_populates="exercises")
    exercise = relationship("ExerciseDB")
