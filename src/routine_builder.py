"""Authoring API over a routine's block tree.

``RoutineBuilder`` is the single owner of a routine's blocks while it is
being edited. Every command works on a copy of the affected block and swaps
the result in only once it is complete, so callers never observe a
half-applied change. Views read snapshots (``builder.blocks``) and send
commands back; they never keep their own copy of the per-set arrays.
"""

import threading
from typing import Annotated, Callable, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from errors import OperationInProgressError, PersistenceError, RoutineError
from events import EventObserver, NullObserver, emit
from routine_store import RoutineStore
from routine_transform import flatten, unflatten
from typedefs import (
    DEFAULT_EXERCISE_NAME,
    DEFAULT_REST_SECONDS,
    DEFAULT_SETS,
    DEFAULT_WEIGHT,
    MAX_REST_SECONDS,
    MIN_REST_SECONDS,
    Block,
    BlockExercise,
    ExercisePick,
    Routine,
    RoutineDetail,
    RoutineExerciseRow,
    fit_array,
)

# ========== Command payloads ==========


class AddBlockCommand(BaseModel):
    op: Literal["add_block"] = "add_block"
    exercise: ExercisePick


class ConvertToSupersetCommand(BaseModel):
    op: Literal["convert_to_superset"] = "convert_to_superset"
    block_id: str


class SelectExerciseCommand(BaseModel):
    op: Literal["select_exercise"] = "select_exercise"
    block_id: str | None = None
    exercise: ExercisePick
    target_index: int | None = None


class SetBlockSetsCommand(BaseModel):
    op: Literal["set_block_sets"] = "set_block_sets"
    block_id: str
    delta: int


class SetBlockRestCommand(BaseModel):
    op: Literal["set_block_rest"] = "set_block_rest"
    block_id: str
    delta: int


class SetRepsAtSetCommand(BaseModel):
    op: Literal["set_reps_at_set"] = "set_reps_at_set"
    block_id: str
    exercise_index: int
    set_index: int
    value: int


class SetWeightAtSetCommand(BaseModel):
    op: Literal["set_weight_at_set"] = "set_weight_at_set"
    block_id: str
    exercise_index: int
    set_index: int
    value: int


class SetExerciseRepsCommand(BaseModel):
    op: Literal["set_exercise_reps"] = "set_exercise_reps"
    block_id: str
    exercise_index: int
    reps: int


class RemoveExerciseCommand(BaseModel):
    op: Literal["remove_exercise"] = "remove_exercise"
    block_id: str
    exercise_index: int


class RemoveBlockCommand(BaseModel):
    op: Literal["remove_block"] = "remove_block"
    block_id: str


BuilderCommand = Annotated[
    Union[
        AddBlockCommand,
        ConvertToSupersetCommand,
        SelectExerciseCommand,
        SetBlockSetsCommand,
        SetBlockRestCommand,
        SetRepsAtSetCommand,
        SetWeightAtSetCommand,
        SetExerciseRepsCommand,
        RemoveExerciseCommand,
        RemoveBlockCommand,
    ],
    Field(discriminator="op"),
]


class BuilderCommandList(BaseModel):
    """Commands applied in order, all or nothing."""

    commands: List[BuilderCommand] = Field(..., min_length=1)


# ========== Builder ==========


class RoutineBuilder:
    """Stateful mutation API over one routine's block tree.

    Commands are total: an unknown block id or an out-of-range index leaves
    the tree unchanged. Each command returns a snapshot of the new tree.

    Args:
        routine: Id and title of the routine being edited
        blocks: Initial block tree (copied)
        store: Persistence collaborator used by ``save``
        observer: Receives ``routine.saved`` / ``routine.save_failed`` events
    """

    def __init__(
        self,
        routine: RoutineDetail,
        blocks: Optional[List[Block]] = None,
        store: Optional[RoutineStore] = None,
        observer: Optional[EventObserver] = None,
    ):
        self.routine = routine
        self.rounds = 1
        self._blocks: List[Block] = [b.model_copy(deep=True) for b in blocks or []]
        self._store = store
        self._observer = observer or NullObserver()
        self._save_lock = threading.Lock()

    @classmethod
    def load(
        cls,
        store: RoutineStore,
        routine_id: str,
        observer: Optional[EventObserver] = None,
    ) -> "RoutineBuilder":
        """Create a builder from the rows held by ``store``."""
        loaded = store.load_routine(routine_id)
        return cls(
            loaded.routine, unflatten(loaded.rows), store=store, observer=observer
        )

    @property
    def blocks(self) -> List[Block]:
        return [block.model_copy(deep=True) for block in self._blocks]

    def to_routine(self) -> Routine:
        return Routine(
            id=self.routine.id,
            title=self.routine.title,
            description=self.routine.description,
            blocks=self.blocks,
        )

    def _update_block(
        self, block_id: str, update: Callable[[Block], Block | None]
    ) -> List[Block]:
        """Apply ``update`` to a copy of one block; None drops the block."""
        updated: List[Block] = []
        for block in self._blocks:
            if block.id == block_id:
                block = update(block.model_copy(deep=True))
                if block is None:
                    continue
            updated.append(block)
        self._blocks = updated
        return self.blocks

    # ========== Commands ==========

    def add_block(self, exercise: ExercisePick) -> List[Block]:
        """Append a single block with default sets and rest."""
        order_index = max((b.order_index for b in self._blocks), default=-1) + 1
        block = Block(
            type="single",
            sets=DEFAULT_SETS,
            rest_seconds=DEFAULT_REST_SECONDS,
            order_index=order_index,
            exercises=[BlockExercise.from_pick(exercise, DEFAULT_SETS)],
        )
        self._blocks = self._blocks + [block]
        return self.blocks

    def convert_to_superset(self, block_id: str) -> List[Block]:
        """Turn a single block into a superset with an empty second slot."""

        def convert(block: Block) -> Block:
            if block.type != "single":
                return block
            block.exercises.append(BlockExercise.placeholder(block.sets))
            block.type = "superset"
            return block

        return self._update_block(block_id, convert)

    def select_exercise_for_block(
        self,
        block_id: str | None,
        exercise: ExercisePick,
        target_index: int | None = None,
    ) -> List[Block]:
        """Put a picked exercise into a block.

        - ``target_index`` given: swap the exercise at that slot, keeping its
          targets ("change exercise").
        - otherwise the first placeholder is filled;
        - otherwise a single block has its exercise replaced and a superset
          gets the exercise appended.
        - ``block_id`` None: a new block is added instead.
        """
        if block_id is None:
            return self.add_block(exercise)

        def select(block: Block) -> Block:
            if target_index is not None:
                if 0 <= target_index < len(block.exercises):
                    current = block.exercises[target_index]
                    current.exercise_id = exercise.id
                    current.name = exercise.name or DEFAULT_EXERCISE_NAME
                    current.image_url = exercise.image_url
                return block

            new_exercise = BlockExercise.from_pick(exercise, block.sets)
            for index, current in enumerate(block.exercises):
                if current.is_placeholder:
                    block.exercises[index] = new_exercise
                    return block

            if block.type == "single":
                block.exercises = [new_exercise]
            else:
                block.exercises.append(new_exercise)
            return block

        return self._update_block(block_id, select)

    def set_block_sets(self, block_id: str, delta: int) -> List[Block]:
        """Change the set count (never below 1), resizing per-set arrays."""

        def resize(block: Block) -> Block:
            sets = max(1, block.sets + delta)
            block.sets = sets
            for exercise in block.exercises:
                exercise.sets = sets
                exercise.reps_by_set = fit_array(
                    exercise.reps_by_set, sets, exercise.reps
                )
                exercise.weight_by_set = fit_array(
                    exercise.weight_by_set, sets, DEFAULT_WEIGHT
                )
            return block

        return self._update_block(block_id, resize)

    def set_block_rest(self, block_id: str, delta: int) -> List[Block]:
        def change_rest(block: Block) -> Block:
            block.rest_seconds = max(
                MIN_REST_SECONDS, min(MAX_REST_SECONDS, block.rest_seconds + delta)
            )
            return block

        return self._update_block(block_id, change_rest)

    def _set_at(
        self, block_id: str, exercise_index: int, set_index: int, value: int, field: str
    ) -> List[Block]:
        def write(block: Block) -> Block:
            if not 0 <= exercise_index < len(block.exercises):
                return block
            values = getattr(block.exercises[exercise_index], field)
            if 0 <= set_index < len(values):
                values[set_index] = max(0, value)
            return block

        return self._update_block(block_id, write)

    def set_exercise_reps_at_set(
        self, block_id: str, exercise_index: int, set_index: int, value: int
    ) -> List[Block]:
        return self._set_at(block_id, exercise_index, set_index, value, "reps_by_set")

    def set_exercise_weight_at_set(
        self, block_id: str, exercise_index: int, set_index: int, value: int
    ) -> List[Block]:
        return self._set_at(
            block_id, exercise_index, set_index, value, "weight_by_set"
        )

    def set_exercise_reps(
        self, block_id: str, exercise_index: int, reps: int
    ) -> List[Block]:
        """Change the base target reps (at least 1) used to fill new sets."""

        def write(block: Block) -> Block:
            if 0 <= exercise_index < len(block.exercises):
                block.exercises[exercise_index].reps = max(1, reps)
            return block

        return self._update_block(block_id, write)

    def remove_exercise_from_block(
        self, block_id: str, exercise_index: int
    ) -> List[Block]:
        """Remove one exercise; a superset left with one becomes single.

        Removing the last exercise of a block removes the block.
        """

        def remove(block: Block) -> Block | None:
            if not 0 <= exercise_index < len(block.exercises):
                return block
            del block.exercises[exercise_index]
            if not block.exercises:
                return None
            if len(block.exercises) <= 1:
                block.type = "single"
            return block

        return self._update_block(block_id, remove)

    def remove_block(self, block_id: str) -> List[Block]:
        return self._update_block(block_id, lambda block: None)

    def set_rounds(self, rounds: int) -> int:
        # Authoring-only value; traversal and storage ignore it
        self.rounds = max(1, rounds)
        return self.rounds

    def apply(self, commands: List[BuilderCommand]) -> List[Block]:
        """Apply commands in order; if one fails none of them stick."""
        previous = self._blocks
        try:
            for command in commands:
                self._dispatch(command)
        except Exception:
            self._blocks = previous
            raise
        return self.blocks

    def _dispatch(self, command: BuilderCommand) -> None:
        if isinstance(command, AddBlockCommand):
            self.add_block(command.exercise)
        elif isinstance(command, ConvertToSupersetCommand):
            self.convert_to_superset(command.block_id)
        elif isinstance(command, SelectExerciseCommand):
            self.select_exercise_for_block(
                command.block_id, command.exercise, command.target_index
            )
        elif isinstance(command, SetBlockSetsCommand):
            self.set_block_sets(command.block_id, command.delta)
        elif isinstance(command, SetBlockRestCommand):
            self.set_block_rest(command.block_id, command.delta)
        elif isinstance(command, SetRepsAtSetCommand):
            self.set_exercise_reps_at_set(
                command.block_id, command.exercise_index, command.set_index, command.value
            )
        elif isinstance(command, SetWeightAtSetCommand):
            self.set_exercise_weight_at_set(
                command.block_id, command.exercise_index, command.set_index, command.value
            )
        elif isinstance(command, SetExerciseRepsCommand):
            self.set_exercise_reps(
                command.block_id, command.exercise_index, command.reps
            )
        elif isinstance(command, RemoveExerciseCommand):
            self.remove_exercise_from_block(command.block_id, command.exercise_index)
        elif isinstance(command, RemoveBlockCommand):
            self.remove_block(command.block_id)
        else:
            raise TypeError(f"Unknown builder command: {command!r}")

    # ========== Persistence ==========

    def save(self) -> List[RoutineExerciseRow]:
        """Flatten the tree and replace the routine's stored rows.

        Only one save may run at a time per builder; a concurrent call is
        rejected rather than interleaved. Failures are not retried here.

        Returns:
            The rows that were written

        Raises:
            ValidationError: If the tree can't be flattened or names an
                exercise missing from the catalog
            OperationInProgressError: If another save is still running
            PersistenceError: If the store fails
        """
        if self._store is None:
            raise PersistenceError(
                f"No store configured for routine {self.routine.id}"
            )
        if not self._save_lock.acquire(blocking=False):
            raise OperationInProgressError(
                f"A save is already in progress for routine {self.routine.id}"
            )

        try:
            rows = flatten(self.to_routine())
            self._store.save_routine(self.routine.id, rows)
        except RoutineError as e:
            emit(
                self._observer,
                "routine.save_failed",
                routine_id=self.routine.id,
                error=str(e),
            )
            raise
        finally:
            self._save_lock.release()

        emit(self._observer, "routine.saved", routine_id=self.routine.id, rows=len(rows))
        return rows
