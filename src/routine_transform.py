"""Conversion between the nested block tree and flat persisted rows.

Both directions are pure: they either return a complete result or raise
``ValidationError`` without side effects.
"""

from typing import Iterable, List

from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError
from typedefs import (
    DEFAULT_EXERCISE_NAME,
    DEFAULT_REPS,
    DEFAULT_REST_SECONDS,
    DEFAULT_SETS,
    DEFAULT_WEIGHT,
    MAX_REST_SECONDS,
    MIN_REST_SECONDS,
    PLACEHOLDER_EXERCISE_ID,
    Block,
    BlockExercise,
    Routine,
    RoutineExerciseRow,
    fit_array,
)


def active_exercises(block: Block) -> List[BlockExercise]:
    """Exercises of a block that are written to storage.

    Single blocks persist only their first exercise; supersets persist every
    exercise except unresolved placeholders.
    """
    if block.type == "single":
        return block.exercises[:1]
    return [exercise for exercise in block.exercises if not exercise.is_placeholder]


def flatten(routine: Routine) -> List[RoutineExerciseRow]:
    """Flatten a routine into persisted rows.

    Blocks are emitted in ``order_index`` order. Row ``order_index`` is
    reassigned densely (0..n-1) and ``block_index`` records which block each
    row came from, so supersets can be regrouped by ``unflatten``.

    Args:
        routine: Routine with its block tree

    Returns:
        List of RoutineExerciseRow, one per active exercise

    Raises:
        ValidationError: If an active exercise has no usable exercise id, or
            a block's sets/rest are outside their bounds
    """
    rows: List[RoutineExerciseRow] = []
    ordered_blocks = sorted(routine.blocks, key=lambda block: block.order_index)

    for block_index, block in enumerate(ordered_blocks):
        if block.sets < 1:
            raise ValidationError(f"Block {block.id} must have at least one set")
        if not MIN_REST_SECONDS <= block.rest_seconds <= MAX_REST_SECONDS:
            raise ValidationError(
                f"Block {block.id} rest of {block.rest_seconds}s is outside "
                f"{MIN_REST_SECONDS}-{MAX_REST_SECONDS}s"
            )

        for exercise in active_exercises(block):
            exercise_id = exercise.exercise_id
            if (
                not isinstance(exercise_id, str)
                or not exercise_id
                or exercise_id == PLACEHOLDER_EXERCISE_ID
            ):
                raise ValidationError(
                    f"Invalid or missing exercise id in block {block.id}: "
                    f"{exercise_id!r}"
                )

            rows.append(
                RoutineExerciseRow(
                    routine_id=routine.id,
                    exercise_id=exercise_id,
                    sets=block.sets,
                    reps=exercise.reps,
                    rest_seconds=block.rest_seconds,
                    order_index=len(rows),
                    block_index=block_index,
                    reps_by_set=fit_array(
                        exercise.reps_by_set, block.sets, exercise.reps
                    ),
                    weight_by_set=fit_array(
                        exercise.weight_by_set, block.sets, DEFAULT_WEIGHT
                    ),
                    exercise_name=exercise.name,
                    exercise_image_url=exercise.image_url,
                )
            )

    return rows


def _group_rows(rows: List[RoutineExerciseRow]) -> List[List[RoutineExerciseRow]]:
    # Consecutive rows sharing a block_index form one block. Legacy rows
    # without a block_index always stand alone.
    groups: List[List[RoutineExerciseRow]] = []
    for row in rows:
        if (
            groups
            and row.block_index is not None
            and groups[-1][0].block_index == row.block_index
        ):
            groups[-1].append(row)
        else:
            groups.append([row])
    return groups


def _clamp_rest(seconds: int) -> int:
    # Rows written before rest bounds were enforced may fall outside them
    return max(MIN_REST_SECONDS, min(MAX_REST_SECONDS, seconds))


def _row_to_exercise(row: RoutineExerciseRow, sets: int) -> BlockExercise:
    reps = row.reps or DEFAULT_REPS
    return BlockExercise(
        exercise_id=row.exercise_id,
        name=row.exercise_name or DEFAULT_EXERCISE_NAME,
        image_url=row.exercise_image_url,
        reps=reps,
        sets=sets,
        reps_by_set=fit_array(row.reps_by_set, sets, reps),
        weight_by_set=fit_array(row.weight_by_set, sets, DEFAULT_WEIGHT),
    )


def unflatten(rows: Iterable[RoutineExerciseRow | dict]) -> List[Block]:
    """Rebuild the block tree from persisted rows.

    Rows are ordered by ``order_index``. Rows sharing a ``block_index``
    become one block (a superset when there is more than one), any other row
    becomes a single block. Block ids are positional (``block-0``,
    ``block-1``...) so the same rows always yield the same ids.

    Raises:
        ValidationError: If a row is malformed or yields an invalid block
    """
    try:
        parsed = [
            row
            if isinstance(row, RoutineExerciseRow)
            else RoutineExerciseRow.model_validate(row)
            for row in rows
        ]
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed routine row: {e}") from e

    parsed.sort(key=lambda row: row.order_index)

    blocks: List[Block] = []
    try:
        for position, group in enumerate(_group_rows(parsed)):
            first = group[0]
            sets = first.sets or DEFAULT_SETS
            rest = _clamp_rest(first.rest_seconds or DEFAULT_REST_SECONDS)
            blocks.append(
                Block(
                    id=f"block-{position}",
                    type="superset" if len(group) > 1 else "single",
                    sets=sets,
                    rest_seconds=rest,
                    order_index=first.order_index,
                    exercises=[_row_to_exercise(row, sets) for row in group],
                )
            )
    except PydanticValidationError as e:
        raise ValidationError(f"Rows do not form a valid block: {e}") from e

    return blocks
