"""Guided playback of a routine: exercises, sets, rests and completion.

The engine walks the block tree exercise by exercise. Rest countdowns run
against a deadline on a scheduler's clock (the running asyncio loop unless
one is injected) and tick on each whole second left; without a scheduler,
the caller drives the countdown with ``tick()``.
"""

import asyncio
import math
from datetime import UTC, datetime
from enum import Enum
from typing import Callable, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from events import EventObserver, NullObserver, emit
from typedefs import DEFAULT_WEIGHT, Block, BlockExercise

BETWEEN_SETS_REST_SECONDS = 60


class Phase(str, Enum):
    EXERCISING = "exercising"
    RESTING = "resting"
    COMPLETED = "completed"


class RestReason(str, Enum):
    BETWEEN_SETS = "between_sets"
    BETWEEN_BLOCKS = "between_blocks"


class SessionCursor(BaseModel):
    """Position of a live session. Replaced, never mutated.

    While resting, the indices already point at the exercise that follows
    the rest.
    """

    model_config = ConfigDict(frozen=True)

    block_index: int = 0
    set_index: int = 0
    exercise_index: int = 0
    phase: Phase = Phase.EXERCISING
    rest_reason: RestReason | None = None
    rest_remaining_seconds: int = 0
    paused: bool = False
    finished_early: bool = False


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with asyncio's ``loop.call_later`` and ``loop.time`` shape."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def time(self) -> float: ...


def _whole_seconds(left: float) -> int:
    """Seconds shown for an exact rest left: 0.2 s still shows as 1."""
    return math.ceil(round(left, 6))


def format_clock(seconds: int) -> str:
    """Format seconds as ``mm:ss`` for the rest timer."""
    minutes, secs = divmod(max(0, seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


class SessionEngine:
    """State machine for one guided pass through a routine.

    States are Exercising, Resting (between sets or between blocks) and
    Completed. An empty routine starts out Completed.

    Args:
        blocks: The routine's blocks, in play order (copied on entry)
        scheduler: Clock and timers for the rest countdown
        observer: Receives ``session.*`` events
        clock: Returns the current time, used for start/end timestamps
    """

    def __init__(
        self,
        blocks: Sequence[Block],
        scheduler: Optional[Scheduler] = None,
        observer: Optional[EventObserver] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.blocks: Tuple[Block, ...] = tuple(b.model_copy(deep=True) for b in blocks)
        self._scheduler = scheduler
        self._observer = observer or NullObserver()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._timer: TimerHandle | None = None
        self._closed = False
        # Exact rest left while no deadline runs (paused or manual ticks)
        self._rest_left = 0.0
        self._rest_deadline: float | None = None

        self.total_units = sum(b.sets * len(b.exercises) for b in self.blocks)
        self.started_at = self._clock()
        self.ended_at: datetime | None = None

        if self.blocks:
            self._cursor = SessionCursor()
        else:
            self._cursor = SessionCursor(phase=Phase.COMPLETED)
            self.ended_at = self.started_at

        emit(
            self._observer,
            "session.started",
            blocks=len(self.blocks),
            total_units=self.total_units,
        )

    # ========== Read-only views ==========

    @property
    def cursor(self) -> SessionCursor:
        return self._cursor

    @property
    def phase(self) -> Phase:
        return self._cursor.phase

    @property
    def is_completed(self) -> bool:
        return self._cursor.phase == Phase.COMPLETED

    @property
    def current_block(self) -> Block | None:
        if self.is_completed:
            return None
        return self.blocks[self._cursor.block_index]

    @property
    def current_exercise(self) -> BlockExercise | None:
        block = self.current_block
        if block is None:
            return None
        return block.exercises[self._cursor.exercise_index]

    @property
    def target_reps(self) -> int | None:
        exercise = self.current_exercise
        if exercise is None:
            return None
        set_index = self._cursor.set_index
        if set_index < len(exercise.reps_by_set):
            return exercise.reps_by_set[set_index]
        return exercise.reps

    @property
    def target_weight(self) -> int | None:
        exercise = self.current_exercise
        if exercise is None:
            return None
        set_index = self._cursor.set_index
        if set_index < len(exercise.weight_by_set):
            return exercise.weight_by_set[set_index]
        return DEFAULT_WEIGHT

    @property
    def completed_units(self) -> int:
        """(block, set, exercise) triples already advanced past."""
        cursor = self._cursor
        if cursor.phase == Phase.COMPLETED and not cursor.finished_early:
            return self.total_units

        done = sum(
            b.sets * len(b.exercises) for b in self.blocks[: cursor.block_index]
        )
        if cursor.block_index < len(self.blocks):
            block = self.blocks[cursor.block_index]
            done += cursor.set_index * len(block.exercises) + cursor.exercise_index
        return done

    @property
    def progress(self) -> float:
        """Fraction of units done, in [0, 1]. A completed session is 1.0."""
        if self.total_units == 0:
            return 1.0 if self.is_completed else 0.0
        return self.completed_units / self.total_units

    @property
    def progress_percent(self) -> int:
        return round(self.progress * 100)

    # ========== Transitions ==========

    def advance(self) -> SessionCursor:
        """Move past the current exercise.

        While resting this behaves like ``skip_rest``; once completed or
        closed it does nothing.
        """
        cursor = self._cursor
        if cursor.phase == Phase.COMPLETED or self._closed:
            return cursor
        if cursor.phase == Phase.RESTING:
            return self.skip_rest()

        block = self.blocks[cursor.block_index]
        if cursor.exercise_index + 1 < len(block.exercises):
            self._cursor = cursor.model_copy(
                update={"exercise_index": cursor.exercise_index + 1}
            )
            emit(self._observer, "session.exercise_advanced", **self._position())
        elif cursor.set_index + 1 < block.sets:
            self._start_rest(
                cursor.model_copy(
                    update={"exercise_index": 0, "set_index": cursor.set_index + 1}
                ),
                RestReason.BETWEEN_SETS,
                BETWEEN_SETS_REST_SECONDS,
            )
        elif cursor.block_index + 1 < len(self.blocks):
            # Rest after a block uses that block's configured rest
            self._start_rest(
                cursor.model_copy(
                    update={
                        "block_index": cursor.block_index + 1,
                        "set_index": 0,
                        "exercise_index": 0,
                    }
                ),
                RestReason.BETWEEN_BLOCKS,
                block.rest_seconds,
            )
        else:
            self._complete(finished_early=False)

        return self._cursor

    def skip_rest(self) -> SessionCursor:
        """End the current rest now, whatever is left on the countdown."""
        if self._cursor.phase != Phase.RESTING or self._closed:
            return self._cursor
        return self._end_rest("session.rest_skipped")

    def tick(self) -> SessionCursor:
        """Bring the rest countdown up to date.

        With a scheduler the time left is read off its clock, so a late
        callback never stretches the rest. Without one each call takes one
        second off. A rest that reaches zero ends and play resumes at the
        cursor. Ignored while paused or not resting, and after ``close``.
        """
        self._cancel_timer()
        cursor = self._cursor
        if cursor.phase != Phase.RESTING or cursor.paused or self._closed:
            return cursor

        scheduler = None
        if self._rest_deadline is not None:
            scheduler = self._resolve_scheduler()
        if scheduler is not None:
            left = max(0.0, self._rest_deadline - scheduler.time())
        else:
            left = max(0.0, self._rest_left - 1)
        self._rest_left = left

        remaining = _whole_seconds(left)
        if remaining <= 0:
            return self._end_rest("session.rest_finished")

        self._cursor = cursor.model_copy(update={"rest_remaining_seconds": remaining})
        if scheduler is not None:
            self._schedule_tick(scheduler, left)
        return self._cursor

    def pause(self) -> SessionCursor:
        if self._cursor.paused or self.is_completed or self._closed:
            return self._cursor
        self._stop_countdown()
        self._cursor = self._cursor.model_copy(update={"paused": True})
        emit(self._observer, "session.paused", **self._position())
        return self._cursor

    def resume(self) -> SessionCursor:
        if not self._cursor.paused or self._closed:
            return self._cursor
        self._cursor = self._cursor.model_copy(update={"paused": False})
        if self._cursor.phase == Phase.RESTING:
            self._start_countdown()
        emit(self._observer, "session.resumed", **self._position())
        return self._cursor

    def finish(self) -> SessionCursor:
        """Complete the session now, before the last exercise is reached."""
        if not self.is_completed:
            self._complete(finished_early=True)
        return self._cursor

    def close(self) -> None:
        """Release the countdown timer; call when the session is abandoned.

        A closed engine ignores every later transition except ``finish``,
        so no timer is ever armed again.
        """
        if self._closed:
            return
        self._closed = True
        self._stop_countdown()
        emit(self._observer, "session.closed", **self._position())

    def __enter__(self) -> "SessionEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ========== Internals ==========

    def _position(self) -> dict:
        cursor = self._cursor
        return {
            "block_index": cursor.block_index,
            "set_index": cursor.set_index,
            "exercise_index": cursor.exercise_index,
            "phase": cursor.phase.value,
        }

    def _start_rest(
        self, next_cursor: SessionCursor, reason: RestReason, seconds: int
    ) -> None:
        self._cursor = next_cursor.model_copy(
            update={
                "phase": Phase.RESTING,
                "rest_reason": reason,
                "rest_remaining_seconds": seconds,
            }
        )
        self._rest_left = float(seconds)
        emit(
            self._observer,
            "session.rest_started",
            reason=reason.value,
            seconds=seconds,
            **self._position(),
        )
        if not self._cursor.paused:
            self._start_countdown()

    def _end_rest(self, event_name: str) -> SessionCursor:
        self._stop_countdown()
        self._cursor = self._cursor.model_copy(
            update={
                "phase": Phase.EXERCISING,
                "rest_reason": None,
                "rest_remaining_seconds": 0,
            }
        )
        emit(self._observer, event_name, **self._position())
        return self._cursor

    def _complete(self, finished_early: bool) -> None:
        self._stop_countdown()
        self._cursor = self._cursor.model_copy(
            update={
                "phase": Phase.COMPLETED,
                "rest_reason": None,
                "rest_remaining_seconds": 0,
                "paused": False,
                "finished_early": finished_early,
            }
        )
        self.ended_at = self._clock()
        emit(
            self._observer,
            "session.completed",
            finished_early=finished_early,
            completed_units=self.completed_units,
            total_units=self.total_units,
        )

    def _resolve_scheduler(self) -> Scheduler | None:
        if self._scheduler is not None:
            return self._scheduler
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def _start_countdown(self) -> None:
        """Run the rest left against a deadline on the scheduler's clock."""
        self._cancel_timer()
        scheduler = self._resolve_scheduler()
        if scheduler is None or self._closed:
            self._rest_deadline = None
            return
        self._rest_deadline = scheduler.time() + self._rest_left
        self._schedule_tick(scheduler, self._rest_left)

    def _stop_countdown(self) -> None:
        """Cancel the timer, keeping the exact rest left for a later resume."""
        self._cancel_timer()
        if self._rest_deadline is not None:
            scheduler = self._resolve_scheduler()
            if scheduler is not None:
                self._rest_left = max(0.0, self._rest_deadline - scheduler.time())
            self._rest_deadline = None

    def _schedule_tick(self, scheduler: Scheduler, left: float) -> None:
        # Next tick lands where the displayed whole seconds drop by one
        delay = left - (_whole_seconds(left) - 1)
        self._timer = scheduler.call_later(delay, self.tick)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
