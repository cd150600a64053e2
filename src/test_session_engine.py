"""Tests for session traversal, rest timers and progress."""

import asyncio
from datetime import datetime, timedelta

import pytest

from events import RecordingObserver
from session_engine import (
    BETWEEN_SETS_REST_SECONDS,
    Phase,
    RestReason,
    SessionEngine,
    format_clock,
)
from typedefs import Block, BlockExercise, ExercisePick


def make_block(ids, sets: int, rest: int = 90, order_index: int = 0) -> Block:
    return Block(
        type="superset" if len(ids) > 1 else "single",
        sets=sets,
        rest_seconds=rest,
        order_index=order_index,
        exercises=[
            BlockExercise.from_pick(ExercisePick(id=i, name=i.title()), sets)
            for i in ids
        ],
    )


@pytest.fixture
def blocks():
    """Superset of two for two sets, then a single for one set."""
    return [
        make_block(["bench", "row"], sets=2, rest=120),
        make_block(["squat"], sets=1, rest=90, order_index=1),
    ]


def state(engine: SessionEngine):
    cursor = engine.cursor
    if cursor.phase == Phase.EXERCISING:
        return ("Ex", cursor.block_index, cursor.set_index, cursor.exercise_index)
    if cursor.phase == Phase.RESTING:
        return ("Rest", cursor.rest_reason, cursor.rest_remaining_seconds)
    return ("Completed",)


def test_advance_sequence(blocks):
    engine = SessionEngine(blocks)
    seen = [state(engine)]
    while not engine.is_completed:
        engine.advance()
        seen.append(state(engine))

    assert seen == [
        ("Ex", 0, 0, 0),
        ("Ex", 0, 0, 1),
        ("Rest", RestReason.BETWEEN_SETS, BETWEEN_SETS_REST_SECONDS),
        ("Ex", 0, 1, 0),
        ("Ex", 0, 1, 1),
        ("Rest", RestReason.BETWEEN_BLOCKS, 120),
        ("Ex", 1, 0, 0),
        ("Completed",),
    ]


def test_rest_cursor_points_at_next_exercise(blocks):
    engine = SessionEngine(blocks)
    engine.advance()
    cursor = engine.advance()

    assert cursor.phase == Phase.RESTING
    assert (cursor.block_index, cursor.set_index, cursor.exercise_index) == (0, 1, 0)


def test_progress(blocks):
    engine = SessionEngine(blocks)
    assert engine.total_units == 5
    assert engine.progress == 0.0

    for _ in range(4):
        engine.advance()

    assert state(engine) == ("Ex", 0, 1, 1)
    assert engine.completed_units == 3
    assert engine.progress == pytest.approx(0.6)
    assert engine.progress_percent == 60


def test_progress_is_full_when_completed(blocks):
    engine = SessionEngine(blocks)
    while not engine.is_completed:
        engine.advance()

    assert engine.progress == 1.0
    assert engine.progress_percent == 100


def test_empty_routine_starts_completed():
    engine = SessionEngine([])

    assert engine.is_completed
    assert engine.total_units == 0
    assert engine.progress == 1.0
    assert engine.current_exercise is None
    assert engine.ended_at == engine.started_at


def test_advance_after_completed_is_noop(blocks):
    engine = SessionEngine(blocks)
    engine.finish()
    cursor = engine.cursor

    assert engine.advance() == cursor


def test_rest_counts_down_and_auto_transitions(blocks, scheduler):
    engine = SessionEngine(blocks, scheduler=scheduler)
    engine.advance()
    engine.advance()
    assert engine.cursor.rest_remaining_seconds == 60

    scheduler.advance(59)
    assert engine.phase == Phase.RESTING
    assert engine.cursor.rest_remaining_seconds == 1

    scheduler.advance(1)
    assert state(engine) == ("Ex", 0, 1, 0)
    assert scheduler.pending == []


def test_between_blocks_rest_uses_previous_block_rest(blocks, scheduler):
    engine = SessionEngine(blocks, scheduler=scheduler)
    for _ in range(5):
        engine.advance()
    assert state(engine) == ("Rest", RestReason.BETWEEN_BLOCKS, 120)

    scheduler.advance(120)
    assert state(engine) == ("Ex", 1, 0, 0)


def test_skip_rest_transitions_immediately(blocks, scheduler):
    engine = SessionEngine(blocks, scheduler=scheduler)
    engine.advance()
    engine.advance()
    scheduler.advance(10)

    engine.skip_rest()

    assert state(engine) == ("Ex", 0, 1, 0)
    assert scheduler.pending == []


def test_skip_rest_outside_rest_is_noop(blocks):
    engine = SessionEngine(blocks)
    cursor = engine.cursor

    assert engine.skip_rest() == cursor


def test_pause_freezes_countdown(blocks, scheduler):
    engine = SessionEngine(blocks, scheduler=scheduler)
    engine.advance()
    engine.advance()
    scheduler.advance(10)

    engine.pause()
    scheduler.advance(300)

    assert engine.cursor.paused
    assert engine.cursor.rest_remaining_seconds == 50
    assert scheduler.pending == []

    engine.resume()
    scheduler.advance(49)
    assert engine.cursor.rest_remaining_seconds == 1
    scheduler.advance(1)
    assert state(engine) == ("Ex", 0, 1, 0)


def test_pause_does_not_move_cursor(blocks):
    engine = SessionEngine(blocks)
    engine.advance()
    before = engine.cursor

    engine.pause()
    engine.resume()

    assert engine.cursor == before


def test_manual_tick_without_scheduler(blocks):
    engine = SessionEngine(blocks)
    engine.advance()
    engine.advance()

    for _ in range(59):
        engine.tick()
    assert engine.cursor.rest_remaining_seconds == 1

    engine.tick()
    assert state(engine) == ("Ex", 0, 1, 0)


def test_tick_while_paused_is_ignored(blocks):
    engine = SessionEngine(blocks)
    engine.advance()
    engine.advance()
    engine.pause()

    engine.tick()

    assert engine.cursor.rest_remaining_seconds == 60


def test_finish_early(blocks, scheduler):
    times = iter([datetime(2025, 1, 6, 9, 0), datetime(2025, 1, 6, 9, 20)])
    engine = SessionEngine(blocks, scheduler=scheduler, clock=lambda: next(times))
    engine.advance()
    engine.advance()

    engine.finish()

    assert engine.is_completed
    assert engine.cursor.finished_early
    assert engine.completed_units == 2
    assert scheduler.pending == []
    assert engine.ended_at - engine.started_at == timedelta(minutes=20)


def test_close_cancels_timer(blocks, scheduler):
    with SessionEngine(blocks, scheduler=scheduler) as engine:
        engine.advance()
        engine.advance()
        assert len(scheduler.pending) == 1

    assert scheduler.pending == []


def test_closed_engine_never_rearms_timer(blocks, scheduler):
    engine = SessionEngine(blocks, scheduler=scheduler)
    engine.advance()
    engine.advance()
    engine.pause()
    engine.close()

    engine.resume()
    assert scheduler.pending == []
    assert engine.cursor.paused

    cursor = engine.cursor
    assert engine.advance() == cursor
    assert engine.tick() == cursor
    assert scheduler.pending == []

    scheduler.advance(600)
    assert state(engine) == ("Rest", RestReason.BETWEEN_SETS, 60)


def test_close_emits_once(blocks):
    observer = RecordingObserver()
    engine = SessionEngine(blocks, observer=observer)

    engine.close()
    engine.close()

    assert observer.names.count("session.closed") == 1


def test_pause_mid_second_keeps_exact_time_left(blocks, scheduler):
    engine = SessionEngine(blocks, scheduler=scheduler)
    engine.advance()
    engine.advance()
    scheduler.advance(10.5)
    assert engine.cursor.rest_remaining_seconds == 50

    engine.pause()
    scheduler.advance(100)
    engine.resume()

    scheduler.advance(49)
    assert engine.cursor.rest_remaining_seconds == 1
    scheduler.advance(0.5)
    assert state(engine) == ("Ex", 0, 1, 0)
    assert scheduler.pending == []


def test_late_tick_reads_time_left_off_the_clock(blocks, scheduler):
    engine = SessionEngine(blocks, scheduler=scheduler)
    engine.advance()
    engine.advance()

    # The loop was busy and the first callback runs 30 s late
    scheduler.now = 30.0
    engine.tick()
    assert engine.cursor.rest_remaining_seconds == 30

    scheduler.advance(29)
    assert engine.cursor.rest_remaining_seconds == 1
    scheduler.advance(1)
    assert state(engine) == ("Ex", 0, 1, 0)


def test_defaults_to_running_event_loop(blocks):
    async def scenario():
        engine = SessionEngine(blocks)
        engine.advance()
        engine.advance()
        handle = engine._timer
        assert isinstance(handle, asyncio.TimerHandle)
        engine.close()
        assert handle.cancelled()

    asyncio.run(scenario())


def test_targets_follow_cursor(blocks):
    blocks[0].exercises[1].reps_by_set = [12, 8]
    blocks[0].exercises[1].weight_by_set = [20, 25]
    engine = SessionEngine(blocks)

    assert engine.current_block.id == blocks[0].id
    assert engine.current_exercise.exercise_id == "bench"

    engine.advance()
    assert engine.current_exercise.exercise_id == "row"
    assert (engine.target_reps, engine.target_weight) == (12, 20)

    engine.advance()
    engine.advance()
    engine.advance()
    assert (engine.target_reps, engine.target_weight) == (8, 25)


def test_engine_copies_blocks(blocks):
    engine = SessionEngine(blocks)
    blocks[0].exercises[0].reps_by_set[0] = 1

    assert engine.target_reps == 10


def test_events(blocks, scheduler):
    observer = RecordingObserver()
    engine = SessionEngine(blocks, scheduler=scheduler, observer=observer)
    engine.advance()
    engine.advance()
    engine.pause()
    engine.resume()
    engine.skip_rest()
    engine.advance()
    engine.advance()
    scheduler.advance(120)
    engine.advance()

    assert observer.names == [
        "session.started",
        "session.exercise_advanced",
        "session.rest_started",
        "session.paused",
        "session.resumed",
        "session.rest_skipped",
        "session.exercise_advanced",
        "session.rest_started",
        "session.rest_finished",
        "session.completed",
    ]
    assert observer.events[2].payload["reason"] == "between_sets"
    assert observer.events[-1].payload == {
        "finished_early": False,
        "completed_units": 5,
        "total_units": 5,
    }


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "00:00"), (59, "00:59"), (60, "01:00"), (605, "10:05"), (-3, "00:00")],
)
def test_format_clock(seconds, expected):
    assert format_clock(seconds) == expected
