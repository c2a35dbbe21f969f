import os
import sys
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import AsyncWorkoutRepository, SessionScratchRepository
from models import Completed, EXERCISE_SKIPPED, SKIPPED, PersonalizationContext, WorkoutPlan
from personalization_service import PersonalizationEngine
from session_service import (
    Active,
    Finished,
    Resting,
    SessionContinuation,
    SessionStateMachine,
    describe_state,
)
from weight_history_service import WeightHistoryCache

PLAN = {
    "type": "Strength",
    "exercises": [
        {"name": "Squat", "sets": 2, "reps": 5, "restSeconds": 90},
        {"name": "Plank", "sets": 1, "reps": "30s", "usesWeight": False},
        {"name": "Row", "sets": 1, "reps": 8, "restSeconds": 20},
    ],
}


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FailingScratch(SessionScratchRepository):
    async def save_weights(self, weights):
        raise RuntimeError("storage full")


def make_machine(tmp_path, **kwargs):
    db_file = str(tmp_path / "workout.db")
    kwargs.setdefault("clock", FakeClock())
    return SessionStateMachine(
        WorkoutPlan.from_dict(PLAN),
        kwargs.pop("scratch", None) or SessionScratchRepository(db_file),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_complete_set_rests_within_exercise(tmp_path):
    machine = make_machine(tmp_path)
    await machine.start()
    state = await machine.complete_set(100)
    assert isinstance(state, Resting)
    assert (state.next_exercise_index, state.next_set_number) == (0, 2)
    assert state.duration_seconds == 90
    assert machine.weights.outcome(0, 1) == Completed(100.0)
    stored = await machine.scratch.load_weights()
    assert stored.to_blob() == {"0": {"1": 100.0}}


@pytest.mark.asyncio
async def test_complete_without_weight_stores_zero(tmp_path):
    machine = make_machine(tmp_path)
    await machine.start()
    await machine.complete_set()
    assert machine.weights.to_blob() == {"0": {"1": 0}}


@pytest.mark.asyncio
async def test_skip_set_stores_null(tmp_path):
    machine = make_machine(tmp_path)
    await machine.start()
    await machine.skip_set()
    assert machine.weights.outcome(0, 1) == SKIPPED
    assert machine.weights.to_blob() == {"0": {"1": None}}


@pytest.mark.asyncio
async def test_full_walkthrough_ends_completed(tmp_path):
    machine = make_machine(tmp_path)
    await machine.start()
    state = await machine.complete_set(100)
    machine.resume(state.continuation)
    state = await machine.complete_set(105)
    # last set of Squat moves to the next exercise with the static rest
    assert (state.next_exercise_index, state.next_set_number) == (1, 1)
    assert state.duration_seconds == 90
    machine.resume(state.continuation)
    state = await machine.complete_set()
    # Plank has no rest value, the configured default applies
    assert state.duration_seconds == 60
    machine.resume(state.continuation)
    state = await machine.complete_set(50)
    assert isinstance(state, Finished)
    assert describe_state(state) == {"status": "completed"}


@pytest.mark.asyncio
async def test_skip_exercise_caps_rest(tmp_path):
    machine = make_machine(tmp_path)
    await machine.start()
    state = await machine.skip_exercise()
    assert isinstance(state, Resting)
    assert (state.next_exercise_index, state.next_set_number) == (1, 1)
    assert state.duration_seconds == 30
    assert machine.weights.exercise(0) == EXERCISE_SKIPPED
    assert machine.weights.to_blob() == {"0": {}}

    machine.resume(state.continuation)
    state = await machine.skip_exercise()
    # no rest value on Plank falls back to the cap
    assert state.duration_seconds == 30
    machine.resume(state.continuation)
    state = await machine.skip_exercise()
    assert isinstance(state, Finished)


@pytest.mark.asyncio
async def test_skip_exercise_uses_shorter_rest(tmp_path):
    plan = WorkoutPlan.from_dict(
        {"exercises": [{"name": "Curl", "restSeconds": 20}, {"name": "Row"}]}
    )
    scratch = SessionScratchRepository(str(tmp_path / "workout.db"))
    machine = SessionStateMachine(plan, scratch, clock=FakeClock())
    await machine.start()
    state = await machine.skip_exercise()
    assert state.duration_seconds == 20


@pytest.mark.asyncio
async def test_wrong_state_raises(tmp_path):
    machine = make_machine(tmp_path)
    await machine.start()
    await machine.complete_set(100)
    with pytest.raises(ValueError):
        await machine.complete_set(100)
    with pytest.raises(ValueError):
        await machine.skip_set()
    with pytest.raises(ValueError):
        await machine.skip_exercise()
    with pytest.raises(ValueError):
        await machine.finish()


@pytest.mark.asyncio
async def test_continuation_consumed_once(tmp_path):
    machine = make_machine(tmp_path)
    await machine.start()
    state = await machine.complete_set(100)
    continuation = state.continuation
    assert machine.resume(continuation) == Active(0, 2)
    await machine.complete_set(105)
    resting = machine.state
    assert machine.resume(continuation) is resting


@pytest.mark.asyncio
async def test_resume_rejects_out_of_range(tmp_path):
    with pytest.raises(ValueError):
        await make_machine(tmp_path).start(SessionContinuation(5, 1))
    with pytest.raises(ValueError):
        await make_machine(tmp_path).start(SessionContinuation(0, 3))


@pytest.mark.asyncio
async def test_resume_accepts_only_issued_continuation(tmp_path):
    machine = make_machine(tmp_path)
    await machine.start()
    with pytest.raises(ValueError):
        machine.resume(SessionContinuation(1, 1))
    assert machine.state == Active(0, 1)

    state = await machine.complete_set(100)
    with pytest.raises(ValueError):
        machine.resume(SessionContinuation(2, 1))
    forged = SessionContinuation(2, 1, state.continuation.token)
    with pytest.raises(ValueError):
        machine.resume(forged)
    assert machine.state is state
    assert machine.resume(state.continuation) == Active(0, 2)


@pytest.mark.asyncio
async def test_reload_keeps_weights(tmp_path):
    clock = FakeClock()
    machine = make_machine(tmp_path, clock=clock)
    await machine.start()
    state = await machine.complete_set(100)

    clock.now += 120
    reloaded = make_machine(tmp_path, clock=clock)
    await reloaded.start()
    assert reloaded.weights.outcome(0, 1) == Completed(100.0)
    assert reloaded.started_at == machine.started_at
    assert reloaded.progress().elapsed_seconds == 120

    resumed = make_machine(tmp_path, clock=clock)
    assert await resumed.start(state.continuation) == Active(0, 2)
    assert resumed.weights.outcome(0, 1) == Completed(100.0)


@pytest.mark.asyncio
async def test_fresh_session_clears_stale_weights(tmp_path):
    scratch = SessionScratchRepository(str(tmp_path / "workout.db"))
    await scratch.save_weights(
        (await scratch.load_weights()).with_set(0, 1, Completed(999.0))
    )
    machine = make_machine(tmp_path, scratch=scratch)
    await machine.start()
    assert len(machine.weights) == 0
    assert len(await scratch.load_weights()) == 0
    assert await scratch.start_marker() == machine.started_at


@pytest.mark.asyncio
async def test_failed_write_rolls_back_and_advances(tmp_path):
    scratch = FailingScratch(str(tmp_path / "workout.db"))
    machine = make_machine(tmp_path, scratch=scratch)
    await machine.start()
    state = await machine.complete_set(100)
    assert isinstance(state, Resting)
    assert len(machine.weights) == 0
    assert machine.error == "storage full"


@pytest.mark.asyncio
async def test_personalized_rest(tmp_path):
    engine = PersonalizationEngine([])
    context = PersonalizationContext(mood="stressed")
    machine = make_machine(tmp_path, engine=engine, context=context)
    await machine.start()
    state = await machine.complete_set(100)
    # Squat set 1: 180 * 1.3 = 234 -> 240
    assert state.duration_seconds == 240


@pytest.mark.asyncio
async def test_progress(tmp_path):
    clock = FakeClock()
    machine = make_machine(tmp_path, clock=clock)
    await machine.start()
    progress = machine.progress()
    assert progress.progress_percent == 0
    assert progress.completed_sets == 0
    assert progress.total_sets == 4
    assert progress.current_exercise == 1
    assert progress.total_exercises == 3
    assert progress.elapsed_seconds == 0

    await machine.complete_set(100)
    clock.now += 45
    progress = machine.progress()
    # exercise 0 of 3, set 2 of 2: (0 + 1/2 * 1/3) * 100
    assert progress.progress_percent == 17
    assert progress.completed_sets == 1
    assert progress.elapsed_seconds == 45


@pytest.mark.asyncio
async def test_finish_saves_workout(tmp_path):
    db_file = str(tmp_path / "workout.db")
    workouts = AsyncWorkoutRepository(db_file)
    invalidated = []

    async def fetch(user_id, exercise_name):
        return []

    history = WeightHistoryCache(fetch)
    history.invalidate = lambda: invalidated.append(True)
    clock = FakeClock()
    machine = make_machine(tmp_path, workouts=workouts, history=history, clock=clock)
    await machine.start()
    state = await machine.complete_set(100)
    machine.resume(state.continuation)
    state = await machine.skip_set()
    machine.resume(state.continuation)
    state = await machine.skip_exercise()
    machine.resume(state.continuation)
    clock.now += 30 * 60
    await machine.complete_set(60)

    workout_id = await machine.finish()
    assert workout_id == 1
    assert invalidated == [True]
    assert await machine.scratch.start_marker() is None
    assert len(await machine.scratch.load_weights()) == 0

    sessions = await workouts.fetch_sessions()
    assert [e.name for e in sessions[0].exercises] == ["Squat", "Plank", "Row"]
    squat = sessions[0].exercises[0]
    assert [(s.weight, s.completed) for s in squat.sets] == [(100.0, True), (None, False)]
    history_rows = await workouts.fetch_weight_history("Row")
    assert [e.weight for e in history_rows] == [60.0]
    rows = await workouts.fetch_all("SELECT workout_type, duration FROM workouts")
    assert rows == [("Strength", 30)]
    assert await machine.finish() == 1


def test_empty_plan_rejected(tmp_path):
    with pytest.raises(ValueError):
        SessionStateMachine(
            WorkoutPlan(()), SessionScratchRepository(str(tmp_path / "workout.db"))
        )
