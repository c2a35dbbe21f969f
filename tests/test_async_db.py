import os
import sys
import datetime
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    AsyncBaseRepository,
    AsyncWorkoutRepository,
    SessionScratchRepository,
    WorkoutRepository,
)
from models import Completed, SKIPPED, SessionWeightMap


class NumberRepository(AsyncBaseRepository):
    async def init_db(self) -> None:
        async with self._async_connection() as conn:
            await conn.execute("CREATE TABLE IF NOT EXISTS numbers (val INTEGER)")
            await conn.commit()

    async def add(self, val: int) -> int:
        return await self.execute("INSERT INTO numbers (val) VALUES (?)", (val,))

    async def all(self):
        rows = await self.fetch_all("SELECT val FROM numbers")
        return [r[0] for r in rows]


SQUAT = {"name": "Squat", "sets": 3, "reps": "5", "weights": {"1": 100, "2": 0, "3": None}}


@pytest.mark.asyncio
async def test_async_repository(tmp_path):
    repo = NumberRepository(str(tmp_path / "test.db"))
    await repo.init_db()
    await repo.add(5)
    assert await repo.all() == [5]


@pytest.mark.asyncio
async def test_async_workout_repo(tmp_path):
    db_file = str(tmp_path / "workout.db")
    repo = AsyncWorkoutRepository(db_file)
    wid = await repo.create([SQUAT], timestamp=1_700_000_000.0, workout_type="strength")
    assert wid == 1
    sessions = await repo.fetch_sessions()
    assert len(sessions) == 1
    sets = sessions[0].exercises[0].sets
    assert [s.weight for s in sets] == [100.0, None, None]
    assert [s.completed for s in sets] == [True, True, False]
    assert [s.reps for s in sets] == [5, 5, 5]
    assert await repo.last_workout_at() == datetime.datetime.fromtimestamp(1_700_000_000.0)


@pytest.mark.asyncio
async def test_sessions_newest_first_and_limited(tmp_path):
    repo = AsyncWorkoutRepository(str(tmp_path / "workout.db"))
    for day in range(3):
        await repo.create([SQUAT], timestamp=1_700_000_000.0 + day * 86400)
    sessions = await repo.fetch_sessions(limit=2)
    assert len(sessions) == 2
    assert sessions[0].date > sessions[1].date


@pytest.mark.asyncio
async def test_weight_history(tmp_path):
    repo = AsyncWorkoutRepository(str(tmp_path / "workout.db"))
    await repo.create([SQUAT], timestamp=1_700_000_000.0)
    await repo.create(
        [{"name": "Squat", "sets": 1, "reps": "8-10", "weights": {"1": 110}}],
        timestamp=1_700_086_400.0,
    )
    await repo.create([{"name": "Bench Press", "sets": 1, "weights": {"1": 80}}])
    history = await repo.fetch_weight_history("Squat")
    assert [(e.set_number, e.weight) for e in history] == [(1, 110.0), (1, 100.0)]
    assert history[0].reps == 8
    assert history[0].date == datetime.date.fromtimestamp(1_700_086_400.0).isoformat()
    assert await repo.fetch_weight_history("Deadlift") == []


@pytest.mark.asyncio
async def test_users_are_isolated(tmp_path):
    repo = AsyncWorkoutRepository(str(tmp_path / "workout.db"))
    await repo.create([SQUAT], user_id="alice")
    assert await repo.fetch_sessions(user_id="bob") == []
    assert await repo.last_workout_at("bob") is None


@pytest.mark.asyncio
async def test_scratch_weights_round_trip(tmp_path):
    scratch = SessionScratchRepository(str(tmp_path / "workout.db"))
    assert len(await scratch.load_weights()) == 0
    weights = SessionWeightMap().with_set(0, 1, Completed(60.0)).with_set(0, 2, SKIPPED)
    stored = await scratch.save_weights(weights)
    assert stored == weights
    assert await scratch.load_weights() == weights
    await scratch.clear_weights()
    assert len(await scratch.load_weights()) == 0


@pytest.mark.asyncio
async def test_scratch_start_marker(tmp_path):
    scratch = SessionScratchRepository(str(tmp_path / "workout.db"))
    assert await scratch.start_marker() is None
    await scratch.set_start_marker(1234.5)
    assert await scratch.start_marker() == 1234.5
    await scratch.clear()
    assert await scratch.start_marker() is None


def test_sync_repository(tmp_path):
    repo = WorkoutRepository(str(tmp_path / "workout.db"))
    repo.create([SQUAT], timestamp=1_700_000_000.0)
    assert len(repo.fetch_sessions()) == 1
    assert [e.weight for e in repo.fetch_weight_history("Squat")] == [100.0]
    repo.delete_all()
    assert repo.fetch_sessions() == []
    assert repo.last_workout_at() is None
