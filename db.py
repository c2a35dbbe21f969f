import sqlite3
import aiosqlite
import datetime
import json
import logging
import re
import time
from contextlib import contextmanager, asynccontextmanager
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from models import (
    SessionExercise,
    SessionWeightMap,
    SetRecord,
    WeightHistoryEntry,
    WorkoutSession,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_USER = "local"


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "workouts": (
            """CREATE TABLE workouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL DEFAULT 'local',
                    timestamp REAL NOT NULL,
                    workout_type TEXT,
                    duration INTEGER
                );""",
            ["id", "user_id", "timestamp", "workout_type", "duration"],
        ),
        "workout_exercises": (
            """CREATE TABLE workout_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workout_id INTEGER NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0,
                    name TEXT NOT NULL,
                    sets INTEGER NOT NULL DEFAULT 0,
                    reps TEXT,
                    weights TEXT,
                    FOREIGN KEY(workout_id) REFERENCES workouts(id) ON DELETE CASCADE
                );""",
            ["id", "workout_id", "position", "name", "sets", "reps", "weights"],
        ),
        "session_scratch": (
            """CREATE TABLE session_scratch (
                    user_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT,
                    PRIMARY KEY (user_id, key)
                );""",
            ["user_id", "key", "value"],
        ),
    }

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        connection.execute("PRAGMA foreign_keys=on;")
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        LOGGER.info("migrating table %s to columns %s", table, columns)
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col == "user_id":
                        return f"'{DEFAULT_USER}'"
                    if col in ("position", "sets"):
                        return "0"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            await conn.execute("PRAGMA foreign_keys=on;")
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return list(rows)


_WORKOUT_INSERT = (
    "INSERT INTO workouts (user_id, timestamp, workout_type, duration) VALUES (?, ?, ?, ?);"
)
_EXERCISE_INSERT = (
    "INSERT INTO workout_exercises (workout_id, position, name, sets, reps, weights) VALUES (?, ?, ?, ?, ?, ?);"
)
_RECENT_WORKOUTS = (
    "SELECT id, timestamp FROM workouts WHERE user_id = ? "
    "ORDER BY timestamp DESC, id DESC LIMIT ?;"
)
_LAST_WORKOUT = "SELECT MAX(timestamp) FROM workouts WHERE user_id = ?;"


def _exercises_query(workout_ids: List[int], name: Optional[str] = None) -> Tuple[str, Tuple]:
    placeholders = ", ".join(["?" for _ in workout_ids])
    query = (
        "SELECT workout_id, name, sets, reps, weights FROM workout_exercises "
        f"WHERE workout_id IN ({placeholders})"
    )
    params: list[Any] = list(workout_ids)
    if name is not None:
        query += " AND name = ?"
        params.append(name)
    query += " ORDER BY workout_id, position;"
    return query, tuple(params)


def _exercise_rows(workout_id: int, exercises: Iterable[Mapping[str, Any]]) -> List[Tuple]:
    rows = []
    for position, ex in enumerate(exercises):
        weights = ex.get("weights") or {}
        if isinstance(weights, SessionWeightMap):
            weights = weights.to_blob()
        rows.append(
            (
                workout_id,
                position,
                str(ex.get("name", "")),
                int(ex.get("sets") or 0),
                str(ex.get("reps", "")),
                json.dumps({str(k): v for k, v in dict(weights).items()}),
            )
        )
    return rows


def _parse_weights(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("ignoring malformed weights blob %r", raw)
        return {}
    return data if isinstance(data, dict) else {}


def _rep_count(raw: Any, default: Optional[int] = 10) -> Optional[int]:
    """Leading integer of a rep scheme such as ``"8-12"``."""
    match = re.match(r"\s*(\d+)", str(raw)) if raw is not None else None
    return int(match.group(1)) if match else default


def _numeric_weight(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value else None


def _build_sessions(workout_rows: List[Tuple], exercise_rows: List[Tuple]) -> List[WorkoutSession]:
    by_workout: dict[int, list[Tuple]] = {}
    for workout_id, name, set_count, reps, raw_weights in exercise_rows:
        by_workout.setdefault(workout_id, []).append((name, set_count, reps, raw_weights))
    sessions: list[WorkoutSession] = []
    for workout_id, timestamp in workout_rows:
        exercises = []
        for name, set_count, reps, raw_weights in by_workout.get(workout_id, []):
            weights = _parse_weights(raw_weights)
            rep_count = _rep_count(reps)
            records = []
            for set_number in range(1, int(set_count or 0) + 1):
                value = weights.get(str(set_number))
                records.append(
                    SetRecord(
                        weight=_numeric_weight(value),
                        reps=rep_count,
                        completed=value is not None,
                    )
                )
            exercises.append(SessionExercise(name, tuple(records)))
        sessions.append(
            WorkoutSession(
                date=datetime.datetime.fromtimestamp(timestamp),
                exercises=tuple(exercises),
            )
        )
    return sessions


def _build_history(workout_rows: List[Tuple], exercise_rows: List[Tuple]) -> List[WeightHistoryEntry]:
    timestamps = dict(workout_rows)
    history: list[WeightHistoryEntry] = []
    for workout_id, name, _sets, reps, raw_weights in exercise_rows:
        timestamp = timestamps[workout_id]
        day = datetime.datetime.fromtimestamp(timestamp).date().isoformat()
        for set_key, value in _parse_weights(raw_weights).items():
            weight = _numeric_weight(value)
            if weight is None or weight <= 0:
                continue
            try:
                set_number = int(set_key)
            except ValueError:
                continue
            history.append(
                WeightHistoryEntry(
                    exercise_name=name,
                    set_number=set_number,
                    weight=weight,
                    timestamp=timestamp,
                    reps=_rep_count(reps, None),
                    date=day,
                )
            )
    history.sort(key=lambda e: e.timestamp, reverse=True)
    return history


class WorkoutRepository(BaseRepository):
    """Repository for saved workouts and the sessions derived from them."""

    def create(
        self,
        exercises: Iterable[Mapping[str, Any]],
        timestamp: float | None = None,
        workout_type: str | None = None,
        duration: int | None = None,
        user_id: str = DEFAULT_USER,
    ) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                _WORKOUT_INSERT,
                (user_id, timestamp if timestamp is not None else time.time(), workout_type, duration),
            )
            workout_id = cursor.lastrowid
            conn.executemany(_EXERCISE_INSERT, _exercise_rows(workout_id, exercises))
            return workout_id

    def fetch_sessions(self, limit: int = 50, user_id: str = DEFAULT_USER) -> List[WorkoutSession]:
        """Return the most recent sessions, newest first."""
        workouts = self.fetch_all(_RECENT_WORKOUTS, (user_id, limit))
        if not workouts:
            return []
        query, params = _exercises_query([w[0] for w in workouts])
        return _build_sessions(workouts, self.fetch_all(query, params))

    def fetch_weight_history(
        self, exercise_name: str, max_sessions: int = 10, user_id: str = DEFAULT_USER
    ) -> List[WeightHistoryEntry]:
        workouts = self.fetch_all(_RECENT_WORKOUTS, (user_id, max_sessions))
        if not workouts:
            return []
        query, params = _exercises_query([w[0] for w in workouts], exercise_name)
        return _build_history(workouts, self.fetch_all(query, params))

    def last_workout_at(self, user_id: str = DEFAULT_USER) -> datetime.datetime | None:
        rows = self.fetch_all(_LAST_WORKOUT, (user_id,))
        if not rows or rows[0][0] is None:
            return None
        return datetime.datetime.fromtimestamp(rows[0][0])

    def delete_all(self) -> None:
        self._delete_all("workout_exercises")
        self._delete_all("workouts")


class AsyncWorkoutRepository(AsyncBaseRepository):
    """Async repository for saved workouts."""

    async def create(
        self,
        exercises: Iterable[Mapping[str, Any]],
        timestamp: float | None = None,
        workout_type: str | None = None,
        duration: int | None = None,
        user_id: str = DEFAULT_USER,
    ) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(
                _WORKOUT_INSERT,
                (user_id, timestamp if timestamp is not None else time.time(), workout_type, duration),
            )
            workout_id = cursor.lastrowid
            await conn.executemany(_EXERCISE_INSERT, _exercise_rows(workout_id, exercises))
            return workout_id

    async def fetch_sessions(self, limit: int = 50, user_id: str = DEFAULT_USER) -> List[WorkoutSession]:
        workouts = await self.fetch_all(_RECENT_WORKOUTS, (user_id, limit))
        if not workouts:
            return []
        query, params = _exercises_query([w[0] for w in workouts])
        return _build_sessions(workouts, await self.fetch_all(query, params))

    async def fetch_weight_history(
        self, exercise_name: str, max_sessions: int = 10, user_id: str = DEFAULT_USER
    ) -> List[WeightHistoryEntry]:
        workouts = await self.fetch_all(_RECENT_WORKOUTS, (user_id, max_sessions))
        if not workouts:
            return []
        query, params = _exercises_query([w[0] for w in workouts], exercise_name)
        return _build_history(workouts, await self.fetch_all(query, params))

    async def last_workout_at(self, user_id: str = DEFAULT_USER) -> datetime.datetime | None:
        rows = await self.fetch_all(_LAST_WORKOUT, (user_id,))
        if not rows or rows[0][0] is None:
            return None
        return datetime.datetime.fromtimestamp(rows[0][0])


class SessionScratchRepository(AsyncBaseRepository):
    """Session-scoped transient state: the weight blob and the start marker."""

    WEIGHTS_KEY = "workout_weights"
    START_KEY = "workout_start_time"

    def __init__(self, db_path: str = "workout.db", user_id: str = DEFAULT_USER) -> None:
        super().__init__(db_path)
        self.user_id = user_id

    async def _get(self, key: str) -> Optional[str]:
        rows = await self.fetch_all(
            "SELECT value FROM session_scratch WHERE user_id = ? AND key = ?;",
            (self.user_id, key),
        )
        return rows[0][0] if rows else None

    async def _set(self, key: str, value: str) -> None:
        await self.execute(
            "INSERT INTO session_scratch (user_id, key, value) VALUES (?, ?, ?) "
            "ON CONFLICT(user_id, key) DO UPDATE SET value = excluded.value;",
            (self.user_id, key, value),
        )

    async def load_weights(self) -> SessionWeightMap:
        raw = await self._get(self.WEIGHTS_KEY)
        return SessionWeightMap.from_blob(_parse_weights(raw))

    async def save_weights(self, weights: SessionWeightMap) -> SessionWeightMap:
        """Persist ``weights`` and return the map as stored."""
        await self._set(self.WEIGHTS_KEY, json.dumps(weights.to_blob()))
        return await self.load_weights()

    async def clear_weights(self) -> None:
        await self.execute(
            "DELETE FROM session_scratch WHERE user_id = ? AND key = ?;",
            (self.user_id, self.WEIGHTS_KEY),
        )

    async def start_marker(self) -> Optional[float]:
        raw = await self._get(self.START_KEY)
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            LOGGER.warning("ignoring malformed start marker %r", raw)
            return None

    async def set_start_marker(self, timestamp: float) -> None:
        await self._set(self.START_KEY, repr(float(timestamp)))

    async def clear(self) -> None:
        await self.execute(
            "DELETE FROM session_scratch WHERE user_id = ?;", (self.user_id,)
        )
