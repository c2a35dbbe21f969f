from __future__ import annotations
import logging
import time
from typing import Awaitable, Callable, Iterable, List, Optional

from models import WeightHistoryEntry

LOGGER = logging.getLogger(__name__)

HistoryFetcher = Callable[[str, str], Awaitable[List[WeightHistoryEntry]]]

BARBELL_KEYWORDS = (
    "squat",
    "deadlift",
    "bench press",
    "row",
    "press",
    "curl",
    "barbell",
    "bb ",
    "overhead press",
    "military press",
)


class WeightHistoryCache:
    """Short-lived cache of per-exercise weight history keyed by user and exercise."""

    DEFAULT_TTL: float = 5 * 60

    def __init__(
        self,
        fetcher: HistoryFetcher,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.fetcher = fetcher
        self.ttl = self.DEFAULT_TTL if ttl_seconds is None else ttl_seconds
        self.clock = clock
        self._entries: dict[tuple[str, str], tuple[float, list[WeightHistoryEntry]]] = {}

    @classmethod
    def from_repository(cls, repo, max_sessions: int = 10, **kwargs) -> "WeightHistoryCache":
        """Build a cache reading through an ``AsyncWorkoutRepository``."""

        async def fetch(user_id: str, exercise_name: str) -> List[WeightHistoryEntry]:
            return await repo.fetch_weight_history(
                exercise_name, max_sessions=max_sessions, user_id=user_id
            )

        return cls(fetch, **kwargs)

    async def get(self, user_id: str, exercise_name: str) -> list[WeightHistoryEntry]:
        key = (user_id, exercise_name)
        cached = self._entries.get(key)
        now = self.clock()
        if cached is not None and now - cached[0] < self.ttl:
            return cached[1]
        try:
            data = list(await self.fetcher(user_id, exercise_name))
        except Exception:
            LOGGER.exception("failed to fetch weight history for %s", exercise_name)
            return []
        LOGGER.debug("fetched %d weight entries for %s", len(data), exercise_name)
        self._entries[key] = (now, data)
        return data

    def invalidate(self) -> None:
        """Drop every cached entry."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def last_used_weight(
    history: Iterable[WeightHistoryEntry], exercise_name: str, set_number: int
) -> Optional[float]:
    relevant = [
        e for e in history if e.exercise_name == exercise_name and e.set_number == set_number
    ]
    if not relevant:
        return None
    return max(relevant, key=lambda e: e.timestamp).weight


def progressive_overload_suggestion(
    history: Iterable[WeightHistoryEntry], exercise_name: str, set_number: int
) -> Optional[float]:
    """Suggest the last used weight plus a conservative increment."""
    last = last_used_weight(history, exercise_name, set_number)
    if not last:
        return None
    increment = 2.5 if last < 50 else 5
    return last + increment


def is_barbell_exercise(exercise_name: str) -> bool:
    lower = exercise_name.lower()
    return any(keyword in lower for keyword in BARBELL_KEYWORDS)
