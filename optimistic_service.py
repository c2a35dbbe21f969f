from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

from models import SessionWeightMap, SetOutcome

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class OptimisticState(Generic[T]):
    """Current value of one key plus the flags of its in-flight update."""

    data: T
    is_optimistic: bool = False
    is_loading: bool = False
    error: Optional[str] = None


@dataclass
class OptimisticAction(Generic[T]):
    optimistic_update: Callable[[T], T]
    server_update: Callable[[], Awaitable[T]]
    on_success: Optional[Callable[[T], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None


@dataclass
class _KeyTrack:
    version: int = 0
    pending: int = 0
    baseline: object = None


class OptimisticUpdateCoordinator(Generic[T]):
    """Apply updates locally at once and reconcile them with the server.

    Each key carries a monotonic version. A server result only lands when it
    belongs to the latest update on its key; older resolutions are dropped.
    A failure of the latest update restores the last value the server
    confirmed, or the value held before the first still pending update when
    nothing has been confirmed since. An ``optimistic_update`` that raises is
    reported like a server failure and leaves the value untouched.
    """

    def __init__(self, initial: T, on_error: Optional[Callable[[str, str], None]] = None) -> None:
        self._initial = initial
        self._states: Dict[str, OptimisticState[T]] = {}
        self._tracks: Dict[str, _KeyTrack] = {}
        self.on_error = on_error

    def state(self, key: str = "default") -> OptimisticState[T]:
        if key not in self._states:
            self._states[key] = OptimisticState(self._initial)
        return self._states[key]

    def data(self, key: str = "default") -> T:
        return self.state(key).data

    async def execute(self, action: OptimisticAction[T], key: str = "default") -> OptimisticState[T]:
        state = self.state(key)
        track = self._tracks.setdefault(key, _KeyTrack())
        try:
            updated = action.optimistic_update(state.data)
        except Exception as e:
            self._fail(state, key, action, e)
            state.is_optimistic = state.is_loading = track.pending > 0
            return state

        if track.pending == 0:
            track.baseline = state.data
        track.version += 1
        track.pending += 1
        version = track.version

        state.data = updated
        state.is_optimistic = True
        state.is_loading = True
        state.error = None

        try:
            result = await action.server_update()
        except Exception as e:
            track.pending -= 1
            if version != track.version:
                LOGGER.debug("dropping superseded failure on %s (v%d)", key, version)
                return state
            state.data = track.baseline
            self._fail(state, key, action, e)
            return state

        track.pending -= 1
        if version != track.version:
            LOGGER.debug("dropping superseded result on %s (v%d)", key, version)
            return state
        # later failures roll back to the last confirmed value
        track.baseline = result
        state.data = result
        state.is_optimistic = False
        state.is_loading = False
        state.error = None
        if action.on_success:
            action.on_success(result)
        return state

    def _fail(
        self, state: OptimisticState[T], key: str, action: OptimisticAction[T], error: Exception
    ) -> None:
        message = str(error) or "An error occurred"
        LOGGER.warning("optimistic update on %s failed: %s", key, message)
        state.is_optimistic = False
        state.is_loading = False
        state.error = message
        if action.on_error:
            action.on_error(error)
        if self.on_error:
            self.on_error(key, message)

    def update_data(self, value: T, key: str = "default") -> None:
        """Replace the value without a server round trip."""
        state = self.state(key)
        state.data = value
        state.is_optimistic = False
        state.error = None
        if key in self._tracks:
            self._tracks[key].baseline = value

    def clear_error(self, key: str = "default") -> None:
        self.state(key).error = None


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds, doubling the delay after each failure."""
    last_error: Optional[Exception] = None
    for attempt in range(max_retries):
        try:
            return await fn()
        except Exception as e:
            last_error = e
            if attempt < max_retries - 1:
                delay = base_delay * 2**attempt
                LOGGER.info("attempt %d failed, retrying in %.1fs", attempt + 1, delay)
                await sleep(delay)
    if last_error is None:
        raise ValueError("max_retries must be positive")
    raise last_error


def set_outcome_action(
    index: int,
    set_number: int,
    outcome: SetOutcome,
    persist: Callable[[SessionWeightMap], Awaitable[SessionWeightMap]],
    current: Callable[[], SessionWeightMap],
) -> OptimisticAction[SessionWeightMap]:
    """Action recording one set outcome locally, then through ``persist``."""

    async def server_update() -> SessionWeightMap:
        return await persist(current().with_set(index, set_number, outcome))

    return OptimisticAction(
        optimistic_update=lambda weights: weights.with_set(index, set_number, outcome),
        server_update=server_update,
    )


def exercise_skip_action(
    index: int,
    persist: Callable[[SessionWeightMap], Awaitable[SessionWeightMap]],
    current: Callable[[], SessionWeightMap],
) -> OptimisticAction[SessionWeightMap]:
    async def server_update() -> SessionWeightMap:
        return await persist(current().with_exercise_skipped(index))

    return OptimisticAction(
        optimistic_update=lambda weights: weights.with_exercise_skipped(index),
        server_update=server_update,
    )
