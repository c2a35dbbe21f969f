from __future__ import annotations
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from db import DEFAULT_USER, AsyncWorkoutRepository, SessionScratchRepository
from models import (
    Completed,
    Exercise,
    PersonalizationContext,
    SessionWeightMap,
    SKIPPED,
    WorkoutPlan,
)
from optimistic_service import (
    OptimisticUpdateCoordinator,
    exercise_skip_action,
    set_outcome_action,
)
from personalization_service import PersonalizationEngine
from weight_history_service import WeightHistoryCache

LOGGER = logging.getLogger(__name__)

WEIGHTS_KEY = "weights"


@dataclass(frozen=True)
class SessionContinuation:
    """Position to return to once a rest period ends. Usable once."""

    exercise_index: int
    set_number: int
    token: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class Active:
    exercise_index: int
    set_number: int


@dataclass(frozen=True)
class Resting:
    next_exercise_index: int
    next_set_number: int
    duration_seconds: int
    continuation: SessionContinuation

    @classmethod
    def towards(cls, index: int, set_number: int, seconds: int) -> "Resting":
        return cls(index, set_number, seconds, SessionContinuation(index, set_number))


@dataclass(frozen=True)
class Finished:
    """Every exercise of the plan has been completed or skipped."""


SessionState = Union[Active, Resting, Finished]


@dataclass(frozen=True)
class SessionProgress:
    progress_percent: int
    completed_sets: int
    total_sets: int
    current_exercise: int
    total_exercises: int
    elapsed_seconds: int


class SessionStateMachine:
    """Drive a live workout through its exercises and sets.

    Weight writes go through an :class:`OptimisticUpdateCoordinator` backed
    by the session scratch store, so the local map changes immediately and
    is rolled back if the store rejects the write. Operations called in a
    state that does not allow them raise ``ValueError``.
    """

    def __init__(
        self,
        plan: WorkoutPlan,
        scratch: SessionScratchRepository,
        workouts: Optional[AsyncWorkoutRepository] = None,
        history: Optional[WeightHistoryCache] = None,
        engine: Optional[PersonalizationEngine] = None,
        context: Optional[PersonalizationContext] = None,
        skip_rest_cap: int = 30,
        default_rest_seconds: int = 60,
        clock: Callable[[], float] = time.time,
        user_id: str = DEFAULT_USER,
    ) -> None:
        if not plan.exercises:
            raise ValueError("workout plan has no exercises")
        self.plan = plan
        self.scratch = scratch
        self.workouts = workouts
        self.history = history
        self.engine = engine
        self.context = context
        self.skip_rest_cap = skip_rest_cap
        self.default_rest_seconds = default_rest_seconds
        self.clock = clock
        self.user_id = user_id
        self.coordinator: OptimisticUpdateCoordinator[SessionWeightMap] = (
            OptimisticUpdateCoordinator(SessionWeightMap())
        )
        self.state: SessionState = Active(0, 1)
        self.started_at: Optional[float] = None
        self._consumed: set[str] = set()
        self.workout_id: Optional[int] = None

    @property
    def weights(self) -> SessionWeightMap:
        return self.coordinator.data(WEIGHTS_KEY)

    @property
    def error(self) -> Optional[str]:
        return self.coordinator.state(WEIGHTS_KEY).error

    @property
    def current_exercise(self) -> Exercise:
        return self.plan.exercises[self._require_active().exercise_index]

    def _require_active(self) -> Active:
        if not isinstance(self.state, Active):
            raise ValueError(f"operation requires an active set, session is {type(self.state).__name__}")
        return self.state

    async def start(self, continuation: Optional[SessionContinuation] = None) -> SessionState:
        """Load or reset scratch state for this session.

        The weight map is cleared only for a brand new session: no
        continuation, first set of the first exercise and no start marker.
        """
        marker = await self.scratch.start_marker()
        at_beginning = self.state == Active(0, 1)
        if continuation is None and at_beginning and marker is None:
            await self.scratch.clear_weights()
            marker = self.clock()
            await self.scratch.set_start_marker(marker)
            LOGGER.info("started fresh session for %s", self.user_id)
            weights = SessionWeightMap()
        else:
            weights = await self.scratch.load_weights()
            if marker is None:
                marker = self.clock()
                await self.scratch.set_start_marker(marker)
        self.started_at = marker
        self.coordinator.update_data(weights, WEIGHTS_KEY)
        if continuation is not None:
            self._apply_continuation(continuation)
        return self.state

    def resume(self, continuation: SessionContinuation) -> SessionState:
        """Return to the position held by ``continuation``.

        Only the continuation issued by the current rest period is accepted.
        A continuation already consumed leaves the state untouched. Use
        :meth:`start` to restore a position saved before a reload.
        """
        if continuation.token in self._consumed:
            LOGGER.debug("ignoring consumed continuation %s", continuation.token)
            return self.state
        if isinstance(self.state, Finished):
            raise ValueError("session is already completed")
        if not isinstance(self.state, Resting) or continuation != self.state.continuation:
            raise ValueError("unknown continuation")
        return self._apply_continuation(continuation)

    def _apply_continuation(self, continuation: SessionContinuation) -> SessionState:
        if continuation.token in self._consumed:
            return self.state
        if isinstance(self.state, Finished):
            raise ValueError("session is already completed")
        index, set_number = continuation.exercise_index, continuation.set_number
        if not 0 <= index < len(self.plan):
            raise ValueError(f"exercise index {index} out of range")
        if not 1 <= set_number <= self.plan.exercises[index].sets:
            raise ValueError(f"set {set_number} out of range for {self.plan.exercises[index].name}")
        self._consumed.add(continuation.token)
        self.state = Active(index, set_number)
        return self.state

    async def _persist(self, weights: SessionWeightMap) -> SessionWeightMap:
        return await self.scratch.save_weights(weights)

    def _rest_seconds(self, exercise: Exercise, set_number: int) -> int:
        if self.engine is not None and self.context is not None:
            return self.engine.predict_optimal_rest_period(exercise.name, set_number, self.context)
        if exercise.rest_seconds is not None:
            return exercise.rest_seconds
        return self.default_rest_seconds

    def _advance(self, active: Active) -> SessionState:
        exercise = self.plan.exercises[active.exercise_index]
        rest = self._rest_seconds(exercise, active.set_number)
        if active.set_number < exercise.sets:
            self.state = Resting.towards(active.exercise_index, active.set_number + 1, rest)
        elif active.exercise_index < len(self.plan) - 1:
            self.state = Resting.towards(active.exercise_index + 1, 1, rest)
        else:
            self.state = Finished()
        return self.state

    async def complete_set(self, weight: Optional[float] = None) -> SessionState:
        active = self._require_active()
        outcome = Completed(float(weight) if weight else None)
        await self.coordinator.execute(
            set_outcome_action(
                active.exercise_index,
                active.set_number,
                outcome,
                self._persist,
                lambda: self.weights,
            ),
            WEIGHTS_KEY,
        )
        return self._advance(active)

    async def skip_set(self) -> SessionState:
        active = self._require_active()
        await self.coordinator.execute(
            set_outcome_action(
                active.exercise_index,
                active.set_number,
                SKIPPED,
                self._persist,
                lambda: self.weights,
            ),
            WEIGHTS_KEY,
        )
        return self._advance(active)

    async def skip_exercise(self) -> SessionState:
        active = self._require_active()
        exercise = self.plan.exercises[active.exercise_index]
        await self.coordinator.execute(
            exercise_skip_action(active.exercise_index, self._persist, lambda: self.weights),
            WEIGHTS_KEY,
        )
        if active.exercise_index < len(self.plan) - 1:
            if exercise.rest_seconds is None:
                rest = self.skip_rest_cap
            else:
                rest = min(self.skip_rest_cap, exercise.rest_seconds)
            self.state = Resting.towards(active.exercise_index + 1, 1, rest)
        else:
            self.state = Finished()
        return self.state

    def progress(self) -> SessionProgress:
        if isinstance(self.state, Active):
            index, set_number = self.state.exercise_index, self.state.set_number
        elif isinstance(self.state, Resting):
            index, set_number = self.state.next_exercise_index, self.state.next_set_number
        else:
            index, set_number = len(self.plan), 1
        total_exercises = len(self.plan)
        total_sets = sum(ex.sets for ex in self.plan.exercises)
        completed_sets = sum(ex.sets for ex in self.plan.exercises[:index])
        if index < total_exercises:
            sets_here = self.plan.exercises[index].sets
            completed_sets += set_number - 1
        else:
            sets_here = 1
        per_exercise = 1 / total_exercises
        within = (set_number - 1) / max(1, sets_here) * per_exercise
        percent = min(100, int((index * per_exercise + within) * 100 + 0.5))
        elapsed = 0
        if self.started_at is not None:
            elapsed = max(int(self.clock() - self.started_at), 0)
        return SessionProgress(
            progress_percent=percent,
            completed_sets=completed_sets,
            total_sets=total_sets,
            current_exercise=min(index + 1, total_exercises),
            total_exercises=total_exercises,
            elapsed_seconds=elapsed,
        )

    async def finish(self) -> Optional[int]:
        """Save the completed workout and reset the session scratch state."""
        if not isinstance(self.state, Finished):
            raise ValueError("workout is not completed yet")
        if self.workout_id is not None:
            return self.workout_id
        blob = self.weights.to_blob()
        exercises = [
            {
                "name": ex.name,
                "sets": ex.sets,
                "reps": ex.reps,
                "weights": blob.get(str(index), {}),
            }
            for index, ex in enumerate(self.plan.exercises)
        ]
        duration = None
        if self.started_at is not None:
            duration = max(int((self.clock() - self.started_at) / 60), 0)
        if self.workouts is not None:
            self.workout_id = await self.workouts.create(
                exercises,
                timestamp=self.clock(),
                workout_type=self.plan.workout_type,
                duration=duration,
                user_id=self.user_id,
            )
            LOGGER.info("saved workout %s with %d exercises", self.workout_id, len(exercises))
        if self.history is not None:
            self.history.invalidate()
        await self.scratch.clear()
        return self.workout_id


def describe_state(state: SessionState) -> dict:
    """JSON view of a session state."""
    if isinstance(state, Active):
        return {
            "status": "active",
            "exercise_index": state.exercise_index,
            "set_number": state.set_number,
        }
    if isinstance(state, Resting):
        return {
            "status": "resting",
            "next_exercise_index": state.next_exercise_index,
            "next_set_number": state.next_set_number,
            "duration_seconds": state.duration_seconds,
            "continuation": {
                "exercise_index": state.continuation.exercise_index,
                "set_number": state.continuation.set_number,
                "token": state.continuation.token,
            },
        }
    return {"status": "completed"}
