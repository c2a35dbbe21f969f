from __future__ import annotations
import datetime
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Mapping, Optional, Union


@dataclass(frozen=True)
class Completed:
    """Set finished; ``weight`` is ``None`` when no weight was entered."""

    weight: float | None = None


@dataclass(frozen=True)
class Skipped:
    """Set explicitly skipped."""


@dataclass(frozen=True)
class NotAttempted:
    """Set never reached."""


SetOutcome = Union[Completed, Skipped, NotAttempted]

SKIPPED = Skipped()
NOT_ATTEMPTED = NotAttempted()


@dataclass(frozen=True)
class Attempted:
    """Exercise with per-set outcomes keyed by 1-based set number."""

    sets: Mapping[int, SetOutcome] = field(default_factory=dict)


@dataclass(frozen=True)
class ExerciseSkipped:
    """Whole exercise skipped."""


ExerciseOutcome = Union[Attempted, ExerciseSkipped]

EXERCISE_SKIPPED = ExerciseSkipped()


class SessionWeightMap:
    """Immutable map of exercise index to recorded set outcomes.

    The stored blob uses ``{exerciseIndex: {setNumber: weight|null}}`` where a
    missing key is not attempted, ``null`` is skipped, a number is completed
    (``0`` meaning completed without a weight) and an empty mapping marks the
    whole exercise as skipped.
    """

    def __init__(self, exercises: Mapping[int, ExerciseOutcome] | None = None) -> None:
        self._exercises: dict[int, ExerciseOutcome] = dict(exercises or {})

    def exercise(self, index: int) -> ExerciseOutcome | None:
        return self._exercises.get(index)

    def outcome(self, index: int, set_number: int) -> SetOutcome:
        entry = self._exercises.get(index)
        if isinstance(entry, Attempted):
            return entry.sets.get(set_number, NOT_ATTEMPTED)
        return NOT_ATTEMPTED

    def weight_for(self, index: int, set_number: int) -> float | None:
        result = self.outcome(index, set_number)
        if isinstance(result, Completed):
            return result.weight
        return None

    def with_set(self, index: int, set_number: int, outcome: SetOutcome) -> "SessionWeightMap":
        """Return a copy with ``outcome`` recorded for one set."""
        entry = self._exercises.get(index)
        sets = dict(entry.sets) if isinstance(entry, Attempted) else {}
        if isinstance(outcome, NotAttempted):
            sets.pop(set_number, None)
        else:
            sets[set_number] = outcome
        updated = dict(self._exercises)
        if sets:
            updated[index] = Attempted(sets)
        else:
            updated.pop(index, None)
        return SessionWeightMap(updated)

    def with_exercise_skipped(self, index: int) -> "SessionWeightMap":
        updated = dict(self._exercises)
        updated[index] = EXERCISE_SKIPPED
        return SessionWeightMap(updated)

    def indexes(self) -> list[int]:
        return sorted(self._exercises)

    def to_blob(self) -> dict[str, dict[str, float | None]]:
        blob: dict[str, dict[str, float | None]] = {}
        for index in sorted(self._exercises):
            entry = self._exercises[index]
            if isinstance(entry, ExerciseSkipped):
                blob[str(index)] = {}
                continue
            sets: dict[str, float | None] = {}
            for set_number in sorted(entry.sets):
                result = entry.sets[set_number]
                if isinstance(result, Completed):
                    sets[str(set_number)] = result.weight if result.weight is not None else 0
                elif isinstance(result, Skipped):
                    sets[str(set_number)] = None
            blob[str(index)] = sets
        return blob

    @classmethod
    def from_blob(cls, blob: Mapping[Any, Any] | None) -> "SessionWeightMap":
        """Build a map from the stored blob, ignoring malformed entries."""
        exercises: dict[int, ExerciseOutcome] = {}
        if not isinstance(blob, Mapping):
            return cls()
        for raw_index, raw_sets in blob.items():
            try:
                index = int(raw_index)
            except (TypeError, ValueError):
                continue
            if not isinstance(raw_sets, Mapping):
                continue
            if not raw_sets:
                exercises[index] = EXERCISE_SKIPPED
                continue
            sets: dict[int, SetOutcome] = {}
            for raw_set, value in raw_sets.items():
                try:
                    set_number = int(raw_set)
                except (TypeError, ValueError):
                    continue
                if value is None:
                    sets[set_number] = SKIPPED
                elif isinstance(value, (int, float)) and not isinstance(value, bool):
                    sets[set_number] = Completed(float(value) if value else None)
            if sets:
                exercises[index] = Attempted(sets)
        return cls(exercises)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SessionWeightMap):
            return NotImplemented
        return self._exercises == other._exercises

    def __len__(self) -> int:
        return len(self._exercises)

    def __repr__(self) -> str:
        return f"SessionWeightMap({self.to_blob()!r})"


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Exercise:
    name: str
    description: str = ""
    sets: int = 1
    reps: int | str = 10
    rest_seconds: Optional[int] = None
    uses_weight: bool = True
    form_tips: tuple[str, ...] = ()
    safety_tips: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Exercise":
        rest = data.get("restSeconds", data.get("rest_seconds"))
        reps = data.get("reps", 10)
        if not isinstance(reps, (int, str)) or isinstance(reps, bool):
            reps = 10
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description") or ""),
            sets=max(1, _as_int(data.get("sets"), 1)),
            reps=reps,
            rest_seconds=_as_int(rest, 0) if rest is not None else None,
            uses_weight=bool(data.get("usesWeight", data.get("uses_weight", True))),
            form_tips=tuple(data.get("formTips", data.get("form_tips")) or ()),
            safety_tips=tuple(data.get("safetyTips", data.get("safety_tips")) or ()),
        )


@dataclass(frozen=True)
class WorkoutPlan:
    """Ordered exercises of one generated workout."""

    exercises: tuple[Exercise, ...]
    workout_type: Optional[str] = None

    def __len__(self) -> int:
        return len(self.exercises)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkoutPlan":
        raw = data.get("exercises") or []
        return cls(
            exercises=tuple(Exercise.from_dict(e) for e in raw if isinstance(e, Mapping)),
            workout_type=data.get("type", data.get("workout_type")),
        )


@dataclass(frozen=True)
class SetRecord:
    weight: float | None
    reps: int = 0
    completed: bool = False


@dataclass(frozen=True)
class SessionExercise:
    name: str
    sets: tuple[SetRecord, ...] = ()


@dataclass(frozen=True)
class WorkoutSession:
    """A saved workout as read back from the store."""

    date: datetime.datetime | datetime.date | str
    exercises: tuple[SessionExercise, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkoutSession":
        exercises = []
        for ex in data.get("exercises") or []:
            if not isinstance(ex, Mapping):
                continue
            sets = []
            for s in ex.get("sets") or []:
                if not isinstance(s, Mapping):
                    continue
                sets.append(
                    SetRecord(
                        weight=s.get("weight"),
                        reps=_as_int(s.get("reps"), 0),
                        completed=bool(s.get("completed", False)),
                    )
                )
            exercises.append(SessionExercise(str(ex.get("name", "")), tuple(sets)))
        return cls(date=data.get("date", ""), exercises=tuple(exercises))


@dataclass(frozen=True)
class WeightHistoryEntry:
    exercise_name: str
    set_number: int
    weight: float
    timestamp: float
    reps: Optional[int] = None
    date: str = ""


@dataclass(frozen=True)
class PreviousRecord:
    weight: float
    reps: int
    date: datetime.datetime


@dataclass(frozen=True)
class PersonalRecord:
    exercise_name: str
    weight: float
    reps: int
    date: datetime.datetime
    previous_record: Optional[PreviousRecord] = None


@dataclass
class WeeklyStats:
    week_start: datetime.datetime
    workouts: int = 0
    total_sets: int = 0
    total_volume: float = 0.0
    average_duration: float = 0.0
    top_exercises: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExerciseStats:
    name: str
    total_sets: int
    total_volume: float
    average_weight: float
    max_weight: float
    progression_rate: float
    last_performed: Optional[datetime.datetime]
    frequency: float
    volume_trend: str = "stable"


@dataclass(frozen=True)
class ProgressionAnalysis:
    exercise: str
    timeframe: str
    start_weight: float
    end_weight: float
    improvement: float
    improvement_percentage: float
    recommendation: str


@dataclass(frozen=True)
class PerformanceMetrics:
    total_workouts: int = 0
    total_sets: int = 0
    total_volume: float = 0.0
    average_workout_duration: float = 0.0
    workout_frequency: float = 0.0
    consistency_score: int = 0
    progression_rate: float = 0.0
    personal_records: list[PersonalRecord] = field(default_factory=list)
    weekly_stats: list[WeeklyStats] = field(default_factory=list)
    exercise_stats: list[ExerciseStats] = field(default_factory=list)


@dataclass(frozen=True)
class PersonalizationContext:
    time_of_day: str = "afternoon"
    day_of_week: int = 1
    weather: Optional[str] = None
    mood: Optional[str] = None
    available_time: float = 45
    days_since_last_workout: float = 0
    recent_performance: str = "stable"
    injury_history: tuple[str, ...] = ()
    preferred_exercises: tuple[str, ...] = ()
    equipment: tuple[str, ...] = ()


@dataclass(frozen=True)
class RecommendationAction:
    type: str
    value: float | str


@dataclass(frozen=True)
class Recommendation:
    type: str
    title: str
    description: str
    reasoning: str
    confidence: float
    priority: str
    action: Optional[RecommendationAction] = None


@dataclass(frozen=True)
class AdaptiveDifficulty:
    base_intensity: float
    volume_multiplier: float
    rest_multiplier: float
    exercise_complexity: str
    progression_rate: float


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses, dates and containers into JSON friendly values."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, SessionWeightMap):
        return value.to_blob()
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def parse_session_date(value: Any) -> datetime.datetime | None:
    """Return ``value`` as a naive local datetime or ``None`` if unparseable."""
    if isinstance(value, datetime.datetime):
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    if isinstance(value, str) and value:
        try:
            parsed = datetime.datetime.fromisoformat(value)
        except ValueError:
            return None
        return parse_session_date(parsed)
    return None
