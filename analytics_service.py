from __future__ import annotations
import datetime
import logging
import math
from typing import Callable, Iterable, List, Mapping

from algorithms.math_tools import MathTools
from models import (
    ExerciseStats,
    PerformanceMetrics,
    PersonalRecord,
    PreviousRecord,
    ProgressionAnalysis,
    SessionExercise,
    WeeklyStats,
    WorkoutSession,
    parse_session_date,
)

LOGGER = logging.getLogger(__name__)


def _week_start(moment: datetime.datetime) -> datetime.datetime:
    """Local midnight of the Sunday starting the week of ``moment``."""
    days_since_sunday = (moment.weekday() + 1) % 7
    start = moment - datetime.timedelta(days=days_since_sunday)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


class AnalyticsEngine:
    """Compute performance metrics from a workout history.

    Sessions are sorted chronologically on construction; sessions whose date
    cannot be parsed are dropped. Every computation is pure and tolerates
    missing or malformed numeric fields.
    """

    RECORD_LIMIT: int = 10
    WEEK_LIMIT: int = 12
    CONSISTENCY_WINDOW_DAYS: int = 30
    CONSISTENCY_TARGET: int = 12
    MINUTES_PER_EXERCISE: int = 15
    MINUTES_PER_SET: int = 2

    def __init__(
        self,
        sessions: Iterable[WorkoutSession | Mapping],
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self.clock = clock
        parsed: list[tuple[datetime.datetime, WorkoutSession]] = []
        for session in sessions:
            if isinstance(session, Mapping):
                session = WorkoutSession.from_dict(session)
            date = parse_session_date(session.date)
            if date is None:
                LOGGER.debug("skipping session with unparseable date %r", session.date)
                continue
            parsed.append((date, session))
        parsed.sort(key=lambda item: item[0])
        self._sessions = parsed

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    @staticmethod
    def _weighted_sets(exercise: SessionExercise) -> list[tuple[float, int]]:
        """(weight, reps) of completed sets with a recorded weight."""
        out = []
        for s in exercise.sets:
            if not s.completed:
                continue
            weight = MathTools.safe_float(s.weight, None)
            if weight is None:
                continue
            reps = MathTools.safe_float(s.reps, 0.0)
            out.append((weight, int(reps)))
        return out

    def _session_sets(self, session: WorkoutSession) -> int:
        return sum(len(self._weighted_sets(ex)) for ex in session.exercises)

    def _session_volume(self, session: WorkoutSession) -> float:
        # load proxy: weights are summed without multiplying by reps
        return sum(w for ex in session.exercises for w, _ in self._weighted_sets(ex))

    def _estimated_duration(self, session: WorkoutSession) -> float:
        planned_sets = sum(len(ex.sets) for ex in session.exercises)
        return (
            len(session.exercises) * self.MINUTES_PER_EXERCISE
            + planned_sets * self.MINUTES_PER_SET
        )

    def get_performance_metrics(self) -> PerformanceMetrics:
        exercise_stats = self.generate_exercise_stats()
        return PerformanceMetrics(
            total_workouts=len(self._sessions),
            total_sets=self.total_sets(),
            total_volume=self.total_volume(),
            average_workout_duration=self.average_workout_duration(),
            workout_frequency=self.workout_frequency(),
            consistency_score=self.consistency_score(),
            progression_rate=self._progression_rate(exercise_stats),
            personal_records=self.find_personal_records(),
            weekly_stats=self.generate_weekly_stats(),
            exercise_stats=exercise_stats,
        )

    def total_sets(self) -> int:
        return sum(self._session_sets(s) for _, s in self._sessions)

    def total_volume(self) -> float:
        return float(sum(self._session_volume(s) for _, s in self._sessions))

    def average_workout_duration(self) -> float:
        """Estimated minutes per workout."""
        if not self._sessions:
            return 0.0
        total = sum(self._estimated_duration(s) for _, s in self._sessions)
        return total / len(self._sessions)

    def workout_frequency(self) -> float:
        """Workouts per week over the span of the history."""
        if len(self._sessions) < 2:
            return 0.0
        first = self._sessions[0][0]
        last = self._sessions[-1][0]
        weeks = (last - first).total_seconds() / 86400 / 7
        return len(self._sessions) / weeks if weeks > 0 else 0.0

    def consistency_score(self) -> int:
        if len(self._sessions) < 2:
            return 0
        threshold = self.clock() - datetime.timedelta(days=self.CONSISTENCY_WINDOW_DAYS)
        recent = [date for date, _ in self._sessions if date >= threshold]
        unique_days = len({date.weekday() for date in recent})
        frequency_score = min(len(recent) / self.CONSISTENCY_TARGET, 1) * 70
        distribution_score = unique_days / 7 * 30
        return int(MathTools.round_half_up(frequency_score + distribution_score))

    def progression_rate(self) -> float:
        return self._progression_rate(self.generate_exercise_stats())

    def _progression_rate(self, stats: List[ExerciseStats]) -> float:
        rates = [s.progression_rate for s in stats if s.total_sets >= 2]
        if not rates:
            return 0.0
        return MathTools.round_half_up(MathTools.mean(rates), 2)

    def find_personal_records(self) -> list[PersonalRecord]:
        """Records set after the first logged weight, newest first."""
        records: list[PersonalRecord] = []
        maxes: dict[str, PreviousRecord] = {}
        for date, session in self._sessions:
            for exercise in session.exercises:
                for weight, reps in self._weighted_sets(exercise):
                    if not weight:
                        continue
                    current = maxes.get(exercise.name)
                    if current is not None and weight <= current.weight:
                        continue
                    maxes[exercise.name] = PreviousRecord(weight, reps, date)
                    if current is not None:
                        records.append(
                            PersonalRecord(
                                exercise_name=exercise.name,
                                weight=weight,
                                reps=reps,
                                date=date,
                                previous_record=current,
                            )
                        )
        records.sort(key=lambda r: r.date, reverse=True)
        return records[: self.RECORD_LIMIT]

    def generate_weekly_stats(self) -> list[WeeklyStats]:
        weeks: dict[datetime.datetime, WeeklyStats] = {}
        durations: dict[datetime.datetime, list[float]] = {}
        for date, session in self._sessions:
            start = _week_start(date)
            week = weeks.setdefault(start, WeeklyStats(week_start=start))
            week.workouts += 1
            week.total_sets += self._session_sets(session)
            week.total_volume += self._session_volume(session)
            durations.setdefault(start, []).append(self._estimated_duration(session))
            for exercise in session.exercises:
                if exercise.name not in week.top_exercises:
                    week.top_exercises.append(exercise.name)
        for start, week in weeks.items():
            week.average_duration = MathTools.mean(durations[start])
        ordered = sorted(weeks.values(), key=lambda w: w.week_start, reverse=True)
        return ordered[: self.WEEK_LIMIT]

    def generate_exercise_stats(self) -> list[ExerciseStats]:
        data: dict[str, dict] = {}
        for date, session in self._sessions:
            for exercise in session.exercises:
                item = data.setdefault(
                    exercise.name, {"weights": [], "dates": [], "volume": 0.0}
                )
                for weight, _reps in self._weighted_sets(exercise):
                    item["weights"].append(weight)
                    item["dates"].append(date)
                    item["volume"] += weight

        result = []
        for name, item in data.items():
            weights: list[float] = item["weights"]
            dates: list[datetime.datetime] = item["dates"]
            total_sets = len(weights)
            unique_weeks = len({_week_start(d).date() for d in dates})
            frequency = total_sets / unique_weeks if unique_weeks else 0.0
            result.append(
                ExerciseStats(
                    name=name,
                    total_sets=total_sets,
                    total_volume=item["volume"],
                    average_weight=MathTools.round_half_up(MathTools.mean(weights), 2),
                    max_weight=max(weights) if weights else 0.0,
                    progression_rate=self._exercise_progression(weights, dates),
                    last_performed=max(dates) if dates else None,
                    frequency=MathTools.round_half_up(frequency, 2),
                    volume_trend=self._volume_trend(weights),
                )
            )
        result.sort(key=lambda s: s.total_volume, reverse=True)
        return result

    @staticmethod
    def _exercise_progression(weights: list[float], dates: list[datetime.datetime]) -> float:
        if len(weights) < 2:
            return 0.0
        ordered = sorted(zip(dates, weights), key=lambda p: p[0])
        return MathTools.percent_change(ordered[0][1], ordered[-1][1])

    @staticmethod
    def _volume_trend(weights: list[float]) -> str:
        if len(weights) < 3:
            return "stable"
        trend = MathTools.net_step_trend(weights)
        if trend > 1:
            return "increasing"
        if trend < -1:
            return "decreasing"
        return "stable"

    def exercise_progressions(self) -> list[ProgressionAnalysis]:
        """Per-exercise progress summary for exercises that changed."""
        out = []
        for stat in self.generate_exercise_stats():
            if stat.progression_rate == 0:
                continue
            start = stat.average_weight * 0.9
            out.append(
                ProgressionAnalysis(
                    exercise=stat.name,
                    timeframe="month",
                    start_weight=start,
                    end_weight=stat.max_weight,
                    improvement=stat.max_weight - start,
                    improvement_percentage=stat.progression_rate,
                    recommendation=self._recommendation(stat.progression_rate),
                )
            )
        return out

    @staticmethod
    def _recommendation(rate: float) -> str:
        if rate > 10:
            return "Excellent progress! Consider increasing weight by 5-10% next session."
        if rate > 0:
            return "Good steady progress. Continue current progression."
        if rate < -5:
            return "Consider deload week or form check. Progress has declined recently."
        return "Progress has plateaued. Try varying rep ranges or adding volume."


def format_volume(volume: float, unit: str = "lbs") -> str:
    if volume >= 1000:
        return f"{volume / 1000:.1f}k {unit}"
    return f"{volume:g} {unit}"


def format_duration(minutes: float) -> str:
    hours = math.floor(minutes / 60)
    mins = int(MathTools.round_half_up(minutes % 60))
    if hours > 0:
        return f"{hours}h {mins}m"
    return f"{mins}m"


def infer_recent_performance(stats: Iterable[ExerciseStats]) -> str:
    """Majority volume trend across exercises, ``stable`` on ties."""
    ups = downs = 0
    for s in stats:
        if s.volume_trend == "increasing":
            ups += 1
        elif s.volume_trend == "decreasing":
            downs += 1
    if ups > downs:
        return "improving"
    if downs > ups:
        return "declining"
    return "stable"
