from __future__ import annotations
import datetime
from typing import Any, Callable, Iterable, Mapping

from algorithms.math_tools import MathTools
from analytics_service import AnalyticsEngine
from models import (
    AdaptiveDifficulty,
    PerformanceMetrics,
    PersonalizationContext,
    Recommendation,
    RecommendationAction,
    WorkoutSession,
)

PRIORITY_WEIGHT = {"high": 3, "medium": 2, "low": 1}

BASE_REST_PERIODS = {
    "Squat": 180,
    "Deadlift": 180,
    "Bench Press": 150,
    "Pull-up": 120,
    "Push-up": 90,
    "Plank": 60,
}
DEFAULT_REST_SECONDS = 120

DEFAULT_EQUIPMENT = ("dumbbells", "barbell", "bodyweight")

RuleGroup = Callable[[PerformanceMetrics, PersonalizationContext], list[Recommendation]]


def time_based_recommendations(
    metrics: PerformanceMetrics, context: PersonalizationContext
) -> list[Recommendation]:
    recs = []
    if context.time_of_day == "morning":
        recs.append(
            Recommendation(
                type="workout_type",
                title="Morning Energy Boost",
                description="Start with dynamic movements and compound exercises",
                reasoning="Morning workouts benefit from exercises that activate multiple muscle groups and boost energy",
                confidence=0.8,
                priority="medium",
                action=RecommendationAction("extend_warmup", 5),
            )
        )
    if context.time_of_day == "evening":
        recs.append(
            Recommendation(
                type="intensity",
                title="Evening Wind-Down",
                description="Consider moderate intensity to avoid disrupting sleep",
                reasoning="High-intensity evening workouts can interfere with sleep quality",
                confidence=0.7,
                priority="medium",
                action=RecommendationAction("adjust_weight", 0.9),
            )
        )
    if context.day_of_week in (0, 6):
        recs.append(
            Recommendation(
                type="duration",
                title="Weekend Extended Session",
                description="Take advantage of extra time for a longer, more comprehensive workout",
                reasoning="Weekends typically allow for longer workout sessions",
                confidence=0.6,
                priority="low",
            )
        )
    return recs


def performance_recommendations(
    metrics: PerformanceMetrics, context: PersonalizationContext
) -> list[Recommendation]:
    recs = []
    if metrics.consistency_score < 60:
        recs.append(
            Recommendation(
                type="motivation",
                title="Consistency Boost Needed",
                description="Focus on shorter, more frequent workouts to build habit",
                reasoning=f"Your consistency score is {metrics.consistency_score}%. Shorter sessions can help build routine",
                confidence=0.9,
                priority="high",
                action=RecommendationAction("modify_rest", 0.8),
            )
        )
    if metrics.progression_rate < 2:
        recs.append(
            Recommendation(
                type="intensity",
                title="Progressive Overload Needed",
                description="Time to increase weights or reps to continue progressing",
                reasoning=f"Your progression rate is {metrics.progression_rate:.1f}%. Consider increasing intensity",
                confidence=0.85,
                priority="high",
                action=RecommendationAction("adjust_weight", 1.05),
            )
        )
    if context.days_since_last_workout > 3:
        recs.append(
            Recommendation(
                type="workout_type",
                title="Gradual Return",
                description="Start with moderate intensity after time off",
                reasoning=f"It's been {context.days_since_last_workout:g} days since your last workout. Ease back in",
                confidence=0.8,
                priority="high",
                action=RecommendationAction("adjust_weight", 0.85),
            )
        )
    return recs


def recovery_recommendations(
    metrics: PerformanceMetrics, context: PersonalizationContext
) -> list[Recommendation]:
    recs = []
    if context.mood == "tired":
        recs.append(
            Recommendation(
                type="intensity",
                title="Active Recovery Focus",
                description="Light movement and mobility work when feeling tired",
                reasoning="When tired, active recovery can be more beneficial than intense training",
                confidence=0.8,
                priority="high",
                action=RecommendationAction("adjust_weight", 0.7),
            )
        )
    if context.mood == "stressed":
        recs.append(
            Recommendation(
                type="rest_period",
                title="Extended Rest Periods",
                description="Take longer breaks between sets to manage stress",
                reasoning="Stress can impact recovery. Longer rest periods help maintain form and reduce cortisol",
                confidence=0.75,
                priority="medium",
                action=RecommendationAction("modify_rest", 1.3),
            )
        )
    if context.injury_history:
        injuries = ", ".join(context.injury_history)
        recs.append(
            Recommendation(
                type="exercise_selection",
                title="Injury-Aware Exercise Selection",
                description="Modified exercises to accommodate injury history",
                reasoning=f"Considering your history with {injuries}",
                confidence=0.9,
                priority="high",
                action=RecommendationAction("change_exercise", injuries),
            )
        )
    return recs


def motivation_recommendations(
    metrics: PerformanceMetrics, context: PersonalizationContext
) -> list[Recommendation]:
    recs = []
    if context.weather == "rainy":
        recs.append(
            Recommendation(
                type="motivation",
                title="Indoor Energy Boost",
                description="Beat the rainy day blues with an energizing workout",
                reasoning="Rainy weather can affect mood. Exercise helps counteract this",
                confidence=0.6,
                priority="low",
            )
        )
    if context.preferred_exercises:
        favorites = ", ".join(context.preferred_exercises[:2])
        recs.append(
            Recommendation(
                type="exercise_selection",
                title="Favorite Exercise Integration",
                description=f"Include your preferred exercises: {favorites}",
                reasoning="Including preferred exercises increases workout enjoyment and adherence",
                confidence=0.7,
                priority="medium",
            )
        )
    return recs


RULE_GROUPS: tuple[RuleGroup, ...] = (
    time_based_recommendations,
    performance_recommendations,
    recovery_recommendations,
    motivation_recommendations,
)


def recommendation_score(rec: Recommendation) -> float:
    return PRIORITY_WEIGHT.get(rec.priority, 1) * rec.confidence


class PersonalizationEngine:
    """Turn workout history and situational context into guidance."""

    def __init__(
        self,
        sessions: Iterable[WorkoutSession | Mapping],
        user_profile: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    ) -> None:
        self.analytics = AnalyticsEngine(sessions, clock=clock)
        self.user_profile = dict(user_profile or {})
        self._metrics: PerformanceMetrics | None = None

    @property
    def metrics(self) -> PerformanceMetrics:
        if self._metrics is None:
            self._metrics = self.analytics.get_performance_metrics()
        return self._metrics

    def generate_recommendations(self, context: PersonalizationContext) -> list[Recommendation]:
        """Merge every rule group, highest priority times confidence first."""
        metrics = self.metrics
        recs: list[Recommendation] = []
        for group in RULE_GROUPS:
            recs.extend(group(metrics, context))
        return sorted(recs, key=recommendation_score, reverse=True)

    def calculate_adaptive_difficulty(self, context: PersonalizationContext) -> AdaptiveDifficulty:
        metrics = self.metrics
        days = MathTools.safe_float(context.days_since_last_workout)
        available = MathTools.safe_float(context.available_time)

        intensity = 0.7
        if context.recent_performance == "improving":
            intensity += 0.1
        elif context.recent_performance == "declining":
            intensity -= 0.15
        if days > 7:
            intensity -= 0.2
        elif days < 2:
            intensity -= 0.1
        if context.mood == "tired":
            intensity -= 0.2
        elif context.mood == "energetic":
            intensity += 0.1

        volume = 1.0
        if available < 30:
            volume = 0.7
        elif available > 60:
            volume = 1.3

        rest = 1.0
        if context.mood == "stressed" or days > 5:
            rest = 1.3
        elif available < 30:
            rest = 0.8

        complexity = "intermediate"
        if metrics.total_workouts < 10:
            complexity = "beginner"
        elif metrics.total_workouts > 50 and metrics.progression_rate > 5:
            complexity = "advanced"

        progression = 0.5
        if context.recent_performance == "improving" and context.mood == "motivated":
            progression = 0.8
        elif context.recent_performance == "declining":
            progression = 0.2

        return AdaptiveDifficulty(
            base_intensity=round(MathTools.clamp(intensity, 0.3, 1.0), 2),
            volume_multiplier=MathTools.clamp(volume, 0.5, 2.0),
            rest_multiplier=MathTools.clamp(rest, 0.5, 2.0),
            exercise_complexity=complexity,
            progression_rate=MathTools.clamp(progression, 0.1, 1.0),
        )

    def generate_contextual_motivation(self, context: PersonalizationContext) -> list[str]:
        metrics = self.metrics
        lines: list[str] = []

        if metrics.progression_rate > 5:
            lines.append("You're on fire! Your progress rate is amazing - keep pushing!")
        elif metrics.consistency_score > 80:
            lines.append("Your consistency is paying off! Every workout counts.")

        if context.time_of_day == "morning":
            lines.append("Great way to start the day! Morning workouts set a positive tone.")
        elif context.time_of_day == "evening":
            lines.append("Perfect way to unwind! Evening workouts help release daily stress.")

        if context.mood == "tired":
            lines.append("Even a light workout is better than none. You've got this!")
        elif context.mood == "motivated":
            lines.append("Channel that motivation! This is your moment to shine.")

        if context.weather == "rainy":
            lines.append("While it's raining outside, you're making it rain gains inside!")
        elif context.weather == "sunny":
            lines.append("Beautiful day for a beautiful workout! Let's make it count.")

        if not lines:
            lines = [
                "Every rep brings you closer to your goals!",
                "Focus on form, the results will follow.",
                "You're stronger than you think!",
            ]
            if self.analytics.session_count > 0:
                lines.append(
                    f"You've completed {self.analytics.session_count} sessions - keep the momentum!"
                )
            goals = self.user_profile.get("goals")
            if isinstance(goals, (list, tuple)) and goals:
                lines.append(f"Remember your goal: {goals[0]}")

        return lines[:2]

    def predict_optimal_rest_period(
        self, exercise_name: str, set_number: int, context: PersonalizationContext
    ) -> int:
        """Rest seconds for the set, always a multiple of 15."""
        base = BASE_REST_PERIODS.get(exercise_name, DEFAULT_REST_SECONDS)
        base += (max(int(set_number), 1) - 1) * 15
        base *= self.calculate_adaptive_difficulty(context).rest_multiplier
        return MathTools.round_to_step(base)


def current_context(
    now: datetime.datetime | None = None,
    last_workout_at: datetime.datetime | None = None,
    **overrides: Any,
) -> PersonalizationContext:
    """Context derived from the clock with neutral defaults for the rest."""
    now = now or datetime.datetime.now()
    if now.hour < 12:
        time_of_day = "morning"
    elif now.hour < 17:
        time_of_day = "afternoon"
    else:
        time_of_day = "evening"
    # no previous workout counts from the epoch, i.e. a very long break
    last = last_workout_at or datetime.datetime.fromtimestamp(0)
    values: dict[str, Any] = {
        "time_of_day": time_of_day,
        "day_of_week": (now.weekday() + 1) % 7,
        "available_time": 45,
        "days_since_last_workout": max((now - last).days, 0),
        "recent_performance": "stable",
        "injury_history": (),
        "preferred_exercises": (),
        "equipment": DEFAULT_EQUIPMENT,
        "mood": "neutral",
    }
    values.update(overrides)
    return PersonalizationContext(**values)
