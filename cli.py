import argparse
import datetime
import json
import logging
import time

from config import YamlConfig
from db import WorkoutRepository
from analytics_service import (
    AnalyticsEngine,
    format_duration,
    format_volume,
    infer_recent_performance,
)
from models import to_jsonable
from personalization_service import PersonalizationEngine, current_context

LOGGER = logging.getLogger(__name__)

DEMO_PLAN = [
    ("Squat", 3, "5", [135.0, 145.0, 155.0]),
    ("Bench Press", 3, "8", [95.0, 100.0, 105.0]),
    ("Pull-up", 3, "8-10", [0, 0, None]),
]


def _engine(db_path: str, limit: int, user_id: str) -> PersonalizationEngine:
    sessions = WorkoutRepository(db_path).fetch_sessions(limit=limit, user_id=user_id)
    return PersonalizationEngine(sessions)


def show_metrics(db_path: str, limit: int, user_id: str, unit: str, as_json: bool) -> None:
    sessions = WorkoutRepository(db_path).fetch_sessions(limit=limit, user_id=user_id)
    metrics = AnalyticsEngine(sessions).get_performance_metrics()
    if as_json:
        print(json.dumps(to_jsonable(metrics), indent=2))
        return
    print(f"Workouts: {metrics.total_workouts}")
    print(f"Sets: {metrics.total_sets}")
    print(f"Volume: {format_volume(metrics.total_volume, unit)}")
    print(f"Average duration: {format_duration(metrics.average_workout_duration)}")
    print(f"Frequency: {metrics.workout_frequency:.1f}/week")
    print(f"Consistency: {metrics.consistency_score}%")
    print(f"Progression: {metrics.progression_rate:.2f}%")
    for record in metrics.personal_records:
        print(
            f"PR {record.exercise_name}: {record.weight:g} x {record.reps} "
            f"on {record.date.date().isoformat()}"
        )


def recommend(db_path: str, limit: int, user_id: str, mood: str | None, available: float | None) -> None:
    engine = _engine(db_path, limit, user_id)
    overrides = {"recent_performance": infer_recent_performance(engine.metrics.exercise_stats)}
    if mood:
        overrides["mood"] = mood
    if available is not None:
        overrides["available_time"] = available
    last = WorkoutRepository(db_path).last_workout_at(user_id)
    context = current_context(datetime.datetime.now(), last, **overrides)
    for rec in engine.generate_recommendations(context):
        print(f"[{rec.priority}] {rec.title}: {rec.description}")
    for line in engine.generate_contextual_motivation(context):
        print(line)


def rest_period(db_path: str, limit: int, user_id: str, exercise: str, set_number: int) -> None:
    engine = _engine(db_path, limit, user_id)
    last = WorkoutRepository(db_path).last_workout_at(user_id)
    context = current_context(datetime.datetime.now(), last)
    seconds = engine.predict_optimal_rest_period(exercise, set_number, context)
    print(f"{exercise} set {set_number}: rest {seconds}s")


def demo_data(db_path: str, user_id: str, days: int = 3) -> None:
    """Populate the database with demo workouts if empty."""
    repo = WorkoutRepository(db_path)
    if repo.fetch_sessions(limit=1, user_id=user_id):
        print("Database already contains workouts")
        return
    now = time.time()
    for offset in range(days, 0, -1):
        bump = (days - offset) * 5.0
        exercises = []
        for name, sets, reps, weights in DEMO_PLAN:
            blob = {}
            for set_number, weight in enumerate(weights, start=1):
                blob[str(set_number)] = weight + bump if weight else weight
            exercises.append({"name": name, "sets": sets, "reps": reps, "weights": blob})
        repo.create(
            exercises,
            timestamp=now - offset * 2 * 86400,
            workout_type="strength",
            duration=45,
            user_id=user_id,
        )
    print("Demo data inserted")


def main() -> None:
    parser = argparse.ArgumentParser(description="Workout session utilities")
    parser.add_argument("--db", default="workout.db")
    parser.add_argument("--yaml", default="settings.yaml")
    sub = parser.add_subparsers(dest="cmd", required=True)

    met = sub.add_parser("metrics")
    met.add_argument("--json", action="store_true")

    rec = sub.add_parser("recommend")
    rec.add_argument("--mood", choices=["energetic", "tired", "stressed", "motivated", "neutral"])
    rec.add_argument("--available", type=float)

    rest = sub.add_parser("rest")
    rest.add_argument("--exercise", required=True)
    rest.add_argument("--set", dest="set_number", type=int, default=1)

    demo = sub.add_parser("demo")
    demo.add_argument("--days", type=int, default=3)

    srv = sub.add_parser("serve")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()
    settings = YamlConfig(args.yaml).settings()
    logging.basicConfig(level=settings.log_level.upper())
    limit = settings.analytics_session_limit

    if args.cmd == "metrics":
        show_metrics(args.db, limit, settings.user_id, settings.weight_unit, args.json)
    elif args.cmd == "recommend":
        recommend(args.db, limit, settings.user_id, args.mood, args.available)
    elif args.cmd == "rest":
        rest_period(args.db, limit, settings.user_id, args.exercise, args.set_number)
    elif args.cmd == "demo":
        demo_data(args.db, settings.user_id, args.days)
    elif args.cmd == "serve":
        import uvicorn
        from rest_api import WorkoutAPI

        api = WorkoutAPI(db_path=args.db, yaml_path=args.yaml)
        LOGGER.info("serving on %s:%d", args.host, args.port)
        uvicorn.run(api.app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
