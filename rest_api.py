import datetime
import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel

from config import APP_VERSION, YamlConfig
from db import AsyncWorkoutRepository, SessionScratchRepository, WorkoutRepository
from analytics_service import AnalyticsEngine, infer_recent_performance
from models import PersonalizationContext, WorkoutPlan, to_jsonable
from personalization_service import PersonalizationEngine, current_context
from session_service import SessionContinuation, SessionStateMachine, describe_state
from weight_history_service import (
    WeightHistoryCache,
    is_barbell_exercise,
    last_used_weight,
    progressive_overload_suggestion,
)

LOGGER = logging.getLogger(__name__)


class ContextBody(BaseModel):
    time_of_day: Optional[str] = None
    day_of_week: Optional[int] = None
    weather: Optional[str] = None
    mood: Optional[str] = None
    available_time: Optional[float] = None
    days_since_last_workout: Optional[float] = None
    recent_performance: Optional[str] = None
    injury_history: Optional[List[str]] = None
    preferred_exercises: Optional[List[str]] = None
    equipment: Optional[List[str]] = None


class RestBody(BaseModel):
    exercise_name: str
    set_number: int = 1
    context: Optional[ContextBody] = None


class SessionBody(BaseModel):
    plan: dict
    personalized_rest: bool = True
    context: Optional[ContextBody] = None


class SetBody(BaseModel):
    weight: Optional[float] = None


class ContinuationBody(BaseModel):
    exercise_index: int
    set_number: int
    token: str


class WorkoutAPI:
    """Provides REST endpoints for live sessions and workout analytics."""

    def __init__(self, db_path: str = "workout.db", yaml_path: str = "settings.yaml") -> None:
        self.db_path = db_path
        self.config = YamlConfig(yaml_path)
        self.settings = self.config.settings()
        self.user_id = self.settings.user_id
        self.workouts = WorkoutRepository(db_path)
        self.async_workouts = AsyncWorkoutRepository(db_path)
        self.scratch = SessionScratchRepository(db_path, self.user_id)
        self.history = WeightHistoryCache.from_repository(
            self.async_workouts,
            max_sessions=self.settings.history_max_sessions,
            ttl_seconds=self.settings.history_ttl_seconds,
        )
        self.session: Optional[SessionStateMachine] = None
        self.app = FastAPI(title="RepFlow", version=APP_VERSION)
        self._setup_routes()

    def _analytics(self) -> AnalyticsEngine:
        sessions = self.workouts.fetch_sessions(
            limit=self.settings.analytics_session_limit, user_id=self.user_id
        )
        return AnalyticsEngine(sessions)

    def _engine(self) -> PersonalizationEngine:
        sessions = self.workouts.fetch_sessions(
            limit=self.settings.analytics_session_limit, user_id=self.user_id
        )
        return PersonalizationEngine(sessions)

    def _last_workout(self) -> Optional[datetime.datetime]:
        return self.workouts.last_workout_at(self.user_id)

    async def _session_personalization(
        self, body: Optional[ContextBody]
    ) -> Tuple[PersonalizationEngine, PersonalizationContext]:
        sessions = await self.async_workouts.fetch_sessions(
            limit=self.settings.analytics_session_limit, user_id=self.user_id
        )
        engine = PersonalizationEngine(sessions)
        last_workout = await self.async_workouts.last_workout_at(self.user_id)
        return engine, self._context(engine, body, last_workout)

    def _context(
        self,
        engine: PersonalizationEngine,
        body: Optional[ContextBody],
        last_workout: Optional[datetime.datetime],
    ) -> PersonalizationContext:
        overrides = {}
        if body is not None:
            for key, value in body.model_dump(exclude_none=True).items():
                overrides[key] = tuple(value) if isinstance(value, list) else value
        if "recent_performance" not in overrides:
            overrides["recent_performance"] = infer_recent_performance(
                engine.metrics.exercise_stats
            )
        return current_context(
            datetime.datetime.now(),
            last_workout,
            **overrides,
        )

    def _require_session(self) -> SessionStateMachine:
        if self.session is None:
            raise HTTPException(status_code=404, detail="no active session")
        return self.session

    def _session_view(self, session: SessionStateMachine) -> dict:
        state = describe_state(session.state)
        exercise = None
        if state["status"] == "active":
            exercise = to_jsonable(session.current_exercise)
        return {
            "state": state,
            "exercise": exercise,
            "weights": session.weights.to_blob(),
            "progress": to_jsonable(session.progress()),
            "error": session.error,
        }

    def _setup_routes(self) -> None:
        analytics_router = APIRouter(prefix="/analytics", tags=["Analytics"])
        personal_router = APIRouter(prefix="/personalization", tags=["Personalization"])
        session_router = APIRouter(prefix="/session", tags=["Session"])

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.workouts.fetch_sessions(limit=1, user_id=self.user_id)
                return {"status": "ok", "version": APP_VERSION}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @analytics_router.get("/metrics")
        def metrics():
            return to_jsonable(self._analytics().get_performance_metrics())

        @analytics_router.get("/progressions")
        def progressions():
            return to_jsonable(self._analytics().exercise_progressions())

        @personal_router.post("/recommendations")
        def recommendations(body: Optional[ContextBody] = None):
            engine = self._engine()
            context = self._context(engine, body, self._last_workout())
            return to_jsonable(engine.generate_recommendations(context))

        @personal_router.post("/difficulty")
        def difficulty(body: Optional[ContextBody] = None):
            engine = self._engine()
            context = self._context(engine, body, self._last_workout())
            return to_jsonable(engine.calculate_adaptive_difficulty(context))

        @personal_router.post("/motivation")
        def motivation(body: Optional[ContextBody] = None):
            engine = self._engine()
            context = self._context(engine, body, self._last_workout())
            messages = engine.generate_contextual_motivation(context)
            return {"messages": messages}

        @personal_router.post("/rest_period")
        def rest_period(body: RestBody):
            if body.set_number < 1:
                raise HTTPException(status_code=400, detail="set_number must be positive")
            engine = self._engine()
            context = self._context(engine, body.context, self._last_workout())
            seconds = engine.predict_optimal_rest_period(
                body.exercise_name, body.set_number, context
            )
            return {"exercise_name": body.exercise_name, "seconds": seconds}

        @session_router.post("")
        async def start_session(body: SessionBody):
            plan = WorkoutPlan.from_dict(body.plan)
            engine = context = None
            if body.personalized_rest:
                engine, context = await self._session_personalization(body.context)
            try:
                session = SessionStateMachine(
                    plan,
                    self.scratch,
                    workouts=self.async_workouts,
                    history=self.history,
                    engine=engine,
                    context=context,
                    skip_rest_cap=self.settings.skip_exercise_rest_cap,
                    default_rest_seconds=self.settings.default_rest_seconds,
                    user_id=self.user_id,
                )
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            await session.start()
            self.session = session
            return self._session_view(session)

        @session_router.get("")
        def get_session():
            return self._session_view(self._require_session())

        @session_router.post("/complete_set")
        async def complete_set(body: Optional[SetBody] = None):
            session = self._require_session()
            try:
                await session.complete_set(body.weight if body else None)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return self._session_view(session)

        @session_router.post("/skip_set")
        async def skip_set():
            session = self._require_session()
            try:
                await session.skip_set()
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return self._session_view(session)

        @session_router.post("/skip_exercise")
        async def skip_exercise():
            session = self._require_session()
            try:
                await session.skip_exercise()
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return self._session_view(session)

        @session_router.post("/resume")
        def resume(body: ContinuationBody):
            session = self._require_session()
            try:
                session.resume(
                    SessionContinuation(body.exercise_index, body.set_number, body.token)
                )
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return self._session_view(session)

        @session_router.post("/finish")
        async def finish():
            session = self._require_session()
            try:
                workout_id = await session.finish()
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            self.session = None
            return {"workout_id": workout_id}

        @self.app.get("/weight_history/{exercise}")
        async def weight_history(exercise: str, set_number: int = 1):
            history = await self.history.get(self.user_id, exercise)
            return {
                "exercise": exercise,
                "history": to_jsonable(history),
                "last_used": last_used_weight(history, exercise, set_number),
                "suggestion": progressive_overload_suggestion(history, exercise, set_number),
                "barbell": is_barbell_exercise(exercise),
            }

        self.app.include_router(analytics_router)
        self.app.include_router(personal_router)
        self.app.include_router(session_router)


api = WorkoutAPI()
app = api.app

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app)
