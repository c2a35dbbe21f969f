from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    user_id: str = "local"
    weight_unit: str = "lbs"
    history_ttl_seconds: float = Field(300.0, gt=0)
    history_max_sessions: int = Field(10, ge=1)
    analytics_session_limit: int = Field(50, ge=1)
    skip_exercise_rest_cap: int = Field(30, ge=0)
    default_rest_seconds: int = Field(60, ge=0)
    log_level: str = "INFO"


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
