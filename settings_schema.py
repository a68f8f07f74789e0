from typing import Literal

from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    db_path: str = "fittracker.db"
    draft_cache_path: str = "workout_draft.yaml"
    default_user_id: str = Field(default="local-user", min_length=1)
    default_workout_type: str = "strength"
    recent_limit: int = Field(default=10, gt=0)
    seed_catalog: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
