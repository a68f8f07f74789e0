"""Records returned by the repositories and the inputs they accept.

Inputs may be passed either as the model itself or as a plain mapping; see
:func:`parse_input`. Numeric set values are range-checked and rounded here so
every write path stores the same normalized values.
"""

import math
from typing import Any, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError
from tools import round_to

M = TypeVar("M", bound=BaseModel)


def parse_input(model: Type[M], data: Union[M, Mapping[str, Any], None]) -> M:
    """Coerce ``data`` into ``model``, raising :class:`ValidationError`."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(dict(data or {}))
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ExerciseRecord(BaseModel):
    id: str
    name: str
    category: Optional[str] = None
    equipment: Optional[str] = None
    muscle_group: Optional[str] = None
    is_custom: bool = False
    created_at: int


class ExerciseCreate(_Input):
    id: Optional[str] = None
    name: str
    category: Optional[str] = None
    equipment: Optional[str] = None
    muscle_group: Optional[str] = None
    is_custom: bool = True

    @field_validator("name")
    @classmethod
    def _name_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("exercise name is required")
        return value

    @field_validator("category", "equipment", "muscle_group")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value)


class ExercisePatch(_Input):
    name: Optional[str] = None
    category: Optional[str] = None
    equipment: Optional[str] = None
    muscle_group: Optional[str] = None
    is_custom: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def _name_required(cls, value: Optional[str]) -> str:
        value = _clean_text(value)
        if value is None:
            raise ValueError("exercise name is required")
        return value

    @field_validator("category", "equipment", "muscle_group")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return _clean_text(value)

    @field_validator("is_custom")
    @classmethod
    def _not_null(cls, value: Optional[bool]) -> bool:
        if value is None:
            raise ValueError("is_custom must be a boolean")
        return value


class WorkoutRecord(BaseModel):
    id: str
    user_id: str
    type: Optional[str] = None
    started_at: int
    ended_at: Optional[int] = None
    notes: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class WorkoutCreate(_Input):
    id: Optional[str] = None
    user_id: str
    type: Optional[str] = None
    started_at: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("user_id")
    @classmethod
    def _user_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("user_id is required")
        return value


class WorkoutCompletion(_Input):
    workout_id: str
    ended_at: Optional[int] = None
    notes: Optional[str] = None


class WorkoutExerciseRecord(BaseModel):
    id: str
    workout_id: str
    exercise_id: str
    order_index: int


class SetValues(BaseModel):
    """Optional measurements of one performed set."""

    weight: Optional[float] = Field(default=None, ge=0)
    reps: Optional[int] = Field(default=None, ge=0)
    rpe: Optional[float] = Field(default=None, ge=0, le=10)
    rest_seconds: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator("weight", "rpe")
    @classmethod
    def _one_decimal(cls, value: Optional[float]) -> Optional[float]:
        return round_to(value, 1)

    @field_validator("reps", "rest_seconds", mode="before")
    @classmethod
    def _whole(cls, value: Any) -> Any:
        if isinstance(value, float) and math.isfinite(value):
            # half-up: 2.5 -> 3
            return int(math.floor(value + 0.5))
        return value


class SetRecord(SetValues):
    id: str
    workout_exercise_id: str
    set_index: int


class SetCreate(SetValues, _Input):
    workout_exercise_id: str
    set_index: Optional[int] = Field(default=None, ge=0)


class SetPatch(SetValues, _Input):
    set_index: Optional[int] = Field(default=None, ge=0)

    @field_validator("set_index")
    @classmethod
    def _index_not_null(cls, value: Optional[int]) -> int:
        if value is None:
            raise ValueError("set_index must be an integer")
        return value


class CommitResult(BaseModel):
    workout_id: str
    ended_at: int
