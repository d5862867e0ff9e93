from typing import Annotated, List, Optional, Dict, Any, Literal, Union
from pydantic import BaseModel, ConfigDict, Field


# --- catalog / provider records ---

class ExerciseCatalogEntry(BaseModel):
    id: int
    key: str
    name: str
    group: str
    knee_friendly: bool


class Goal(BaseModel):
    model_config = ConfigDict(extra="allow")

    primary: Literal["strength", "hypertrophy", "fat_loss", "fitness"]
    secondary: Optional[str] = None


class ProfileConstraints(BaseModel):
    session_minutes: int
    injuries: List[str] = Field(default_factory=list)


class UserProfile(BaseModel):
    user_id: str
    name: str
    training_level: Optional[str] = None
    goal: Optional[Goal] = None
    constraints: Optional[ProfileConstraints] = None


class WorkoutSession(BaseModel):
    session_id: str
    date: str
    title: str
    duration_min: Optional[Union[int, float]] = None
    perceived_exertion_rpe: Optional[Union[int, float]] = None
    exercises: List[Dict[str, Any]] = Field(default_factory=list)


# --- tool inputs ---

class NoInput(BaseModel):
    model_config = ConfigDict(extra="forbid")


class WeekSummaryInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start_date: str = Field(description="YYYY-MM-DD")
    end_date: str = Field(description="YYYY-MM-DD")


class ListExercisesInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: Optional[str] = Field(default=None, description="Optional filter, e.g. 'squat' or 'upper'.")


class RmMaxesInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    exercise_ids: List[int]


class ProgramConstraints(BaseModel):
    model_config = ConfigDict(extra="allow")

    knee_sensitive: Optional[bool] = None


# ints stay ints so the plan echoes 60, not 60.0
SessionMinutes = Union[Annotated[int, Field(ge=20, le=120)], Annotated[float, Field(ge=20, le=120)]]


class ProgramRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", allow_inf_nan=False)

    # Clamped to [1, 7] by the synthesizer rather than rejected here
    days_per_week: float
    session_minutes: SessionMinutes
    goal: Goal
    constraints: ProgramConstraints = Field(default_factory=ProgramConstraints)
    preferred_exercise_ids: List[int] = Field(
        default_factory=list, description="Optional: user-selected main lifts."
    )


# --- generated program ---

class Intensity(BaseModel):
    type: Literal["percent_1rm", "rpe"]
    value: float


class Prescription(BaseModel):
    sets: int
    reps: Union[int, str]
    intensity: Intensity
    target_weight_kg: Optional[float] = None


class PrescriptionItem(BaseModel):
    exercise_id: int
    name: str
    type: Literal["main", "accessory"]
    prescription: Prescription


class DayPlan(BaseModel):
    day_name: str
    estimated_minutes: Union[int, float]
    items: List[PrescriptionItem]


class ProgramMeta(BaseModel):
    days_per_week: int
    session_minutes: Union[int, float]
    goal: Dict[str, Any]
    constraints: Dict[str, Any]
    created_at: str


class ProgramPlan(BaseModel):
    program_id: str
    user_id: str
    meta: ProgramMeta
    days: List[DayPlan]


class ProgramResult(BaseModel):
    program: ProgramPlan
    summary_text: str
