from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Annotated, Dict, List, Literal, Optional, Union

SCHEMA_VERSION = 1


class StoreConstants:
    """Agreed between the writer and every reader at build time."""
    NAMESPACE = "group.habitsync.shared"
    SNAPSHOTS_KEY = "habit_widget_snapshots"
    ACTIVITIES_KEY = "habit_timer_activities"
    RELOAD_KIND = "timerVisual"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Naive instants are taken to already be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_number(value: float) -> str:
    text = f"{value:.1f}"
    return text[:-2] if text.endswith(".0") else text


def format_count_value(value: float, goal: float, unit_label: Optional[str] = None) -> str:
    """'2/3 times', or '2/3' when there is no unit label."""
    text = f"{_format_number(value)}/{_format_number(goal)}"
    if unit_label:
        return f"{text} {unit_label}"
    return text


def minutes_to_seconds(minutes: float) -> int:
    # Round away float noise (59/60*60 == 58.999...) before truncating
    return int(round(minutes * 60, 6))


def format_timer_value(minutes: float) -> str:
    """
    Renders accumulated minutes as H:MM:SS, M:SS or Ns.
    Sub-second remainders are truncated.
    """
    total_seconds = minutes_to_seconds(minutes)
    hours = total_seconds // 3600
    mins = (total_seconds % 3600) // 60
    secs = total_seconds % 60
    if hours > 0:
        return f"{hours}:{mins:02d}:{secs:02d}"
    if mins > 0:
        return f"{mins}:{secs:02d}"
    return f"{secs}s"


# Snapshots

class BaseSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    icon: str
    color_hex: str
    value: float = Field(allow_inf_nan=False)  # native units: completions or minutes
    goal: float = Field(allow_inf_nan=False)
    unit_label: Optional[str] = None
    last_updated: datetime = Field(default_factory=utcnow)

    @field_validator("goal")
    @classmethod
    def _goal_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("goal must be positive")
        return v

    @field_validator("last_updated")
    @classmethod
    def _normalize_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def progress(self) -> float:
        return min(max(self.value / self.goal, 0.0), 1.0)


class CountSnapshot(BaseSnapshot):
    mode: Literal["count"] = "count"

    @property
    def formatted_progress(self) -> str:
        return format_count_value(self.value, self.goal, self.unit_label)


class TimerSnapshot(BaseSnapshot):
    mode: Literal["timer"] = "timer"
    is_timer_running: bool = False

    @property
    def formatted_progress(self) -> str:
        return format_timer_value(self.value)


ProgressSnapshot = Annotated[Union[CountSnapshot, TimerSnapshot], Field(discriminator="mode")]


class SnapshotEnvelope(BaseModel):
    schema_version: int = SCHEMA_VERSION
    snapshots: List[ProgressSnapshot] = Field(default_factory=list)

    @field_validator("schema_version")
    @classmethod
    def _known_version(cls, v: int) -> int:
        if v != SCHEMA_VERSION:
            raise ValueError(f"unsupported schema version {v}")
        return v


PLACEHOLDER_SNAPSHOT = CountSnapshot(
    id="placeholder",
    name="Daily Focus",
    icon="target",
    color_hex="#007AFF",
    value=2,
    goal=3,
    unit_label="times",
)

SAMPLE_TIMER_SNAPSHOT = TimerSnapshot(
    id="timer",
    name="Meditate",
    icon="timer",
    color_hex="#34C759",
    value=22.5,
    goal=30,
    unit_label="minutes",
    is_timer_running=True,
)


# Timer session markers and live activities

class TimerSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_elapsed_seconds: int = Field(default=0, ge=0)
    session_start: Optional[datetime] = None  # set iff running
    allow_overrun: bool = False

    @field_validator("session_start")
    @classmethod
    def _normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @property
    def is_running(self) -> bool:
        return self.session_start is not None


class TimerAttributes(BaseModel):
    habit_id: str
    name: str
    icon: str
    color_hex: str
    target_goal_seconds: int


class TimerContentState(BaseModel):
    base_elapsed_seconds: int = 0
    session_start: Optional[datetime] = None
    is_finished: bool = False

    @field_validator("session_start")
    @classmethod
    def _normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None


class TimerActivity(BaseModel):
    attributes: TimerAttributes
    state: TimerContentState


class ActivityEnvelope(BaseModel):
    schema_version: int = SCHEMA_VERSION
    activities: Dict[str, TimerActivity] = Field(default_factory=dict)

    @field_validator("schema_version")
    @classmethod
    def _known_version(cls, v: int) -> int:
        if v != SCHEMA_VERSION:
            raise ValueError(f"unsupported schema version {v}")
        return v


# External item store records

class HabitItem(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    icon: Optional[str] = None
    color_hex: Optional[str] = None
    habit_type: Literal["count", "timer"] = "count"
    goal_value: float = 1.0
    metric_unit: Optional[str] = None
    is_active: bool = True
    # Run markers only; time already logged lives in the completions
    session_start: Optional[datetime] = None
    allow_overrun: bool = False
    is_finished: bool = False  # stopped by goal auto-stop

    @field_validator("session_start")
    @classmethod
    def _normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @property
    def is_timer_habit(self) -> bool:
        return self.habit_type == "timer"

    @property
    def is_timer_running(self) -> bool:
        return self.session_start is not None


class Completion(BaseModel):
    habit_id: str
    completed_at: datetime
    amount: float = 1.0
    timer_minutes: float = 0.0

    @field_validator("completed_at")
    @classmethod
    def _normalize_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class ItemDocument(BaseModel):
    items: List[HabitItem] = Field(default_factory=list)
    completions: List[Completion] = Field(default_factory=list)
