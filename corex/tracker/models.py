"""Tracker domain and API models (Pydantic v2)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator

from corex.config import settings

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
END_OF_DAY = time(23, 59, 59, 999000)


class ActivityCategory(str, Enum):
    exercise = "exercise"
    meal = "meal"


class GoalType(str, Enum):
    calories_burned = "calories_burned"
    calories_consumed = "calories_consumed"
    protein = "protein"
    weight = "weight"
    custom = "custom"


class GoalPeriod(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    total = "total"


class GoalStatus(str, Enum):
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


class NotificationKind(str, Enum):
    group_invitation = "group_invitation"
    goal_shared = "goal_shared"
    goal_achievement = "goal_achievement"
    goal_progress = "goal_progress"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(BaseModel):
    id: int
    username: str
    email: str
    height: float | None = None
    weight: float | None = None


class UserUpdate(BaseModel):
    username: str | None = Field(default=None, min_length=1)
    email: str | None = Field(default=None, pattern=EMAIL_PATTERN)
    height: float | None = Field(default=None, gt=0)
    weight: float | None = Field(default=None, gt=0)


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


class Activity(BaseModel):
    id: int
    user_id: int
    category: ActivityCategory
    subtype: str
    name: str | None = None
    meal_type: str | None = None
    food_type: str | None = None
    duration: float | None = None  # minutes
    calories: float
    protein: float | None = None  # grams
    notes: str | None = None
    performed_at: datetime


class ActivityCreate(BaseModel):
    category: ActivityCategory
    subtype: str = Field(min_length=1)
    name: str | None = None
    meal_type: str | None = None
    food_type: str | None = None
    duration: float | None = Field(default=None, ge=0)
    calories: float = Field(ge=0)
    protein: float | None = Field(default=None, ge=0)
    notes: str | None = None


class ActivityUpdate(BaseModel):
    """Partial update; performed_at is fixed at creation."""

    category: ActivityCategory | None = None
    subtype: str | None = Field(default=None, min_length=1)
    name: str | None = None
    meal_type: str | None = None
    food_type: str | None = None
    duration: float | None = Field(default=None, ge=0)
    calories: float | None = Field(default=None, ge=0)
    protein: float | None = Field(default=None, ge=0)
    notes: str | None = None


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


class Goal(BaseModel):
    id: int
    user_id: int
    title: str
    description: str | None = None
    unit: str = ""
    type: GoalType = GoalType.custom
    period: GoalPeriod = GoalPeriod.total
    target_value: float
    current_value: float = 0.0
    start_value: float = 0.0
    status: GoalStatus = GoalStatus.in_progress
    start_date: datetime | None = None
    end_date: datetime | None = None


def deadline_end_of_day(value):
    """A date-only deadline ("2026-02-18") lasts until the end of that day."""
    if isinstance(value, str) and len(value) == 10:
        try:
            value = date.fromisoformat(value)
        except ValueError:
            return value
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, END_OF_DAY, tzinfo=ZoneInfo(settings.default_tz))
    return value


class GoalCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str | None = None
    unit: str = ""
    type: GoalType = GoalType.custom
    period: GoalPeriod = GoalPeriod.total
    target_value: float = Field(gt=0)
    end_date: datetime | None = None

    @field_validator("end_date", mode="before")
    @classmethod
    def end_date_to_end_of_day(cls, v):
        return deadline_end_of_day(v)


class GoalUpdate(BaseModel):
    """Explicit user edit. Setting status here overrides the computed one."""

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    unit: str | None = None
    period: GoalPeriod | None = None
    target_value: float | None = Field(default=None, gt=0)
    current_value: float | None = None
    status: GoalStatus | None = None
    end_date: datetime | None = None

    @field_validator("end_date", mode="before")
    @classmethod
    def end_date_to_end_of_day(cls, v):
        return deadline_end_of_day(v)


class GoalProgress(BaseModel):
    goal_id: int
    progress: float
    percentage: float
    status: GoalStatus


@dataclass(frozen=True, slots=True)
class GoalSnapshot:
    current_value: float
    status: GoalStatus


@dataclass(frozen=True, slots=True)
class GoalTransition:
    """A persisted change of a goal's (current_value, status) pair."""

    goal: Goal
    previous: GoalSnapshot
    new: GoalSnapshot
    previous_target: float | None = None  # Set when an edit changed target_value


# ---------------------------------------------------------------------------
# Groups & codes
# ---------------------------------------------------------------------------


class Group(BaseModel):
    id: int
    name: str
    description: str | None = None
    created_by: int
    created_at: datetime | None = None
    member_count: int = 0
    is_member: bool = False
    is_creator: bool = False


class GroupCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None


class InviteRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)


class RedeemRequest(BaseModel):
    code: str = Field(min_length=1)


class CodeIssuedResponse(BaseModel):
    message: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class IssuedCode:
    namespace: str
    code: str
    expires_at: datetime
