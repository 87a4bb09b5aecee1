"""Goal progress engine.

Goal types form a tagged variant: every GoalType maps to exactly one
ProgressSource describing where its progress value comes from.

The computation half (compute_progress, resolve_status, evaluate) is pure and
never raises. recompute_goals is the stateful half: it persists changed
(current_value, status) pairs and reports them as transitions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from corex.config import settings
from corex.tracker import aggregation, store
from corex.tracker.models import (
    END_OF_DAY,
    Activity,
    Goal,
    GoalCreate,
    GoalSnapshot,
    GoalStatus,
    GoalTransition,
    GoalType,
)
from corex.tracker.windows import resolve_window

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressSource:
    kind: str  # "activity_sum" | "body_weight" | "stored_value"
    description: str = ""


PROGRESS_SOURCES: dict[GoalType, ProgressSource] = {
    GoalType.calories_burned: ProgressSource("activity_sum", "Exercise calories in the goal period"),
    GoalType.calories_consumed: ProgressSource("activity_sum", "Meal calories in the goal period"),
    GoalType.protein: ProgressSource("activity_sum", "Meal protein in the goal period"),
    GoalType.weight: ProgressSource("body_weight", "Latest profile weight, period ignored"),
    GoalType.custom: ProgressSource("stored_value", "Value entered by the user"),
}


def get_progress_source(goal_type: GoalType | str) -> ProgressSource:
    try:
        return PROGRESS_SOURCES[GoalType(goal_type)]
    except (KeyError, ValueError):
        return PROGRESS_SOURCES[GoalType.custom]


# ---------------------------------------------------------------------------
# Pure computation
# ---------------------------------------------------------------------------


def compute_progress(
    goal: Goal,
    activities: Iterable[Activity],
    current_weight: float | None,
    now: datetime,
    week_start: int | None = None,
) -> float:
    """Current progress value for a goal."""
    source = get_progress_source(goal.type)

    if source.kind == "body_weight":
        return float(current_weight or 0.0)

    if source.kind == "stored_value":
        return float(goal.current_value)

    window = resolve_window(goal.period, now, settings.week_start if week_start is None else week_start)
    return aggregation.aggregate(activities, window, goal.type)


def _deadline(end_date: datetime | date | None, now: datetime) -> datetime | None:
    """end_date as a datetime comparable with `now`.

    A bare date counts as a deadline at the end of that day.
    """
    if end_date is None:
        return None
    if not isinstance(end_date, datetime):
        return datetime.combine(end_date, END_OF_DAY, tzinfo=now.tzinfo)
    if end_date.tzinfo is None and now.tzinfo is not None:
        return end_date.replace(tzinfo=now.tzinfo)
    if end_date.tzinfo is not None and now.tzinfo is None:
        return end_date.replace(tzinfo=None)
    return end_date


def resolve_status(goal: Goal, computed_progress: float, now: datetime) -> GoalStatus:
    """Status implied by a progress value.

    A passed deadline is terminal and checked first; it is the only way a goal
    can fail. Weight goals complete in the direction of their target relative
    to start_value; every other type completes when progress reaches target.
    """
    deadline = _deadline(goal.end_date, now)
    if deadline is not None and now > deadline:
        return GoalStatus.completed if computed_progress >= goal.target_value else GoalStatus.failed

    if goal.type == GoalType.weight:
        if goal.target_value < goal.start_value:
            return GoalStatus.completed if computed_progress <= goal.target_value else GoalStatus.in_progress
        return GoalStatus.completed if computed_progress >= goal.target_value else GoalStatus.in_progress

    return GoalStatus.completed if computed_progress >= goal.target_value else GoalStatus.in_progress


def progress_percentage(current_value: float, target_value: float) -> float:
    """current / target * 100; 0 when the target is 0."""
    if not target_value:
        return 0.0
    return (current_value / target_value) * 100.0


def evaluate(
    goal: Goal,
    activities: Iterable[Activity],
    current_weight: float | None,
    now: datetime,
) -> GoalSnapshot:
    progress = compute_progress(goal, activities, current_weight, now)
    return GoalSnapshot(current_value=progress, status=resolve_status(goal, progress, now))


def snapshot_of(goal: Goal) -> GoalSnapshot:
    return GoalSnapshot(current_value=float(goal.current_value), status=GoalStatus(goal.status))


def apply_snapshot(goal: Goal, new: GoalSnapshot) -> GoalTransition | None:
    """Transition from the goal's stored state to `new`, or None if nothing changed."""
    previous = snapshot_of(goal)
    if previous == new:
        return None
    updated = goal.model_copy(update={"current_value": new.current_value, "status": new.status})
    return GoalTransition(goal=updated, previous=previous, new=new)


def initial_snapshot(
    draft: GoalCreate,
    activities: Iterable[Activity],
    current_weight: float | None,
    now: datetime,
) -> tuple[float, GoalStatus]:
    """Start value and status for a goal being created.

    Custom goals start at 0; every other type starts from what its progress
    source reports right now (weight goals: the profile weight).
    """
    provisional = Goal(id=0, user_id=0, **draft.model_dump(), current_value=0.0, start_value=0.0)
    start_value = compute_progress(provisional, activities, current_weight, now)
    provisional = provisional.model_copy(update={"start_value": start_value, "current_value": start_value})
    return start_value, resolve_status(provisional, start_value, now)


# ---------------------------------------------------------------------------
# Stateful recompute
# ---------------------------------------------------------------------------


async def load_inputs(session: AsyncSession, user_id: int) -> tuple[list[Activity], float | None]:
    """All of a user's activities plus their current weight."""
    activities = [Activity(**row) for row in await store.fetch_activities(session, user_id)]
    user = await store.fetch_user(session, user_id)
    weight = user.get("weight") if user else None
    return activities, weight


async def recompute_goals(
    session: AsyncSession,
    user_id: int,
    now: datetime,
    goal_ids: Iterable[int] | None = None,
) -> list[GoalTransition]:
    """Recompute a user's goals and persist those whose state changed.

    Restrict to `goal_ids` when given. Running it again with unchanged inputs
    writes nothing and returns an empty list.
    """
    wanted = set(goal_ids) if goal_ids is not None else None
    goals = [Goal(**row) for row in await store.fetch_goals(session, user_id)]
    if wanted is not None:
        goals = [g for g in goals if g.id in wanted]
    if not goals:
        return []

    activities, weight = await load_inputs(session, user_id)

    transitions: list[GoalTransition] = []
    for goal in goals:
        transition = apply_snapshot(goal, evaluate(goal, activities, weight, now))
        if transition is None:
            continue
        await store.update_goal_progress(
            session, goal.id, transition.new.current_value, transition.new.status.value
        )
        transitions.append(transition)
        logger.info(
            "Goal %s of user %s: %.2f/%s -> %.2f/%s",
            goal.id,
            user_id,
            transition.previous.current_value,
            transition.previous.status.value,
            transition.new.current_value,
            transition.new.status.value,
        )
    return transitions


async def create_goal(session: AsyncSession, user_id: int, draft: GoalCreate, now: datetime) -> Goal:
    activities, weight = await load_inputs(session, user_id)
    start_value, status = initial_snapshot(draft, activities, weight, now)
    fields = draft.model_dump()
    fields.update(current_value=start_value, start_value=start_value, status=status)
    row = await store.insert_goal(session, user_id, fields)
    return Goal(**row)
