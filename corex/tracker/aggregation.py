"""Activity sums per goal type. Pure, never raises.

Each activity-backed goal type maps to one SumRule: which category of
activity counts and which numeric field is summed. Missing values count as 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from corex.tracker.models import Activity, ActivityCategory, GoalType
from corex.tracker.windows import Window


@dataclass(frozen=True, slots=True)
class SumRule:
    category: ActivityCategory
    field: str  # Activity attribute to sum


SUM_RULES: dict[GoalType, SumRule] = {
    GoalType.calories_burned: SumRule(category=ActivityCategory.exercise, field="calories"),
    GoalType.calories_consumed: SumRule(category=ActivityCategory.meal, field="calories"),
    GoalType.protein: SumRule(category=ActivityCategory.meal, field="protein"),
}


def get_sum_rule(goal_type: GoalType | str) -> SumRule | None:
    try:
        return SUM_RULES.get(GoalType(goal_type))
    except ValueError:
        return None


def in_window(activities: Iterable[Activity], window: Window) -> list[Activity]:
    """Activities whose performed_at lies inside the window (both ends inclusive)."""
    return [a for a in activities if window.contains(a.performed_at)]


def sum_activities(activities: Iterable[Activity], rule: SumRule) -> float:
    total = 0.0
    for activity in activities:
        if activity.category != rule.category:
            continue
        value = getattr(activity, rule.field, None)
        if value is not None:
            total += float(value)
    return total


def aggregate(activities: Iterable[Activity], window: Window, goal_type: GoalType | str) -> float:
    """Windowed sum for an activity-backed goal type; 0 for weight/custom."""
    rule = get_sum_rule(goal_type)
    if rule is None:
        return 0.0
    return sum_activities(in_window(activities, window), rule)
