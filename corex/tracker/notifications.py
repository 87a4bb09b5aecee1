"""Goal transition notifications.

A transition fires at most one event: an achievement when the goal has just
become completed, otherwise a progress update when the percentage entered a
higher band. Recipients are the owner's co-members across all their groups.
Delivery is best effort and happens after the state change is committed.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from corex.config import settings
from corex.tracker import store
from corex.tracker.mailer import Notifier, send_best_effort
from corex.tracker.models import GoalSnapshot, GoalStatus, GoalTransition, NotificationKind
from corex.tracker.progress import progress_percentage

logger = logging.getLogger(__name__)


def progress_band(percentage: float, band_pct: float | None = None) -> int:
    size = settings.progress_band_pct if band_pct is None else band_pct
    return math.floor(percentage / size)


def transition_event(
    previous: GoalSnapshot,
    new: GoalSnapshot,
    target_value: float,
    previous_target: float | None = None,
    band_pct: float | None = None,
) -> NotificationKind | None:
    """Which notification, if any, a (previous, new) pair fires."""
    if new.status == GoalStatus.completed and previous.status != GoalStatus.completed:
        return NotificationKind.goal_achievement

    old_target = target_value if previous_target is None else previous_target
    new_pct = progress_percentage(new.current_value, target_value)
    old_pct = progress_percentage(previous.current_value, old_target)
    if progress_band(new_pct, band_pct) > progress_band(old_pct, band_pct):
        return NotificationKind.goal_progress
    return None


def recipients_by_email(peers: Iterable[dict[str, Any]]) -> dict[str, str]:
    """email -> group name, one entry per recipient (first group by id wins)."""
    recipients: dict[str, str] = {}
    for peer in peers:
        email = peer.get("email")
        if email and email not in recipients:
            recipients[email] = peer.get("group_name") or ""
    return recipients


async def on_goal_transition(
    session: AsyncSession,
    notifier: Notifier,
    transition: GoalTransition,
) -> int:
    """Notify the goal owner's co-members about a transition. Returns emails sent."""
    goal = transition.goal
    kind = transition_event(transition.previous, transition.new, goal.target_value, transition.previous_target)
    if kind is None:
        return 0

    recipients = recipients_by_email(await store.fetch_group_peers(session, goal.user_id))
    if not recipients:
        return 0

    percentage = round(progress_percentage(transition.new.current_value, goal.target_value))
    sent = 0
    for email, group_name in recipients.items():
        payload = {
            "goal_title": goal.title,
            "group_name": group_name,
            "progress": transition.new.current_value,
            "target": goal.target_value,
            "unit": goal.unit,
            "percentage": percentage,
        }
        if await send_best_effort(notifier, kind, email, payload):
            sent += 1

    logger.info("Goal %s %s: notified %d/%d co-members", goal.id, kind.value, sent, len(recipients))
    return sent


async def dispatch_transitions(
    session: AsyncSession,
    notifier: Notifier,
    transitions: Iterable[GoalTransition],
) -> int:
    """Run on_goal_transition for each transition; failures are logged, never raised."""
    total = 0
    for transition in transitions:
        try:
            total += await on_goal_transition(session, notifier, transition)
        except Exception:
            logger.exception("Notification dispatch failed for goal %s", transition.goal.id)
    return total
