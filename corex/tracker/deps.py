"""Request-scoped helpers shared by the tracker routers."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from corex.config import settings
from corex.tracker import notifications
from corex.tracker.mailer import Notifier
from corex.tracker.models import GoalTransition


def get_now() -> datetime:
    """Current instant in the configured timezone; overridden in tests."""
    return datetime.now(ZoneInfo(settings.default_tz))


async def commit_and_notify(
    session: AsyncSession,
    notifier: Notifier,
    transitions: Iterable[GoalTransition],
) -> None:
    """Commit the goal state first; notifications cannot undo it."""
    transitions = list(transitions)
    await session.commit()
    if transitions:
        await notifications.dispatch_transitions(session, notifier, transitions)
