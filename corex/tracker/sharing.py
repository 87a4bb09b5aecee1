"""Groups, invitations and goal sharing on top of the code registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from corex.errors import AlreadyMember, NotFound, Unauthorized
from corex.tracker import codes, store
from corex.tracker.mailer import Notifier, send_best_effort
from corex.tracker.models import Goal, GoalStatus, Group, IssuedCode, NotificationKind

logger = logging.getLogger(__name__)

# Copied from the source goal when a share code is accepted
SHARED_GOAL_FIELDS = ("title", "description", "target_value", "unit", "type", "period", "end_date")


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


async def create_group(session: AsyncSession, user_id: int, name: str, description: str | None) -> Group:
    row = await store.insert_group(session, name, description, user_id)
    await store.insert_member(session, row["id"], user_id)
    return await get_group(session, row["id"], user_id)


async def get_group(session: AsyncSession, group_id: int, user_id: int) -> Group:
    row = await store.fetch_group_view(session, group_id, user_id)
    if row is None:
        raise NotFound("Group", group_id)
    return Group(**row)


async def list_groups(session: AsyncSession, user_id: int) -> list[Group]:
    return [Group(**row) for row in await store.fetch_groups_for_user(session, user_id)]


async def leave_group(session: AsyncSession, group_id: int, user_id: int) -> None:
    group = await store.fetch_group(session, group_id)
    if group is None:
        raise NotFound("Group", group_id)
    if not await store.is_member(session, group_id, user_id):
        raise NotFound("Group membership", group_id)
    if group["created_by"] == user_id:
        raise Unauthorized("Group creator cannot leave the group")
    await store.delete_member(session, group_id, user_id)


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Announcement:
    """Emails to send once the code behind them is committed."""

    kind: NotificationKind
    recipients: tuple[str, ...]
    payload: dict[str, Any] = field(default_factory=dict)


async def deliver(notifier: Notifier, announcement: Announcement) -> int:
    sent = 0
    for email in announcement.recipients:
        if await send_best_effort(notifier, announcement.kind, email, announcement.payload):
            sent += 1
    return sent


async def invite_to_group(
    session: AsyncSession,
    group_id: int,
    actor_id: int,
    email: str,
    now: datetime,
) -> tuple[IssuedCode, Announcement]:
    """Issue an invitation code for `email`. Only the group creator may invite."""
    group = await store.fetch_group(session, group_id)
    if group is None:
        raise NotFound("Group", group_id)
    if group["created_by"] != actor_id:
        raise Unauthorized("Not authorized to invite to this group")

    email = email.strip().lower()
    issued = await codes.issue(
        session, codes.GROUP_INVITES, {"group_id": group_id, "email": email}, created_by=actor_id, now=now
    )
    logger.info("User %s invited %s to group %s", actor_id, email, group_id)
    announcement = Announcement(
        kind=NotificationKind.group_invitation,
        recipients=(email,),
        payload={"group_name": group["name"], "code": issued.code},
    )
    return issued, announcement


async def join_group(session: AsyncSession, user_id: int, code: str, now: datetime) -> Group:
    """Redeem an invitation code and add the user to its group.

    An existing membership raises AlreadyMember; the caller's rollback then
    restores the code.
    """
    subject = await codes.redeem(session, codes.GROUP_INVITES, code, now)
    group_id = subject["group_id"]
    if not await store.insert_member(session, group_id, user_id):
        raise AlreadyMember()
    logger.info("User %s joined group %s", user_id, group_id)
    return await get_group(session, group_id, user_id)


# ---------------------------------------------------------------------------
# Goal sharing
# ---------------------------------------------------------------------------


async def share_goal(
    session: AsyncSession,
    group_id: int,
    goal_id: int,
    actor_id: int,
    now: datetime,
) -> tuple[IssuedCode, Announcement]:
    """Issue a share code for one of the actor's goals, addressed to co-members."""
    group = await store.fetch_group(session, group_id)
    if group is None:
        raise NotFound("Group", group_id)
    if not await store.is_member(session, group_id, actor_id):
        raise Unauthorized("Not a member of this group")
    goal = await store.fetch_goal(session, goal_id, actor_id)
    if goal is None:
        raise NotFound("Goal", goal_id)

    issued = await codes.issue(
        session,
        codes.SHARED_GOALS,
        {"goal_id": goal_id, "group_id": group_id, "shared_by": actor_id},
        created_by=actor_id,
        now=now,
    )
    members = await store.fetch_co_members(session, group_id, actor_id)
    logger.info("User %s shared goal %s with group %s (%d members)", actor_id, goal_id, group_id, len(members))
    announcement = Announcement(
        kind=NotificationKind.goal_shared,
        recipients=tuple(m["email"] for m in members),
        payload={"goal_title": goal["title"], "group_name": group["name"], "code": issued.code},
    )
    return issued, announcement


async def accept_shared_goal(session: AsyncSession, user_id: int, code: str, now: datetime) -> Goal:
    """Redeem a share code into a fresh goal owned by `user_id`.

    The copy starts from zero; it is the recipient's own goal, not a link to
    the sharer's.
    """
    subject = await codes.redeem(session, codes.SHARED_GOALS, code, now)
    source = await store.fetch_goal(session, subject["goal_id"])
    if source is None:
        raise NotFound("Goal", subject["goal_id"])

    fields = {k: source[k] for k in SHARED_GOAL_FIELDS}
    fields.update(current_value=0.0, start_value=0.0, status=GoalStatus.in_progress)
    row = await store.insert_goal(session, user_id, fields)
    logger.info("User %s accepted goal %s as goal %s", user_id, subject["goal_id"], row["id"])
    return Goal(**row)
