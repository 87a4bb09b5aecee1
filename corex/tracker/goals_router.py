"""Goal endpoints: CRUD, progress, accepting shared goals."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from corex.auth import current_user_id, verify_api_key
from corex.db import get_session
from corex.errors import NotFound, ValidationError
from corex.tracker import progress, sharing, store
from corex.tracker.deps import commit_and_notify, get_now
from corex.tracker.mailer import Notifier, get_notifier
from corex.tracker.models import (
    Goal,
    GoalCreate,
    GoalProgress,
    GoalTransition,
    GoalUpdate,
    RedeemRequest,
)

router = APIRouter(prefix="/goals", tags=["goals"], dependencies=[Depends(verify_api_key)])

# Columns that an edit may not set to null
NON_NULLABLE = ("title", "unit", "period", "target_value", "current_value", "status")


@router.get("", response_model=list[Goal])
async def list_goals(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    notifier: Notifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
) -> list[Goal]:
    transitions = await progress.recompute_goals(session, user_id, now)
    goals = [Goal(**row) for row in await store.fetch_goals(session, user_id)]
    await commit_and_notify(session, notifier, transitions)
    return goals


@router.post("", response_model=Goal, status_code=201)
async def create_goal(
    body: GoalCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    now: datetime = Depends(get_now),
) -> Goal:
    goal = await progress.create_goal(session, user_id, body, now)
    await session.commit()
    return goal


@router.post("/accept", response_model=Goal, status_code=201)
async def accept_goal(
    body: RedeemRequest,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    now: datetime = Depends(get_now),
) -> Goal:
    goal = await sharing.accept_shared_goal(session, user_id, body.code, now)
    await session.commit()
    return goal


@router.get("/{goal_id}/progress", response_model=GoalProgress)
async def goal_progress(
    goal_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    notifier: Notifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
) -> GoalProgress:
    row = await store.fetch_goal(session, goal_id, user_id)
    if row is None:
        raise NotFound("Goal", goal_id)

    goal = Goal(**row)
    transitions = await progress.recompute_goals(session, user_id, now, goal_ids=[goal_id])
    if transitions:
        goal = transitions[0].goal
    await commit_and_notify(session, notifier, transitions)
    return GoalProgress(
        goal_id=goal.id,
        progress=goal.current_value,
        percentage=round(progress.progress_percentage(goal.current_value, goal.target_value), 1),
        status=goal.status,
    )


@router.put("/{goal_id}", response_model=Goal)
async def update_goal(
    goal_id: int,
    body: GoalUpdate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    notifier: Notifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
) -> Goal:
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise ValidationError("No goal fields to update")
    for column in NON_NULLABLE:
        if column in fields and fields[column] is None:
            raise ValidationError(f"{column} cannot be cleared", field=column)

    before_row = await store.fetch_goal(session, goal_id, user_id)
    if before_row is None:
        raise NotFound("Goal", goal_id)
    after_row = await store.update_goal(session, goal_id, user_id, fields)
    if after_row is None:
        raise NotFound("Goal", goal_id)

    before, after = Goal(**before_row), Goal(**after_row)
    if "status" not in fields:
        status = progress.resolve_status(after, after.current_value, now)
        if status != after.status:
            await store.update_goal_progress(session, goal_id, after.current_value, status.value)
            after = after.model_copy(update={"status": status})

    previous, new = progress.snapshot_of(before), progress.snapshot_of(after)
    transitions = []
    if previous != new or before.target_value != after.target_value:
        transitions.append(
            GoalTransition(goal=after, previous=previous, new=new, previous_target=before.target_value)
        )
    await commit_and_notify(session, notifier, transitions)
    return after


@router.delete("/{goal_id}")
async def delete_goal(
    goal_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
) -> dict[str, str]:
    if not await store.delete_goal(session, goal_id, user_id):
        raise NotFound("Goal", goal_id)
    await session.commit()
    return {"message": "Goal deleted successfully"}
