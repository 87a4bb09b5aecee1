"""Activity log endpoints. Every mutation re-evaluates the owner's goals."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from corex.auth import current_user_id, verify_api_key
from corex.db import get_session
from corex.errors import NotFound, ValidationError
from corex.tracker import progress, store
from corex.tracker.deps import commit_and_notify, get_now
from corex.tracker.mailer import Notifier, get_notifier
from corex.tracker.models import Activity, ActivityCreate, ActivityUpdate

router = APIRouter(prefix="/activities", tags=["activities"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=list[Activity])
async def list_activities(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    start: datetime | None = Query(default=None, description="Inclusive lower bound on performed_at"),
    end: datetime | None = Query(default=None, description="Inclusive upper bound on performed_at"),
) -> list[Activity]:
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end", field="start")
    return [Activity(**row) for row in await store.fetch_activities(session, user_id, start, end)]


@router.post("", response_model=Activity, status_code=201)
async def create_activity(
    body: ActivityCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    notifier: Notifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
) -> Activity:
    row = await store.insert_activity(session, user_id, body.model_dump(), performed_at=now)
    transitions = await progress.recompute_goals(session, user_id, now)
    await commit_and_notify(session, notifier, transitions)
    return Activity(**row)


@router.put("/{activity_id}", response_model=Activity)
async def update_activity(
    activity_id: int,
    body: ActivityUpdate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    notifier: Notifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
) -> Activity:
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise ValidationError("No activity fields to update")
    for required in ("category", "subtype", "calories"):
        if required in fields and fields[required] is None:
            raise ValidationError(f"{required} cannot be cleared", field=required)

    row = await store.update_activity(session, activity_id, user_id, fields)
    if row is None:
        raise NotFound("Activity", activity_id)
    transitions = await progress.recompute_goals(session, user_id, now)
    await commit_and_notify(session, notifier, transitions)
    return Activity(**row)


@router.delete("/{activity_id}")
async def delete_activity(
    activity_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    notifier: Notifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
) -> dict[str, str]:
    if not await store.delete_activity(session, activity_id, user_id):
        raise NotFound("Activity", activity_id)
    transitions = await progress.recompute_goals(session, user_id, now)
    await commit_and_notify(session, notifier, transitions)
    return {"message": "Activity deleted successfully"}
