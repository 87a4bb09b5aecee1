"""Profile endpoints. A weight change re-evaluates weight goals."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from corex.auth import current_user_id, verify_api_key
from corex.db import get_session
from corex.errors import AlreadyExists, NotFound, ValidationError
from corex.tracker import progress, store
from corex.tracker.deps import commit_and_notify, get_now
from corex.tracker.mailer import Notifier, get_notifier
from corex.tracker.models import User, UserUpdate

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(verify_api_key)])


@router.get("/me", response_model=User)
async def get_profile(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
) -> User:
    row = await store.fetch_user(session, user_id)
    if row is None:
        raise NotFound("User", user_id)
    return User(**row)


@router.put("/me", response_model=User)
async def update_profile(
    body: UserUpdate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    notifier: Notifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
) -> User:
    fields = body.model_dump(exclude_unset=True, exclude_none=True)
    if not fields:
        raise ValidationError("No profile fields to update")

    if "username" in fields or "email" in fields:
        if await store.identity_taken(session, user_id, fields.get("username"), fields.get("email")):
            raise AlreadyExists("Username or email is already taken")

    row = await store.update_user(session, user_id, fields)
    if row is None:
        raise NotFound("User", user_id)

    transitions = []
    if "weight" in fields:
        transitions = await progress.recompute_goals(session, user_id, now)
    await commit_and_notify(session, notifier, transitions)
    return User(**row)
