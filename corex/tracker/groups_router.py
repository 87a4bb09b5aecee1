"""Group endpoints: membership, invitations, goal sharing."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from corex.auth import current_user_id, verify_api_key
from corex.db import get_session
from corex.tracker import sharing
from corex.tracker.deps import get_now
from corex.tracker.mailer import Notifier, get_notifier
from corex.tracker.models import CodeIssuedResponse, Group, GroupCreate, InviteRequest, RedeemRequest

router = APIRouter(prefix="/groups", tags=["groups"], dependencies=[Depends(verify_api_key)])


@router.get("", response_model=list[Group])
async def list_groups(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
) -> list[Group]:
    return await sharing.list_groups(session, user_id)


@router.post("", response_model=Group, status_code=201)
async def create_group(
    body: GroupCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
) -> Group:
    group = await sharing.create_group(session, user_id, body.name, body.description)
    await session.commit()
    return group


@router.post("/join", response_model=Group)
async def join_group(
    body: RedeemRequest,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    now: datetime = Depends(get_now),
) -> Group:
    group = await sharing.join_group(session, user_id, body.code, now)
    await session.commit()
    return group


@router.post("/{group_id}/invite", response_model=CodeIssuedResponse)
async def invite(
    group_id: int,
    body: InviteRequest,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    notifier: Notifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
) -> CodeIssuedResponse:
    issued, announcement = await sharing.invite_to_group(session, group_id, user_id, body.email, now)
    await session.commit()
    await sharing.deliver(notifier, announcement)
    return CodeIssuedResponse(message="Invitation sent successfully", expires_at=issued.expires_at)


@router.post("/{group_id}/leave")
async def leave_group(
    group_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
) -> dict[str, str]:
    await sharing.leave_group(session, group_id, user_id)
    await session.commit()
    return {"message": "Successfully left the group"}


@router.post("/{group_id}/goals/{goal_id}/share", response_model=CodeIssuedResponse)
async def share_goal(
    group_id: int,
    goal_id: int,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(current_user_id),
    notifier: Notifier = Depends(get_notifier),
    now: datetime = Depends(get_now),
) -> CodeIssuedResponse:
    issued, announcement = await sharing.share_goal(session, group_id, goal_id, user_id, now)
    await session.commit()
    await sharing.deliver(notifier, announcement)
    return CodeIssuedResponse(message="Goal shared successfully", expires_at=issued.expires_at)
