"""Async access to users, activities, goals, groups and code tables.

Every function takes the caller's AsyncSession; none commits. The request
handler owns the unit of work and commits once the operation succeeds, so a
raised error rolls everything back.

Rows are returned as plain dicts keyed by column name.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Sequence

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

USER_COLUMNS = "id, username, email, height, weight"
ACTIVITY_COLUMNS = (
    "id, user_id, category, subtype, name, meal_type, food_type, duration, calories, protein, notes, performed_at"
)
GOAL_COLUMNS = (
    "id, user_id, title, description, unit, type, period, target_value, current_value, "
    "start_value, status, start_date, end_date"
)

USER_UPDATABLE = ("username", "email", "height", "weight")
ACTIVITY_UPDATABLE = ("category", "subtype", "name", "meal_type", "food_type", "duration", "calories", "protein", "notes")
GOAL_UPDATABLE = ("title", "description", "unit", "period", "target_value", "current_value", "status", "end_date")
GOAL_INSERTABLE = (
    "title", "description", "unit", "type", "period", "target_value", "current_value", "start_value", "status", "end_date"
)


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _row(result) -> dict[str, Any] | None:
    row = result.fetchone()
    if row is None:
        return None
    return dict(zip(result.keys(), row))


def _rows(result) -> list[dict[str, Any]]:
    columns = result.keys()
    return [dict(zip(columns, r)) for r in result.fetchall()]


def _set_clause(fields: dict[str, Any], allowed: Iterable[str]) -> tuple[str, dict[str, Any]]:
    """SET fragment and bind params for the whitelisted keys of `fields`."""
    allowed = tuple(allowed)
    keys = [k for k in fields if k in allowed]
    clause = ", ".join(f"{k} = :{k}" for k in keys)
    return clause, {k: _db_value(fields[k]) for k in keys}


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


async def fetch_user(session: AsyncSession, user_id: int) -> dict[str, Any] | None:
    result = await session.execute(
        text(f"SELECT {USER_COLUMNS} FROM users WHERE id = :user_id"),
        {"user_id": user_id},
    )
    return _row(result)


async def identity_taken(
    session: AsyncSession,
    user_id: int,
    username: str | None,
    email: str | None,
) -> bool:
    """True when another user already holds `username` or `email`."""
    result = await session.execute(
        text("SELECT id FROM users WHERE (username = :username OR email = :email) AND id != :user_id"),
        {"username": username, "email": email, "user_id": user_id},
    )
    return result.fetchone() is not None


async def update_user(session: AsyncSession, user_id: int, fields: dict[str, Any]) -> dict[str, Any] | None:
    clause, params = _set_clause(fields, USER_UPDATABLE)
    if not clause:
        return await fetch_user(session, user_id)
    params["user_id"] = user_id
    result = await session.execute(
        text(
            f"UPDATE users SET {clause}, updated_at = CURRENT_TIMESTAMP "
            f"WHERE id = :user_id RETURNING {USER_COLUMNS}"
        ),
        params,
    )
    return _row(result)


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


async def fetch_activities(
    session: AsyncSession,
    user_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Sequence[dict[str, Any]]:
    """Activities for a user, newest first. Optional inclusive [start, end] filter."""
    query = f"SELECT {ACTIVITY_COLUMNS} FROM activities WHERE user_id = :user_id"
    params: dict[str, Any] = {"user_id": user_id}
    if start is not None:
        query += " AND performed_at >= :start"
        params["start"] = start
    if end is not None:
        query += " AND performed_at <= :end"
        params["end"] = end
    query += " ORDER BY performed_at DESC"

    result = await session.execute(text(query), params)
    return _rows(result)


async def insert_activity(
    session: AsyncSession,
    user_id: int,
    fields: dict[str, Any],
    performed_at: datetime,
) -> dict[str, Any]:
    params = {k: _db_value(fields.get(k)) for k in ACTIVITY_UPDATABLE}
    params.update(user_id=user_id, performed_at=performed_at)
    result = await session.execute(
        text(
            "INSERT INTO activities "
            "(user_id, category, subtype, name, meal_type, food_type, duration, calories, protein, notes, performed_at) "
            "VALUES (:user_id, :category, :subtype, :name, :meal_type, :food_type, :duration, :calories, "
            ":protein, :notes, :performed_at) "
            f"RETURNING {ACTIVITY_COLUMNS}"
        ),
        params,
    )
    return _row(result)  # type: ignore[return-value]


async def update_activity(
    session: AsyncSession,
    activity_id: int,
    user_id: int,
    fields: dict[str, Any],
) -> dict[str, Any] | None:
    clause, params = _set_clause(fields, ACTIVITY_UPDATABLE)
    if not clause:
        result = await session.execute(
            text(f"SELECT {ACTIVITY_COLUMNS} FROM activities WHERE id = :id AND user_id = :user_id"),
            {"id": activity_id, "user_id": user_id},
        )
        return _row(result)
    params.update(id=activity_id, user_id=user_id)
    result = await session.execute(
        text(f"UPDATE activities SET {clause} WHERE id = :id AND user_id = :user_id RETURNING {ACTIVITY_COLUMNS}"),
        params,
    )
    return _row(result)


async def delete_activity(session: AsyncSession, activity_id: int, user_id: int) -> bool:
    result = await session.execute(
        text("DELETE FROM activities WHERE id = :id AND user_id = :user_id RETURNING id"),
        {"id": activity_id, "user_id": user_id},
    )
    return result.fetchone() is not None


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


async def fetch_goals(session: AsyncSession, user_id: int) -> Sequence[dict[str, Any]]:
    result = await session.execute(
        text(f"SELECT {GOAL_COLUMNS} FROM goals WHERE user_id = :user_id ORDER BY created_at DESC, id DESC"),
        {"user_id": user_id},
    )
    return _rows(result)


async def fetch_goal(session: AsyncSession, goal_id: int, user_id: int | None = None) -> dict[str, Any] | None:
    """Fetch one goal; when user_id is given the goal must belong to that user."""
    query = f"SELECT {GOAL_COLUMNS} FROM goals WHERE id = :id"
    params: dict[str, Any] = {"id": goal_id}
    if user_id is not None:
        query += " AND user_id = :user_id"
        params["user_id"] = user_id
    result = await session.execute(text(query), params)
    return _row(result)


async def insert_goal(session: AsyncSession, user_id: int, fields: dict[str, Any]) -> dict[str, Any]:
    params = {k: _db_value(fields.get(k)) for k in GOAL_INSERTABLE}
    params["user_id"] = user_id
    result = await session.execute(
        text(
            "INSERT INTO goals "
            "(user_id, title, description, unit, type, period, target_value, current_value, start_value, status, end_date) "
            "VALUES (:user_id, :title, :description, :unit, :type, :period, :target_value, :current_value, "
            ":start_value, :status, :end_date) "
            f"RETURNING {GOAL_COLUMNS}"
        ),
        params,
    )
    return _row(result)  # type: ignore[return-value]


async def update_goal(
    session: AsyncSession,
    goal_id: int,
    user_id: int,
    fields: dict[str, Any],
) -> dict[str, Any] | None:
    clause, params = _set_clause(fields, GOAL_UPDATABLE)
    if not clause:
        return await fetch_goal(session, goal_id, user_id)
    params.update(id=goal_id, user_id=user_id)
    result = await session.execute(
        text(f"UPDATE goals SET {clause} WHERE id = :id AND user_id = :user_id RETURNING {GOAL_COLUMNS}"),
        params,
    )
    return _row(result)


async def update_goal_progress(session: AsyncSession, goal_id: int, current_value: float, status: str) -> None:
    await session.execute(
        text("UPDATE goals SET current_value = :current_value, status = :status WHERE id = :id"),
        {"id": goal_id, "current_value": current_value, "status": _db_value(status)},
    )


async def delete_goal(session: AsyncSession, goal_id: int, user_id: int) -> bool:
    result = await session.execute(
        text("DELETE FROM goals WHERE id = :id AND user_id = :user_id RETURNING id"),
        {"id": goal_id, "user_id": user_id},
    )
    return result.fetchone() is not None


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

_GROUP_VIEW = (
    "SELECT g.id, g.name, g.description, g.created_by, g.created_at, "
    "(SELECT COUNT(*) FROM group_members m WHERE m.group_id = g.id) AS member_count, "
    "EXISTS(SELECT 1 FROM group_members m WHERE m.group_id = g.id AND m.user_id = :user_id) AS is_member, "
    "g.created_by = :user_id AS is_creator "
    "FROM groups g"
)


async def fetch_group(session: AsyncSession, group_id: int) -> dict[str, Any] | None:
    result = await session.execute(
        text("SELECT id, name, description, created_by, created_at FROM groups WHERE id = :id"),
        {"id": group_id},
    )
    return _row(result)


async def fetch_group_view(session: AsyncSession, group_id: int, user_id: int) -> dict[str, Any] | None:
    """Group row with member_count and the viewer's is_member / is_creator flags."""
    result = await session.execute(
        text(f"{_GROUP_VIEW} WHERE g.id = :group_id"),
        {"group_id": group_id, "user_id": user_id},
    )
    return _row(result)


async def fetch_groups_for_user(session: AsyncSession, user_id: int) -> Sequence[dict[str, Any]]:
    result = await session.execute(
        text(
            f"{_GROUP_VIEW} WHERE g.created_by = :user_id "
            "OR EXISTS(SELECT 1 FROM group_members m WHERE m.group_id = g.id AND m.user_id = :user_id) "
            "ORDER BY g.id"
        ),
        {"user_id": user_id},
    )
    return _rows(result)


async def insert_group(session: AsyncSession, name: str, description: str | None, created_by: int) -> dict[str, Any]:
    result = await session.execute(
        text(
            "INSERT INTO groups (name, description, created_by) VALUES (:name, :description, :created_by) "
            "RETURNING id, name, description, created_by, created_at"
        ),
        {"name": name, "description": description, "created_by": created_by},
    )
    return _row(result)  # type: ignore[return-value]


async def is_member(session: AsyncSession, group_id: int, user_id: int) -> bool:
    result = await session.execute(
        text("SELECT 1 FROM group_members WHERE group_id = :group_id AND user_id = :user_id"),
        {"group_id": group_id, "user_id": user_id},
    )
    return result.fetchone() is not None


async def insert_member(session: AsyncSession, group_id: int, user_id: int) -> bool:
    """Add a membership. False when the pair already exists."""
    result = await session.execute(
        text(
            "INSERT INTO group_members (group_id, user_id) VALUES (:group_id, :user_id) "
            "ON CONFLICT (group_id, user_id) DO NOTHING RETURNING group_id"
        ),
        {"group_id": group_id, "user_id": user_id},
    )
    return result.fetchone() is not None


async def delete_member(session: AsyncSession, group_id: int, user_id: int) -> bool:
    result = await session.execute(
        text("DELETE FROM group_members WHERE group_id = :group_id AND user_id = :user_id RETURNING group_id"),
        {"group_id": group_id, "user_id": user_id},
    )
    return result.fetchone() is not None


async def fetch_co_members(session: AsyncSession, group_id: int, exclude_user_id: int) -> Sequence[dict[str, Any]]:
    """Members of a group other than `exclude_user_id`: user_id, email."""
    result = await session.execute(
        text(
            "SELECT u.id AS user_id, u.email FROM group_members m JOIN users u ON u.id = m.user_id "
            "WHERE m.group_id = :group_id AND m.user_id != :user_id ORDER BY u.id"
        ),
        {"group_id": group_id, "user_id": exclude_user_id},
    )
    return _rows(result)


async def fetch_group_peers(session: AsyncSession, owner_id: int) -> Sequence[dict[str, Any]]:
    """Co-members across every group the owner belongs to.

    One row per (group, peer): group_id, group_name, user_id, email, ordered by
    group id then user id.
    """
    result = await session.execute(
        text(
            "SELECT g.id AS group_id, g.name AS group_name, u.id AS user_id, u.email "
            "FROM group_members own "
            "JOIN groups g ON g.id = own.group_id "
            "JOIN group_members peer ON peer.group_id = own.group_id AND peer.user_id != own.user_id "
            "JOIN users u ON u.id = peer.user_id "
            "WHERE own.user_id = :owner_id "
            "ORDER BY g.id, u.id"
        ),
        {"owner_id": owner_id},
    )
    return _rows(result)


# ---------------------------------------------------------------------------
# Codes. Table and subject column names come from the namespace registry,
# never from request input.
# ---------------------------------------------------------------------------


async def insert_code(
    session: AsyncSession,
    table: str,
    code: str,
    subject: dict[str, Any],
    expires_at: datetime,
    created_by: int,
    now: datetime,
) -> bool:
    """Store a code. False when a live row already holds the same code.

    An expired row with the same code is overwritten in place.
    """
    columns = list(subject)
    names = ", ".join(columns)
    binds = ", ".join(f":{c}" for c in columns)
    overwrite = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns)
    params = {c: _db_value(v) for c, v in subject.items()}
    params.update(code=code, expires_at=expires_at, created_by=created_by, now=now)
    result = await session.execute(
        text(
            f"INSERT INTO {table} (code, {names}, expires_at, created_by, created_at) "
            f"VALUES (:code, {binds}, :expires_at, :created_by, :now) "
            f"ON CONFLICT (code) DO UPDATE SET {overwrite}, expires_at = EXCLUDED.expires_at, "
            "created_by = EXCLUDED.created_by, created_at = EXCLUDED.created_at "
            f"WHERE {table}.expires_at <= :now "
            "RETURNING code"
        ),
        params,
    )
    return result.fetchone() is not None


async def delete_live_code(
    session: AsyncSession,
    table: str,
    subject_columns: Sequence[str],
    code: str,
    now: datetime,
) -> dict[str, Any] | None:
    """Atomically consume a live code, returning its row, or None."""
    returning = ", ".join(["code", *subject_columns, "expires_at", "created_by"])
    result = await session.execute(
        text(f"DELETE FROM {table} WHERE code = :code AND expires_at > :now RETURNING {returning}"),
        {"code": code, "now": now},
    )
    return _row(result)


async def code_exists(session: AsyncSession, table: str, code: str) -> bool:
    result = await session.execute(text(f"SELECT 1 FROM {table} WHERE code = :code"), {"code": code})
    return result.fetchone() is not None
