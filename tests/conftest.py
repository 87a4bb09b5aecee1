"""Shared fixtures for the test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from corex.db import get_session
from corex.main import app
from corex.tracker import store
from corex.tracker.deps import get_now
from corex.tracker.mailer import get_notifier
from corex.tracker.models import NotificationKind

# Wednesday; the Sunday-based week runs Feb 15 – Feb 21
NOW = datetime(2026, 2, 18, 15, 30, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fake DB session (no real Postgres needed)
# ---------------------------------------------------------------------------


class FakeResult:
    def __init__(self, rows: list[dict[str, Any]]):
        self._rows = rows
        self._keys = list(rows[0].keys()) if rows else []

    def keys(self):
        return self._keys

    def fetchall(self):
        return [tuple(r[k] for k in self._keys) for r in self._rows]

    def fetchone(self):
        rows = self.fetchall()
        return rows[0] if rows else None


class FakeSession:
    """Minimal stand-in for AsyncSession.

    Records every statement; each execute() returns the next queued row list
    (or no rows once the queue is empty).
    """

    def __init__(self, results: list[list[dict[str, Any]]] | None = None):
        self._results = list(results or [])
        self.statements: list[tuple[str, dict[str, Any]]] = []
        self.commits = 0
        self.rollbacks = 0

    async def execute(self, stmt, params=None):
        self.statements.append((str(stmt), dict(params or {})))
        rows = self._results.pop(0) if self._results else []
        return FakeResult(rows)

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


# ---------------------------------------------------------------------------
# In-memory store with the same signatures as corex.tracker.store
# ---------------------------------------------------------------------------


def _plain(value: Any) -> Any:
    return store._db_value(value)


class MemoryStore:
    def __init__(self):
        self.users: dict[int, dict[str, Any]] = {}
        self.activities: dict[int, dict[str, Any]] = {}
        self.goals: dict[int, dict[str, Any]] = {}
        self.groups: dict[int, dict[str, Any]] = {}
        self.members: set[tuple[int, int]] = set()
        self.codes: dict[str, dict[str, dict[str, Any]]] = {"group_invites": {}, "shared_goals": {}}
        self._ids = {"activities": 0, "goals": 0, "groups": 0}

    def _next_id(self, table: str) -> int:
        self._ids[table] += 1
        return self._ids[table]

    # -- seeding helpers ----------------------------------------------------

    def add_user(self, user_id: int, email: str | None = None, weight: float | None = None, **extra) -> dict:
        row = {
            "id": user_id,
            "username": extra.pop("username", f"user{user_id}"),
            "email": email or f"user{user_id}@example.com",
            "height": extra.pop("height", None),
            "weight": weight,
        }
        self.users[user_id] = row
        return row

    def add_activity(self, user_id: int, category: str, calories: float, performed_at: datetime, **extra) -> dict:
        activity_id = self._next_id("activities")
        row = {
            "id": activity_id,
            "user_id": user_id,
            "category": category,
            "subtype": extra.pop("subtype", "Run" if category == "exercise" else "meal"),
            "name": None,
            "meal_type": None,
            "food_type": None,
            "duration": extra.pop("duration", None),
            "calories": calories,
            "protein": extra.pop("protein", None),
            "notes": None,
            "performed_at": performed_at,
        }
        self.activities[activity_id] = row
        return row

    def add_goal(self, user_id: int, **fields) -> dict:
        goal_id = self._next_id("goals")
        row = {
            "id": goal_id,
            "user_id": user_id,
            "title": fields.pop("title", f"Goal {goal_id}"),
            "description": fields.pop("description", None),
            "unit": fields.pop("unit", ""),
            "type": _plain(fields.pop("type", "custom")),
            "period": _plain(fields.pop("period", "total")),
            "target_value": fields.pop("target_value", 100.0),
            "current_value": fields.pop("current_value", 0.0),
            "start_value": fields.pop("start_value", 0.0),
            "status": _plain(fields.pop("status", "in_progress")),
            "start_date": fields.pop("start_date", NOW),
            "end_date": fields.pop("end_date", None),
        }
        self.goals[goal_id] = row
        return row

    def add_group(self, name: str, created_by: int, members: tuple[int, ...] = ()) -> dict:
        group_id = self._next_id("groups")
        row = {"id": group_id, "name": name, "description": None, "created_by": created_by, "created_at": NOW}
        self.groups[group_id] = row
        self.members.add((group_id, created_by))
        for user_id in members:
            self.members.add((group_id, user_id))
        return row

    # -- users ----------------------------------------------------------------

    async def fetch_user(self, session, user_id):
        row = self.users.get(user_id)
        return dict(row) if row else None

    async def identity_taken(self, session, user_id, username, email):
        return any(
            uid != user_id and (u["username"] == username or u["email"] == email)
            for uid, u in self.users.items()
        )

    async def update_user(self, session, user_id, fields):
        row = self.users.get(user_id)
        if row is None:
            return None
        row.update({k: _plain(v) for k, v in fields.items() if k in store.USER_UPDATABLE})
        return dict(row)

    # -- activities -----------------------------------------------------------

    async def fetch_activities(self, session, user_id, start=None, end=None):
        rows = [
            dict(a)
            for a in self.activities.values()
            if a["user_id"] == user_id
            and (start is None or a["performed_at"] >= start)
            and (end is None or a["performed_at"] <= end)
        ]
        return sorted(rows, key=lambda a: a["performed_at"], reverse=True)

    async def insert_activity(self, session, user_id, fields, performed_at):
        row = self.add_activity(
            user_id, _plain(fields["category"]), fields["calories"], performed_at, subtype=fields["subtype"]
        )
        row.update({k: _plain(fields.get(k)) for k in store.ACTIVITY_UPDATABLE})
        return dict(row)

    async def update_activity(self, session, activity_id, user_id, fields):
        row = self.activities.get(activity_id)
        if row is None or row["user_id"] != user_id:
            return None
        row.update({k: _plain(v) for k, v in fields.items() if k in store.ACTIVITY_UPDATABLE})
        return dict(row)

    async def delete_activity(self, session, activity_id, user_id):
        row = self.activities.get(activity_id)
        if row is None or row["user_id"] != user_id:
            return False
        del self.activities[activity_id]
        return True

    # -- goals ------------------------------------------------------------------

    async def fetch_goals(self, session, user_id):
        rows = [dict(g) for g in self.goals.values() if g["user_id"] == user_id]
        return sorted(rows, key=lambda g: g["id"], reverse=True)

    async def fetch_goal(self, session, goal_id, user_id=None):
        row = self.goals.get(goal_id)
        if row is None or (user_id is not None and row["user_id"] != user_id):
            return None
        return dict(row)

    async def insert_goal(self, session, user_id, fields):
        values = {k: _plain(fields.get(k)) for k in store.GOAL_INSERTABLE}
        return dict(self.add_goal(user_id, **values))

    async def update_goal(self, session, goal_id, user_id, fields):
        row = self.goals.get(goal_id)
        if row is None or row["user_id"] != user_id:
            return None
        row.update({k: _plain(v) for k, v in fields.items() if k in store.GOAL_UPDATABLE})
        return dict(row)

    async def update_goal_progress(self, session, goal_id, current_value, status):
        row = self.goals[goal_id]
        row["current_value"] = current_value
        row["status"] = _plain(status)

    async def delete_goal(self, session, goal_id, user_id):
        row = self.goals.get(goal_id)
        if row is None or row["user_id"] != user_id:
            return False
        del self.goals[goal_id]
        shared = self.codes["shared_goals"]
        for code in [c for c, r in shared.items() if r["goal_id"] == goal_id]:
            del shared[code]
        return True

    # -- groups -----------------------------------------------------------------

    def _view(self, group: dict, user_id: int) -> dict:
        row = dict(group)
        row["member_count"] = sum(1 for gid, _ in self.members if gid == group["id"])
        row["is_member"] = (group["id"], user_id) in self.members
        row["is_creator"] = group["created_by"] == user_id
        return row

    async def fetch_group(self, session, group_id):
        row = self.groups.get(group_id)
        return dict(row) if row else None

    async def fetch_group_view(self, session, group_id, user_id):
        row = self.groups.get(group_id)
        return self._view(row, user_id) if row else None

    async def fetch_groups_for_user(self, session, user_id):
        return [
            self._view(g, user_id)
            for gid, g in sorted(self.groups.items())
            if g["created_by"] == user_id or (gid, user_id) in self.members
        ]

    async def insert_group(self, session, name, description, created_by):
        group_id = self._next_id("groups")
        row = {"id": group_id, "name": name, "description": description, "created_by": created_by, "created_at": NOW}
        self.groups[group_id] = row
        return dict(row)

    async def is_member(self, session, group_id, user_id):
        return (group_id, user_id) in self.members

    async def insert_member(self, session, group_id, user_id):
        if (group_id, user_id) in self.members:
            return False
        self.members.add((group_id, user_id))
        return True

    async def delete_member(self, session, group_id, user_id):
        if (group_id, user_id) not in self.members:
            return False
        self.members.discard((group_id, user_id))
        return True

    async def fetch_co_members(self, session, group_id, exclude_user_id):
        return [
            {"user_id": uid, "email": self.users[uid]["email"]}
            for gid, uid in sorted(self.members)
            if gid == group_id and uid != exclude_user_id
        ]

    async def fetch_group_peers(self, session, owner_id):
        rows = []
        for gid, uid in sorted(self.members):
            if uid == owner_id or (gid, owner_id) not in self.members:
                continue
            rows.append(
                {"group_id": gid, "group_name": self.groups[gid]["name"], "user_id": uid, "email": self.users[uid]["email"]}
            )
        return rows

    # -- codes --------------------------------------------------------------------

    async def insert_code(self, session, table, code, subject, expires_at, created_by, now):
        existing = self.codes[table].get(code)
        if existing is not None and existing["expires_at"] > now:
            return False
        self.codes[table][code] = {
            "code": code,
            **{k: _plain(v) for k, v in subject.items()},
            "expires_at": expires_at,
            "created_by": created_by,
        }
        return True

    async def delete_live_code(self, session, table, subject_columns, code, now):
        row = self.codes[table].get(code)
        if row is None or row["expires_at"] <= now:
            return None
        del self.codes[table][code]
        return {k: row[k] for k in ("code", *subject_columns, "expires_at", "created_by")}

    async def code_exists(self, session, table, code):
        return code in self.codes[table]


STORE_FUNCTIONS = (
    "fetch_user", "identity_taken", "update_user",
    "fetch_activities", "insert_activity", "update_activity", "delete_activity",
    "fetch_goals", "fetch_goal", "insert_goal", "update_goal", "update_goal_progress", "delete_goal",
    "fetch_group", "fetch_group_view", "fetch_groups_for_user", "insert_group",
    "is_member", "insert_member", "delete_member", "fetch_co_members", "fetch_group_peers",
    "insert_code", "delete_live_code", "code_exists",
)


class RecordingNotifier:
    def __init__(self, fail_for: set[str] | None = None):
        self.sent: list[tuple[NotificationKind, str, dict[str, Any]]] = []
        self.fail_for = fail_for or set()

    async def send(self, kind, recipient_email, payload):
        if recipient_email in self.fail_for:
            raise ConnectionError(f"SMTP refused {recipient_email}")
        self.sent.append((kind, recipient_email, payload))

    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _, _ in self.sent]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_session():
    return FakeSession()


@pytest.fixture()
def memory_store(monkeypatch):
    """Replace every store function with the in-memory implementation."""
    mem = MemoryStore()
    for name in STORE_FUNCTIONS:
        monkeypatch.setattr(store, name, getattr(mem, name))
    return mem


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def override_deps(fake_session, notifier):
    """Override FastAPI dependencies so no real DB, SMTP or clock is needed."""

    async def _session():
        yield fake_session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_now] = lambda: NOW
    yield fake_session
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(override_deps, memory_store):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def as_user(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}
