"""Expiring single-use codes for group invitations and goal shares.

Both code spaces share one shape (code, subject columns, expires_at,
created_by) and differ only in table and subject columns, captured by
CodeNamespace. Uniqueness among live codes is enforced by the store's
UNIQUE constraint; issue() retries on conflict up to a fixed bound.
Redemption is a single conditional delete, so a code can be used once.
"""

from __future__ import annotations

import logging
import random
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from corex.config import settings
from corex.errors import Expired, ExhaustedRetries, NotFound, ValidationError
from corex.tracker import store
from corex.tracker.models import IssuedCode

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True, slots=True)
class CodeNamespace:
    name: str
    table: str
    subject_columns: tuple[str, ...]
    label: str = ""


GROUP_INVITES = CodeNamespace(
    name="group_invite",
    table="group_invites",
    subject_columns=("group_id", "email"),
    label="Invitation code",
)

SHARED_GOALS = CodeNamespace(
    name="goal_share",
    table="shared_goals",
    subject_columns=("goal_id", "group_id", "shared_by"),
    label="Sharing code",
)


def generate_token(rng: random.Random | None = None, length: int | None = None) -> str:
    """Uniformly random token over A-Z0-9."""
    source = rng or secrets.SystemRandom()
    size = settings.code_length if length is None else length
    return "".join(source.choice(ALPHABET) for _ in range(size))


def normalize_code(code: str) -> str:
    """Strip and upper-case user input; reject anything that cannot be a code."""
    normalized = (code or "").strip().upper()
    if not re.fullmatch(rf"[A-Z0-9]{{{settings.code_length}}}", normalized):
        raise ValidationError(f"Malformed code: {code!r}", field="code")
    return normalized


async def issue(
    session: AsyncSession,
    namespace: CodeNamespace,
    subject: dict[str, Any],
    created_by: int,
    now: datetime,
    duration_days: int | None = None,
    rng: random.Random | None = None,
) -> IssuedCode:
    """Generate and store a code not held by any live code of the namespace."""
    missing = set(namespace.subject_columns) - set(subject)
    if missing:
        raise ValidationError(f"Missing {namespace.name} subject fields: {', '.join(sorted(missing))}")

    days = settings.code_ttl_days if duration_days is None else duration_days
    expires_at = now + timedelta(days=days)
    payload = {c: subject[c] for c in namespace.subject_columns}

    attempts = settings.code_max_attempts
    for attempt in range(1, attempts + 1):
        code = generate_token(rng)
        if await store.insert_code(session, namespace.table, code, payload, expires_at, created_by, now):
            if attempt > 1:
                logger.info("Issued %s code after %d attempts", namespace.name, attempt)
            return IssuedCode(namespace=namespace.name, code=code, expires_at=expires_at)
        logger.warning("Code collision in %s (attempt %d/%d)", namespace.name, attempt, attempts)

    raise ExhaustedRetries(namespace.name, attempts)


async def redeem(
    session: AsyncSession,
    namespace: CodeNamespace,
    code: str,
    now: datetime,
) -> dict[str, Any]:
    """Consume a live code and return its subject.

    Raises NotFound when no such code exists (including one consumed
    concurrently) and Expired when it exists but expires_at <= now.
    """
    normalized = normalize_code(code)
    row = await store.delete_live_code(session, namespace.table, namespace.subject_columns, normalized, now)
    if row is not None:
        return {c: row[c] for c in namespace.subject_columns}

    if await store.code_exists(session, namespace.table, normalized):
        raise Expired(f"{namespace.label or 'Code'} has expired")
    raise NotFound(namespace.label or "Code")
