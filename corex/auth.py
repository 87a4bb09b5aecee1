"""API key verification and caller identity for tracker endpoints."""

from fastapi import HTTPException, Header

from corex.config import settings


async def verify_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    authorization: str | None = Header(default=None),
) -> str:
    """Validate API key via X-API-Key or Authorization: Bearer.

    If KERNEL_API_KEY is not set, passes through (no auth).
    If set, requires matching key or raises 401.
    """
    if settings.kernel_api_key is None:
        return ""

    key = x_api_key
    if key is None and authorization and authorization.startswith("Bearer "):
        key = authorization[7:].strip()

    if key != settings.kernel_api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

    return key


async def current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> int:
    """Return the authenticated user's id.

    Sessions and tokens are issued by the gateway in front of this service,
    which forwards the resolved identity as X-User-Id.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Access denied")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid user identity")
    if user_id <= 0:
        raise HTTPException(status_code=401, detail="Invalid user identity")
    return user_id
