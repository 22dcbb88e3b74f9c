from __future__ import annotations

import hmac
from typing import AsyncGenerator

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.core.config import get_settings
from reviewflow.persistence.db import get_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def _parse_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    # Open when no secret is configured (local runs); otherwise the scheduler must present it.
    secret = get_settings().cron_secret
    if not secret:
        return
    token = _parse_bearer(authorization)
    if token is None or not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")
