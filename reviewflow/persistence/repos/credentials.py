from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.domain.models import ProviderCredential


async def get_credential(
    session: AsyncSession, *, organization_id: str, platform: str
) -> ProviderCredential | None:
    result = await session.execute(
        select(ProviderCredential).where(
            ProviderCredential.organization_id == organization_id,
            ProviderCredential.platform == platform,
        )
    )
    return result.scalar_one_or_none()


def store_access_token(
    credential: ProviderCredential,
    *,
    access_token: str,
    expires_at: datetime,
    refresh_token: str | None = None,
) -> ProviderCredential:
    # Keep the existing refresh token unless the provider rotated it.
    credential.access_token = access_token
    credential.token_expires_at = expires_at
    if refresh_token:
        credential.refresh_token = refresh_token
    return credential
