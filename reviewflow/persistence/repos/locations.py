from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import Row, and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.domain.models import PLATFORM_GOOGLE, Location, ProviderCredential


async def list_sync_candidates(session: AsyncSession) -> Sequence[Row[Any]]:
    # Locations linked to Google whose organization still holds a refresh token.
    stmt = (
        select(
            Location.id,
            Location.name,
            Location.external_reference,
            Location.organization_id,
        )
        .join(
            ProviderCredential,
            and_(
                ProviderCredential.organization_id == Location.organization_id,
                ProviderCredential.platform == PLATFORM_GOOGLE,
            ),
        )
        .where(
            Location.external_reference.is_not(None),
            Location.external_reference != "",
            ProviderCredential.refresh_token.is_not(None),
        )
        .order_by(Location.created_at, Location.id)
    )
    result = await session.execute(stmt)
    return result.all()


async def get_location(session: AsyncSession, location_id: str) -> Location | None:
    result = await session.execute(select(Location).where(Location.id == location_id))
    return result.scalar_one_or_none()


async def mark_synced(session: AsyncSession, location_id: str, *, synced_at: datetime) -> None:
    await session.execute(
        update(Location).where(Location.id == location_id).values(last_synced_at=synced_at)
    )
