from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.core.errors import StoreError
from reviewflow.persistence.repos import locations as locations_repo


@dataclass(frozen=True)
class SyncTarget:
    location_id: str
    external_reference: str
    organization_id: str
    location_name: str


async def list_sync_targets(session: AsyncSession) -> list[SyncTarget]:
    """Enumerate every location eligible for review synchronization.

    A store failure here is fatal for the run: there is nothing to fan out to.
    """
    try:
        rows = await locations_repo.list_sync_candidates(session)
    except SQLAlchemyError as exc:
        raise StoreError("Unable to enumerate sync targets") from exc
    return [
        SyncTarget(
            location_id=row.id,
            external_reference=row.external_reference,
            organization_id=row.organization_id,
            location_name=row.name,
        )
        for row in rows
    ]
