from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewflow.core.errors import AuthError, StoreError
from reviewflow.domain.models import PLATFORM_GOOGLE, ProviderCredential
from reviewflow.persistence.db import SessionLocal
from reviewflow.persistence.repos import credentials as credentials_repo
from reviewflow.persistence.repos import locations as locations_repo
from reviewflow.persistence.repos import reviews as reviews_repo
from reviewflow.providers.reviews.base import ReviewSourceProvider
from reviewflow.services.sync.targets import SyncTarget


logger = logging.getLogger(__name__)

# Refresh tokens this close to expiry instead of risking a mid-sync 401.
_TOKEN_EXPIRY_SKEW = timedelta(seconds=60)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ReviewSyncAdapter:
    """Imports new reviews for one location into the store."""

    def __init__(
        self,
        provider: ReviewSourceProvider,
        *,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._provider = provider
        self._session_factory = session_factory
        self._clock = clock

    async def _refresh(self, session: AsyncSession, credential: ProviderCredential) -> str:
        token = await self._provider.refresh_access_token(credential.refresh_token or "")
        credentials_repo.store_access_token(
            credential,
            access_token=token.token,
            expires_at=token.expires_at,
            refresh_token=token.refresh_token,
        )
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise StoreError("Failed to persist refreshed access token") from exc
        return token.token

    async def sync(self, target: SyncTarget) -> int:
        async with self._session_factory() as session:
            try:
                credential = await credentials_repo.get_credential(
                    session, organization_id=target.organization_id, platform=PLATFORM_GOOGLE
                )
                location = await locations_repo.get_location(session, target.location_id)
            except SQLAlchemyError as exc:
                raise StoreError(f"Failed to load sync state for {target.location_id}") from exc
            if credential is None or not credential.refresh_token:
                raise AuthError("No Google account linked to this organization")

            now = self._clock()
            expires_at = as_utc(credential.token_expires_at)
            cached = credential.access_token
            if cached and expires_at is not None and expires_at - _TOKEN_EXPIRY_SKEW > now:
                access_token = cached
                refreshed = False
            else:
                access_token = await self._refresh(session, credential)
                refreshed = True

            since = as_utc(location.last_synced_at) if location is not None else None
            try:
                reviews = await self._provider.list_reviews(
                    target.external_reference, access_token, since=since
                )
            except AuthError:
                if refreshed:
                    raise
                # The cached token may have been revoked early; retry once with a fresh one.
                logger.info("review_sync_token_rejected location_id=%s", target.location_id)
                access_token = await self._refresh(session, credential)
                reviews = await self._provider.list_reviews(
                    target.external_reference, access_token, since=since
                )

            try:
                imported = await reviews_repo.upsert_external_reviews(
                    session,
                    organization_id=target.organization_id,
                    location_id=target.location_id,
                    reviews=reviews,
                    source=self._provider.source,
                    now=now,
                )
                # The fetch start time: reviews landing mid-sync are picked up next run.
                await locations_repo.mark_synced(session, target.location_id, synced_at=now)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError(f"Failed to store reviews for {target.location_id}") from exc

        logger.info(
            "review_sync_target_done location_id=%s imported=%s",
            target.location_id,
            imported,
        )
        return imported
