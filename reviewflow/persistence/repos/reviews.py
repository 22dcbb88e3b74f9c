from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence
from uuid import uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.domain.models import (
    REVIEW_STATUS_DRAFT,
    REVIEW_STATUS_ERROR,
    REVIEW_STATUS_PENDING,
    REVIEW_STATUS_PROCESSING,
    Organization,
    Review,
)
from reviewflow.persistence.db import dialect_name
from reviewflow.providers.reviews.base import ExternalReview


# Columns refreshed when a synced review already exists; status and reply are never touched.
_REFRESHABLE_COLUMNS = ("author_name", "rating", "text", "received_at")


@dataclass(frozen=True)
class ClaimedReview:
    review_id: str
    organization_id: str
    organization_name: str
    industry: str | None
    brand: dict[str, Any]
    rating: int
    text: str
    author_name: str | None
    language: str | None
    # Claim token: completions must match it exactly.
    claimed_at: datetime


def _row_values(
    review: ExternalReview,
    *,
    organization_id: str,
    location_id: str,
    source: str,
    created_at: datetime,
) -> dict[str, Any]:
    return {
        "id": uuid4().hex,
        "organization_id": organization_id,
        "location_id": location_id,
        "source": source,
        "external_id": review.external_id,
        "author_name": review.author_name,
        "rating": review.rating,
        "text": review.text,
        "language": review.language,
        "received_at": review.received_at,
        "status": REVIEW_STATUS_PENDING,
        "created_at": created_at,
    }


async def upsert_external_reviews(
    session: AsyncSession,
    *,
    organization_id: str,
    location_id: str,
    reviews: Sequence[ExternalReview],
    source: str,
    now: datetime | None = None,
) -> int:
    """Insert new reviews as pending and refresh the content of known ones.

    Keyed on ``external_id`` so repeated syncs never duplicate a review.
    Rows of one batch get strictly increasing ``created_at`` values in list
    order, so drafting picks them up in arrival order. Returns the number of
    reviews that were newly inserted.
    """
    # Last write wins for duplicates inside one batch; ON CONFLICT cannot touch a row twice.
    unique = {review.external_id: review for review in reviews}
    if not unique:
        return 0
    base = now or datetime.now(timezone.utc)
    rows = [
        _row_values(
            review,
            organization_id=organization_id,
            location_id=location_id,
            source=source,
            created_at=base + timedelta(microseconds=position),
        )
        for position, review in enumerate(unique.values())
    ]
    known = await session.execute(
        select(Review.external_id).where(Review.external_id.in_(list(unique)))
    )
    inserted = len(rows) - len(set(known.scalars().all()))

    dialect = dialect_name(session)
    if dialect in {"postgresql", "sqlite"}:
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(Review).values(rows)
        set_ = {column: getattr(stmt.excluded, column) for column in _REFRESHABLE_COLUMNS}
        set_["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(index_elements=[Review.external_id], set_=set_)
        await session.execute(stmt)
        return inserted

    # Generic path for dialects without ON CONFLICT support.
    for values in rows:
        result = await session.execute(
            select(Review).where(Review.external_id == values["external_id"])
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            session.add(Review(**values))
            continue
        for column in _REFRESHABLE_COLUMNS:
            setattr(existing, column, values[column])
    await session.flush()
    return inserted


async def claim_reviews_for_drafting(
    session: AsyncSession,
    *,
    limit: int,
    now: datetime,
    claim_ttl_s: int,
) -> list[ClaimedReview]:
    """Atomically move up to ``limit`` reviews from pending to processing.

    Oldest arrivals first across all tenants. Claims older than ``claim_ttl_s``
    belong to a run that died mid-batch and are eligible again. The caller
    commits.
    """
    stale_before = now - timedelta(seconds=claim_ttl_s)
    stmt = (
        select(Review, Organization.name, Organization.industry, Organization.brand_json)
        .join(Organization, Organization.id == Review.organization_id)
        .where(
            or_(
                Review.status == REVIEW_STATUS_PENDING,
                and_(
                    Review.status == REVIEW_STATUS_PROCESSING,
                    Review.claimed_at < stale_before,
                ),
            )
        )
        .order_by(Review.created_at, Review.id)
        .limit(limit)
        # Concurrent runs skip rows another run is claiming.
        .with_for_update(skip_locked=True, of=Review)
    )
    result = await session.execute(stmt)
    claimed: list[ClaimedReview] = []
    for review, org_name, industry, brand_json in result.all():
        review.status = REVIEW_STATUS_PROCESSING
        review.claimed_at = now
        claimed.append(
            ClaimedReview(
                review_id=review.id,
                organization_id=review.organization_id,
                organization_name=org_name,
                industry=industry,
                brand=dict(brand_json or {}),
                rating=int(review.rating or 0),
                text=review.text or "",
                author_name=review.author_name,
                language=review.language,
                claimed_at=now,
            )
        )
    await session.flush()
    return claimed


def _held_claim(review_id: str, claimed_at: datetime):
    # A claim taken over after expiry carries a newer claimed_at.
    return (
        Review.id == review_id,
        Review.status == REVIEW_STATUS_PROCESSING,
        Review.claimed_at == claimed_at,
    )


async def renew_review_claim(
    session: AsyncSession, review_id: str, *, claimed_at: datetime, now: datetime
) -> bool:
    """Restart the claim clock when work on one item actually begins.

    Returns False when another run has taken the item over; the caller must
    then leave it alone.
    """
    result = await session.execute(
        update(Review).where(*_held_claim(review_id, claimed_at)).values(claimed_at=now)
    )
    return (result.rowcount or 0) == 1


async def mark_review_drafted(
    session: AsyncSession, review_id: str, *, claimed_at: datetime, ai_reply: dict[str, Any]
) -> bool:
    result = await session.execute(
        update(Review)
        .where(*_held_claim(review_id, claimed_at))
        .values(
            status=REVIEW_STATUS_DRAFT,
            ai_reply_json=ai_reply,
            error_message=None,
            claimed_at=None,
        )
    )
    return (result.rowcount or 0) == 1


async def mark_review_failed(
    session: AsyncSession, review_id: str, *, claimed_at: datetime, error_message: str
) -> bool:
    result = await session.execute(
        update(Review)
        .where(*_held_claim(review_id, claimed_at))
        .values(
            status=REVIEW_STATUS_ERROR,
            error_message=error_message[:2000],
            claimed_at=None,
        )
    )
    return (result.rowcount or 0) == 1


async def get_review(session: AsyncSession, review_id: str) -> Review | None:
    result = await session.execute(select(Review).where(Review.id == review_id))
    return result.scalar_one_or_none()


async def count_by_status(session: AsyncSession) -> dict[str, int]:
    result = await session.execute(select(Review.status, func.count()).group_by(Review.status))
    return {status: int(count) for status, count in result.all()}
