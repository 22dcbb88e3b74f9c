from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from reviewflow.domain.models import (
    PLATFORM_GOOGLE,
    REVIEW_STATUS_PENDING,
    Location,
    Organization,
    ProviderCredential,
    Review,
    User,
)
from reviewflow.persistence.db import SessionLocal


BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


async def create_organization(
    *,
    name: str = "Test Bistro",
    plan: str = "free",
    stripe_customer_id: str | None = None,
    brand: dict[str, Any] | None = None,
    user_email: str | None = None,
) -> tuple[str, str]:
    # Provision an organization plus its owner user.
    organization_id = f"org-{uuid4().hex[:8]}"
    user_id = f"user-{uuid4().hex[:8]}"
    async with SessionLocal() as session:
        session.add(
            Organization(
                id=organization_id,
                name=name,
                industry="restaurant",
                brand_json=brand,
                subscription_plan=plan,
                stripe_customer_id=stripe_customer_id,
            )
        )
        await session.flush()
        session.add(User(id=user_id, organization_id=organization_id, email=user_email))
        await session.commit()
    return organization_id, user_id


async def create_location(
    organization_id: str,
    *,
    external_reference: str | None,
    refresh_token: str | None = "refresh-token",
    position: int = 0,
) -> str:
    # Explicit created_at keeps enumeration order deterministic.
    location_id = f"loc-{uuid4().hex[:8]}"
    async with SessionLocal() as session:
        session.add(
            Location(
                id=location_id,
                organization_id=organization_id,
                name=f"Location {position}",
                external_reference=external_reference,
                created_at=BASE_TIME + timedelta(minutes=position),
            )
        )
        existing = await session.get(ProviderCredential, f"cred-{organization_id}")
        if existing is None and refresh_token is not None:
            session.add(
                ProviderCredential(
                    id=f"cred-{organization_id}",
                    organization_id=organization_id,
                    platform=PLATFORM_GOOGLE,
                    refresh_token=refresh_token,
                )
            )
        await session.commit()
    return location_id


async def create_review(
    organization_id: str,
    *,
    rating: int,
    text: str = "Great place",
    status: str = REVIEW_STATUS_PENDING,
    position: int = 0,
    external_id: str | None = None,
    claimed_at: datetime | None = None,
) -> str:
    review_id = f"rev-{position:03d}-{uuid4().hex[:6]}"
    async with SessionLocal() as session:
        session.add(
            Review(
                id=review_id,
                organization_id=organization_id,
                source=PLATFORM_GOOGLE,
                external_id=external_id,
                author_name="Alex",
                rating=rating,
                text=text,
                status=status,
                claimed_at=claimed_at,
                created_at=BASE_TIME + timedelta(minutes=position),
            )
        )
        await session.commit()
    return review_id


async def load_review(review_id: str) -> Review:
    async with SessionLocal() as session:
        review = await session.get(Review, review_id)
        assert review is not None
        return review


async def load_organization(organization_id: str) -> Organization:
    async with SessionLocal() as session:
        organization = await session.get(Organization, organization_id)
        assert organization is not None
        return organization
