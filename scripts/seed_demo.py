from __future__ import annotations

import asyncio
from dataclasses import dataclass
import sys

from sqlalchemy import select

from reviewflow.domain.models import (
    PLATFORM_GOOGLE,
    Base,
    Location,
    Organization,
    ProviderCredential,
    Review,
    User,
)
from reviewflow.persistence.db import SessionLocal, engine


DEMO_ORGANIZATION_ID = "org-demo"
DEMO_USER_ID = "user-demo"
DEMO_LOCATION_ID = "loc-demo"


@dataclass(frozen=True)
class DemoReview:
    external_id: str
    author_name: str
    rating: int
    text: str


def build_demo_reviews() -> tuple[DemoReview, ...]:
    # One of each rating band so both reply styles and the approval flag show up.
    return (
        DemoReview("demo-review-1", "Camille", 5, "Excellent service, the team was lovely."),
        DemoReview("demo-review-2", "Julien", 4, "Good food, a bit of a wait on Saturday."),
        DemoReview("demo-review-3", "Anonymous", 2, "Cold coffee and nobody apologised."),
        DemoReview("demo-review-4", "Sofia", 1, "Order was wrong twice."),
    )


async def seed_demo() -> int:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as session:
        organization = await session.get(Organization, DEMO_ORGANIZATION_ID)
        if organization is None:
            session.add(
                Organization(
                    id=DEMO_ORGANIZATION_ID,
                    name="Demo Bistro",
                    industry="restaurant",
                    brand_json={"tone": "friendly", "language_style": "casual"},
                )
            )
            session.add(User(id=DEMO_USER_ID, organization_id=DEMO_ORGANIZATION_ID, email="owner@demo.test"))
            session.add(
                Location(
                    id=DEMO_LOCATION_ID,
                    organization_id=DEMO_ORGANIZATION_ID,
                    name="Demo Bistro Centre",
                    external_reference="accounts/demo/locations/1",
                )
            )
            session.add(
                ProviderCredential(
                    id="cred-demo",
                    organization_id=DEMO_ORGANIZATION_ID,
                    platform=PLATFORM_GOOGLE,
                    refresh_token="demo-refresh-token",
                )
            )
            await session.flush()

        existing = await session.execute(
            select(Review.id).where(Review.organization_id == DEMO_ORGANIZATION_ID).limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            await session.commit()
            print("Demo organization already seeded; skipping.")
            return 0

        reviews = [
            Review(
                id=f"rev-{item.external_id}",
                organization_id=DEMO_ORGANIZATION_ID,
                location_id=DEMO_LOCATION_ID,
                source=PLATFORM_GOOGLE,
                external_id=item.external_id,
                author_name=item.author_name,
                rating=item.rating,
                text=item.text,
            )
            for item in build_demo_reviews()
        ]
        session.add_all(reviews)
        await session.commit()
        print(f"Seeded demo organization with {len(reviews)} pending reviews.")
        return 0


def main() -> int:
    # Surface clear failures and exit non-zero so CI/dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
