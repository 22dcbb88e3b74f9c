from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class ExternalReview:
    # Provider review normalized to the local review shape.
    external_id: str
    rating: int
    text: str
    author_name: str
    received_at: datetime | None
    updated_at: datetime | None = None
    language: str | None = None


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: datetime
    refresh_token: str | None = None


class ReviewSourceProvider(Protocol):
    source: str

    async def refresh_access_token(self, refresh_token: str) -> AccessToken:
        ...

    async def list_reviews(
        self,
        external_reference: str,
        access_token: str,
        *,
        since: datetime | None = None,
    ) -> list[ExternalReview]:
        ...
