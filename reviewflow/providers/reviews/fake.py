from __future__ import annotations

from datetime import datetime, timedelta, timezone

from reviewflow.providers.reviews.base import AccessToken, ExternalReview


class FakeReviewSourceProvider:
    source = "google"

    def __init__(
        self,
        reviews: dict[str, list[ExternalReview]] | None = None,
        *,
        failures: dict[str, Exception] | None = None,
        refresh_failure: Exception | None = None,
    ) -> None:
        # Canned reviews per external reference; failures raise for the matching reference.
        self._reviews = reviews or {}
        self._failures = failures or {}
        self._refresh_failure = refresh_failure
        self.calls: list[str] = []
        self.refreshes = 0

    def validate_config(self) -> None:
        return None

    async def refresh_access_token(self, refresh_token: str) -> AccessToken:
        self.refreshes += 1
        if self._refresh_failure is not None:
            raise self._refresh_failure
        return AccessToken(
            token=f"fake-access-{refresh_token}",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    async def list_reviews(
        self,
        external_reference: str,
        access_token: str,
        *,
        since: datetime | None = None,
    ) -> list[ExternalReview]:
        _ = access_token
        self.calls.append(external_reference)
        failure = self._failures.get(external_reference)
        if failure is not None:
            raise failure
        reviews = self._reviews.get(external_reference, [])
        if since is None:
            return list(reviews)
        return [
            review
            for review in reviews
            if (review.updated_at or review.received_at) is None
            or (review.updated_at or review.received_at) > since
        ]
