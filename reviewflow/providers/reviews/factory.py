from __future__ import annotations

from reviewflow.core.config import Settings, get_settings
from reviewflow.core.errors import ConfigError
from reviewflow.providers.reviews.base import ReviewSourceProvider
from reviewflow.providers.reviews.fake import FakeReviewSourceProvider
from reviewflow.providers.reviews.google_business import GoogleBusinessReviewsProvider


def get_review_provider(settings: Settings | None = None) -> ReviewSourceProvider:
    # Validates credentials up front so a misconfigured run fails before fan-out.
    settings = settings or get_settings()
    provider_name = (settings.sync_provider or "google").lower()
    if provider_name == "fake":
        return FakeReviewSourceProvider()
    if provider_name != "google":
        raise ConfigError(f"Unknown sync provider: {provider_name}", missing={"sync_provider": True})
    provider = GoogleBusinessReviewsProvider(settings=settings)
    provider.validate_config()
    return provider
