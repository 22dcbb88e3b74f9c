from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from reviewflow.core.config import Settings
from reviewflow.core.errors import AuthError, ConfigError, ProviderError
from reviewflow.providers.reviews.google_business import (
    GoogleBusinessReviewsProvider,
    normalize_google_review,
    parse_google_timestamp,
)
from reviewflow.services.resilience import RetryPolicy


def _settings(**overrides) -> Settings:
    values = {
        "google_client_id": "client-id",
        "google_client_secret": "client-secret",
        "sync_page_size": 2,
        "sync_max_pages": 5,
    }
    values.update(overrides)
    return Settings(**values)


def _provider(handler, **overrides) -> GoogleBusinessReviewsProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleBusinessReviewsProvider(
        settings=_settings(**overrides),
        client=client,
        retry_policy=RetryPolicy(timeout_ms=1000, max_attempts=2, backoff_ms=1),
    )


def _raw(review_id: str, stars: str, update_time: str, comment: str | None = "Nice") -> dict:
    payload = {
        "name": f"accounts/1/locations/2/reviews/{review_id}",
        "reviewId": review_id,
        "starRating": stars,
        "reviewer": {"displayName": "Marie"},
        "createTime": update_time,
        "updateTime": update_time,
    }
    if comment is not None:
        payload["comment"] = comment
    return payload


def test_normalize_maps_star_words_and_defaults() -> None:
    review = normalize_google_review(
        {
            "name": "accounts/1/locations/2/reviews/abc",
            "starRating": "STAR_RATING_UNSPECIFIED",
            "createTime": "2026-03-01T10:00:00.123456789Z",
        }
    )
    assert review is not None
    assert review.external_id == "abc"
    assert review.rating == 0
    assert review.text == "(No comment)"
    assert review.author_name == "Anonymous"
    assert review.received_at == datetime(2026, 3, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert normalize_google_review({"starRating": "FIVE"}) is None


def test_parse_google_timestamp_rejects_garbage() -> None:
    assert parse_google_timestamp("not-a-date") is None
    assert parse_google_timestamp(None) is None


def test_validate_config_flags_missing_credentials() -> None:
    provider = GoogleBusinessReviewsProvider(settings=_settings(google_client_id=None, google_client_secret=""))
    with pytest.raises(ConfigError) as excinfo:
        provider.validate_config()
    assert excinfo.value.missing == {"google_client_id": True, "google_client_secret": True}


@pytest.mark.asyncio
async def test_list_reviews_follows_pages_until_known_review() -> None:
    pages = {
        None: {
            "reviews": [
                _raw("r3", "FIVE", "2026-03-03T10:00:00Z"),
                _raw("r2", "TWO", "2026-03-02T10:00:00Z", comment=""),
            ],
            "nextPageToken": "p2",
        },
        "p2": {
            "reviews": [
                _raw("r1", "ONE", "2026-02-01T10:00:00Z"),
                _raw("r0", "ONE", "2026-01-01T10:00:00Z"),
            ],
            "nextPageToken": "p3",
        },
    }
    seen_tokens: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer access"
        assert request.url.path == "/v4/accounts/1/locations/2/reviews"
        token = request.url.params.get("pageToken")
        seen_tokens.append(token)
        return httpx.Response(200, json=pages[token])

    provider = _provider(handler)
    since = datetime(2026, 2, 15, tzinfo=timezone.utc)
    reviews = await provider.list_reviews("accounts/1/locations/2", "access", since=since)

    assert [review.external_id for review in reviews] == ["r3", "r2"]
    assert reviews[1].rating == 2
    assert reviews[1].text == "(No comment)"
    # The second page reached an already-synced review; p3 is never requested.
    assert seen_tokens == [None, "p2"]


@pytest.mark.asyncio
async def test_list_reviews_maps_unauthorized_to_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "Request had invalid credentials"}})

    provider = _provider(handler)
    with pytest.raises(AuthError):
        await provider.list_reviews("accounts/1/locations/2", "expired")


@pytest.mark.asyncio
async def test_list_reviews_retries_server_errors_then_fails() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(503, json={"error": {"message": "backend unavailable"}})

    provider = _provider(handler)
    with pytest.raises(ProviderError) as excinfo:
        await provider.list_reviews("accounts/1/locations/2", "access")
    assert excinfo.value.status_code == 503
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_refresh_access_token_posts_refresh_grant() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "oauth2.googleapis.com"
        body = request.content.decode("utf-8")
        assert "grant_type=refresh_token" in body
        assert "refresh_token=stored-refresh" in body
        return httpx.Response(200, json={"access_token": "new-access", "expires_in": 1800})

    provider = _provider(handler)
    token = await provider.refresh_access_token("stored-refresh")
    assert token.token == "new-access"
    assert token.expires_at > datetime.now(timezone.utc)


@pytest.mark.asyncio
async def test_refresh_access_token_rejected_grant_is_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Token has been revoked."})

    provider = _provider(handler)
    with pytest.raises(AuthError, match="revoked"):
        await provider.refresh_access_token("revoked-refresh")
