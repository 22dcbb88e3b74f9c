from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
import logging
import re
import time
from typing import Any, AsyncIterator

import httpx

from reviewflow.core.config import Settings, get_settings
from reviewflow.core.errors import AuthError, ProviderError, require_settings
from reviewflow.domain.models import PLATFORM_GOOGLE
from reviewflow.providers.reviews.base import AccessToken, ExternalReview
from reviewflow.services.resilience import RetryPolicy, default_retry_policy, retry_async
from reviewflow.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_STAR_RATINGS = {
    "STAR_RATING_UNSPECIFIED": 0,
    "ONE": 1,
    "TWO": 2,
    "THREE": 3,
    "FOUR": 4,
    "FIVE": 5,
}
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")
_NO_COMMENT = "(No comment)"
_ANONYMOUS = "Anonymous"


def parse_google_timestamp(value: Any) -> datetime | None:
    # RFC 3339 with up to nanosecond precision; Python keeps microseconds.
    if not isinstance(value, str) or not value:
        return None
    cleaned = _FRACTION_RE.sub(r".\1", value.strip())
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_google_review(raw: dict[str, Any]) -> ExternalReview | None:
    # Returns None for entries without a usable identifier.
    review_id = raw.get("reviewId")
    if not review_id:
        name = raw.get("name") or ""
        review_id = name.rsplit("/", 1)[-1] if name else None
    if not review_id:
        return None
    reviewer = raw.get("reviewer") or {}
    comment = (raw.get("comment") or "").strip()
    return ExternalReview(
        external_id=str(review_id),
        rating=_STAR_RATINGS.get(str(raw.get("starRating") or ""), 0),
        text=comment or _NO_COMMENT,
        author_name=(reviewer.get("displayName") or "").strip() or _ANONYMOUS,
        received_at=parse_google_timestamp(raw.get("createTime")),
        updated_at=parse_google_timestamp(raw.get("updateTime") or raw.get("createTime")),
    )


def _retryable(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, TimeoutError)):
        return True
    status = getattr(exc, "status_code", None)
    return isinstance(exc, ProviderError) and isinstance(status, int) and status >= 500


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("status") or response.status_code)
        if isinstance(error, str):
            return str(body.get("error_description") or error)
    return str(response.status_code)


class GoogleBusinessReviewsProvider:
    source = PLATFORM_GOOGLE

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        # Injected clients (tests) are reused; otherwise one client per call.
        self._client = client
        self._policy = retry_policy or default_retry_policy()

    def validate_config(self) -> None:
        require_settings(
            google_client_id=self._settings.google_client_id,
            google_client_secret=self._settings.google_client_secret,
        )

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        timeout = self._settings.ext_call_timeout_ms / 1000.0
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    async def _send(self, integration: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        start = time.monotonic()

        async def _call() -> httpx.Response:
            async with self._http() as client:
                response = await client.request(method, url, **kwargs)
            if response.status_code >= 500:
                raise ProviderError(
                    f"Google API error {response.status_code}: {_error_detail(response)}",
                    status_code=response.status_code,
                )
            return response

        try:
            response = await retry_async(_call, policy=self._policy, retryable=_retryable)
        except ProviderError:
            record_external_call(
                integration=integration, latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            raise
        except (httpx.HTTPError, TimeoutError) as exc:
            record_external_call(
                integration=integration, latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            raise ProviderError(f"Google API unreachable: {exc.__class__.__name__}") from exc
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=response.status_code < 400,
        )
        return response

    async def refresh_access_token(self, refresh_token: str) -> AccessToken:
        self.validate_config()
        response = await self._send(
            "google.oauth",
            "POST",
            self._settings.google_token_url,
            data={
                "client_id": self._settings.google_client_id,
                "client_secret": self._settings.google_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if response.status_code in (400, 401, 403):
            raise AuthError(f"Google token refresh failed: {_error_detail(response)}")
        if response.status_code >= 400:
            raise ProviderError(
                f"Google token refresh failed with status {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("Google token refresh returned invalid JSON") from exc
        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise ProviderError("Google token refresh returned no access_token")
        expires_in = int(payload.get("expires_in") or 3600)
        return AccessToken(
            token=access_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            refresh_token=payload.get("refresh_token"),
        )

    async def list_reviews(
        self,
        external_reference: str,
        access_token: str,
        *,
        since: datetime | None = None,
    ) -> list[ExternalReview]:
        """Fetch reviews newest first, stopping at the first one not newer than ``since``."""
        url = f"{self._settings.google_reviews_base_url.rstrip('/')}/{external_reference.strip('/')}/reviews"
        headers = {"Authorization": f"Bearer {access_token}"}
        collected: list[ExternalReview] = []
        page_token: str | None = None
        for _page in range(max(1, self._settings.sync_max_pages)):
            params: dict[str, Any] = {"pageSize": self._settings.sync_page_size, "orderBy": "updateTime desc"}
            if page_token:
                params["pageToken"] = page_token
            response = await self._send("google.reviews", "GET", url, headers=headers, params=params)
            if response.status_code in (401, 403):
                raise AuthError(f"Google rejected credentials for {external_reference}: {_error_detail(response)}")
            if response.status_code >= 400:
                raise ProviderError(
                    f"Google API error {response.status_code}: {_error_detail(response)}",
                    status_code=response.status_code,
                )
            try:
                payload = response.json()
            except ValueError as exc:
                raise ProviderError("Google API returned invalid JSON") from exc
            if not isinstance(payload, dict) or not isinstance(payload.get("reviews", []), list):
                raise ProviderError("Google API returned an unexpected payload")

            reached_known = False
            for raw in payload.get("reviews", []):
                if not isinstance(raw, dict):
                    continue
                review = normalize_google_review(raw)
                if review is None:
                    logger.warning("google_review_skipped reason=missing_id reference=%s", external_reference)
                    continue
                changed_at = review.updated_at or review.received_at
                if since is not None and changed_at is not None and changed_at <= since:
                    reached_known = True
                    break
                collected.append(review)
            page_token = payload.get("nextPageToken")
            if reached_known or not page_token:
                break
        return collected
