from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewflow.core.config import Settings, get_settings
from reviewflow.core.errors import ConfigError, StoreError
from reviewflow.domain.outcomes import Failure, isolate
from reviewflow.persistence.db import SessionLocal
from reviewflow.persistence.repos import reviews as reviews_repo
from reviewflow.persistence.repos.reviews import ClaimedReview
from reviewflow.providers.llm.base import DraftingProvider, DraftRequest
from reviewflow.providers.llm.factory import get_drafting_provider
from reviewflow.services.plans import requires_manual_approval
from reviewflow.services.resilience import Bulkhead
from reviewflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

OUTCOME_DRAFT = "draft"
OUTCOME_ERROR = "error"
OUTCOME_STORE_ERROR = "store_error"

CLAIM_LOST = "Claim taken over by another run"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DraftOutcome:
    review_id: str
    outcome: str
    detail: str | None = None
    needs_manual_validation: bool | None = None

    def as_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


def build_draft_request(item: ClaimedReview, *, default_tone: str) -> DraftRequest:
    brand = item.brand or {}
    return DraftRequest(
        review_id=item.review_id,
        text=item.text,
        rating=item.rating,
        author_name=item.author_name,
        business_name=item.organization_name,
        industry=item.industry,
        tone=str(brand.get("tone") or default_tone),
        language_style=brand.get("language_style"),
        language=item.language,
        knowledge_base=brand.get("knowledge_base"),
    )


class DraftProcessor:
    def __init__(
        self,
        provider: DraftingProvider,
        *,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        max_concurrency: int = 3,
        item_timeout_s: float = 30.0,
        claim_ttl_s: int = 900,
        low_rating_threshold: int = 2,
        default_tone: str = "professional",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._provider = provider
        self._session_factory = session_factory
        self._max_concurrency = max_concurrency
        self._item_timeout_s = item_timeout_s
        self._claim_ttl_s = claim_ttl_s
        self._low_rating_threshold = low_rating_threshold
        self._default_tone = default_tone
        self._clock = clock

    async def claim(self, limit: int) -> list[ClaimedReview]:
        # One transaction: rows leave "pending" before any drafting starts.
        async with self._session_factory() as session:
            try:
                claimed = await reviews_repo.claim_reviews_for_drafting(
                    session, limit=limit, now=self._clock(), claim_ttl_s=self._claim_ttl_s
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("Unable to claim pending reviews") from exc
        return claimed

    async def _start(self, item: ClaimedReview, started: datetime) -> bool:
        async with self._session_factory() as session:
            held = await reviews_repo.renew_review_claim(
                session, item.review_id, claimed_at=item.claimed_at, now=started
            )
            await session.commit()
        return held

    async def _persist_draft(self, review_id: str, claimed_at: datetime, reply: dict[str, Any]) -> bool:
        async with self._session_factory() as session:
            updated = await reviews_repo.mark_review_drafted(
                session, review_id, claimed_at=claimed_at, ai_reply=reply
            )
            await session.commit()
        return updated

    async def _persist_failure(self, review_id: str, claimed_at: datetime, message: str) -> bool:
        async with self._session_factory() as session:
            updated = await reviews_repo.mark_review_failed(
                session, review_id, claimed_at=claimed_at, error_message=message
            )
            await session.commit()
        return updated
    async def _draft_one(self, item: ClaimedReview) -> DraftOutcome:
        # The claim clock restarts here, so a queued item cannot expire before it runs.
        started = self._clock()
        held = await isolate(item.review_id, lambda: self._start(item, started))
        if isinstance(held, Failure):
            return DraftOutcome(item.review_id, OUTCOME_STORE_ERROR, held.message)
        if not held.value:
            logger.info("review_draft_claim_lost review_id=%s", item.review_id)
            return DraftOutcome(item.review_id, OUTCOME_STORE_ERROR, CLAIM_LOST)

        request = build_draft_request(item, default_tone=self._default_tone)
        generated = await isolate(
            item.review_id,
            lambda: asyncio.wait_for(self._provider.generate(request), timeout=self._item_timeout_s),
        )

        if isinstance(generated, Failure):
            # Terminal for this item: it never returns to pending.
            increment_counter("review_drafts_failed_total")
            logger.warning(
                "review_draft_failed review_id=%s code=%s message=%s",
                item.review_id,
                generated.code,
                generated.message,
            )
            stored = await isolate(
                item.review_id, lambda: self._persist_failure(item.review_id, started, generated.message)
            )
            if isinstance(stored, Failure):
                return DraftOutcome(item.review_id, OUTCOME_STORE_ERROR, stored.message)
            if not stored.value:
                return DraftOutcome(item.review_id, OUTCOME_STORE_ERROR, CLAIM_LOST)
            return DraftOutcome(item.review_id, OUTCOME_ERROR, generated.message)

        result = generated.value
        needs_validation = requires_manual_approval(item.rating, self._low_rating_threshold)
        reply = {
            "text": result.text,
            "created_at": self._clock().isoformat(),
            "needs_manual_validation": needs_validation,
            "model_used": result.model,
        }
        stored = await isolate(item.review_id, lambda: self._persist_draft(item.review_id, started, reply))
        if isinstance(stored, Failure):
            logger.warning(
                "review_draft_store_failed review_id=%s message=%s", item.review_id, stored.message
            )
            return DraftOutcome(item.review_id, OUTCOME_STORE_ERROR, stored.message)
        if not stored.value:
            return DraftOutcome(item.review_id, OUTCOME_STORE_ERROR, CLAIM_LOST)
        increment_counter("review_drafts_created_total")
        return DraftOutcome(item.review_id, OUTCOME_DRAFT, needs_manual_validation=needs_validation)

    async def run(self, limit: int) -> list[DraftOutcome]:
        """Draft replies for up to ``limit`` pending reviews, oldest first.

        Returns exactly one outcome per claimed review.
        """
        start = time.monotonic()
        claimed = await self.claim(max(0, limit))
        if not claimed:
            logger.info("review_draft_batch_empty")
            return []

        bulkhead = Bulkhead("review_drafting", self._max_concurrency)
        outcomes = await asyncio.gather(
            *(bulkhead.run(lambda item=item: self._draft_one(item)) for item in claimed)
        )
        logger.info(
            "review_draft_batch_done claimed=%s drafted=%s failed=%s duration_ms=%.0f",
            len(claimed),
            sum(1 for outcome in outcomes if outcome.outcome == OUTCOME_DRAFT),
            sum(1 for outcome in outcomes if outcome.outcome != OUTCOME_DRAFT),
            (time.monotonic() - start) * 1000.0,
        )
        return list(outcomes)


def build_draft_processor(settings: Settings | None = None) -> DraftProcessor:
    settings = settings or get_settings()
    if settings.draft_claim_ttl_s <= settings.draft_item_timeout_s:
        # A live item must always finish before its claim can expire.
        raise ConfigError(
            "draft_claim_ttl_s must be greater than draft_item_timeout_s"
        )
    return DraftProcessor(
        get_drafting_provider(settings),
        max_concurrency=settings.draft_max_concurrency,
        item_timeout_s=settings.draft_item_timeout_s,
        claim_ttl_s=settings.draft_claim_ttl_s,
        low_rating_threshold=settings.low_rating_threshold,
        default_tone=settings.default_brand_tone,
    )


async def process_pending_reviews(limit: int | None = None, settings: Settings | None = None) -> list[DraftOutcome]:
    settings = settings or get_settings()
    batch = settings.draft_batch_size if limit is None else limit
    return await build_draft_processor(settings).run(batch)
