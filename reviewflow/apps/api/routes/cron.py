from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from reviewflow.apps.api.deps import require_cron_secret
from reviewflow.core.config import get_settings
from reviewflow.services.drafting.processor import build_draft_processor
from reviewflow.services.sync.orchestrator import build_review_sync_orchestrator


router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


class SyncRunResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    report: list[dict[str, Any]]


class DraftRunResponse(BaseModel):
    processed: int
    results: list[dict[str, Any]]


# Schedulers differ on verb (Vercel cron issues GET); accept both.
@router.api_route("/sync-reviews", methods=["GET", "POST"], response_model=SyncRunResponse)
async def sync_reviews() -> SyncRunResponse:
    # ConfigError and enumeration failures propagate to the app-level 500 handlers.
    orchestrator = build_review_sync_orchestrator(get_settings())
    report = await orchestrator.run()
    return SyncRunResponse(**report.as_dict())


@router.api_route("/process-reviews", methods=["GET", "POST"], response_model=DraftRunResponse)
async def process_reviews(limit: int | None = Query(default=None, ge=1)) -> DraftRunResponse:
    settings = get_settings()
    batch = settings.draft_batch_size if limit is None else min(limit, settings.draft_max_batch_size)
    processor = build_draft_processor(settings)
    outcomes = await processor.run(batch)
    return DraftRunResponse(
        processed=len(outcomes),
        results=[outcome.as_dict() for outcome in outcomes],
    )
