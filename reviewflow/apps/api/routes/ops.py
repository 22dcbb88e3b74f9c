from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from reviewflow.apps.api.deps import get_db, require_cron_secret
from reviewflow.core.errors import StoreError
from reviewflow.persistence.repos import reviews as reviews_repo
from reviewflow.services.telemetry import snapshot


router = APIRouter(prefix="/ops", tags=["ops"], dependencies=[Depends(require_cron_secret)])


class MetricsResponse(BaseModel):
    counters: dict[str, int]
    external_calls: dict[str, dict[str, Any]]
    requests: dict[str, dict[str, Any]]
    reviews_by_status: dict[str, int]


@router.get("/metrics", response_model=MetricsResponse)
async def metrics(db: AsyncSession = Depends(get_db)) -> MetricsResponse:
    # Process-local counters plus the review backlog as the store sees it.
    try:
        by_status = await reviews_repo.count_by_status(db)
    except SQLAlchemyError as exc:
        raise StoreError("Unable to read review counts") from exc
    return MetricsResponse(**snapshot(), reviews_by_status=by_status)
