from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
import logging
import time
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewflow.core.config import Settings, get_settings
from reviewflow.domain.outcomes import Failure, Success, UnitResult, isolate
from reviewflow.persistence.db import SessionLocal
from reviewflow.providers.reviews.factory import get_review_provider
from reviewflow.services.resilience import Bulkhead
from reviewflow.services.sync.adapter import ReviewSyncAdapter
from reviewflow.services.sync.targets import SyncTarget, list_sync_targets
from reviewflow.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_ERROR = "error"


@dataclass(frozen=True)
class SyncReportEntry:
    target_id: str
    outcome: str
    detail: Any
    error_code: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if self.error_code is None:
            payload.pop("error_code")
        return payload


@dataclass(frozen=True)
class SyncRunReport:
    target_count: int
    entries: list[SyncReportEntry] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for entry in self.entries if entry.outcome == OUTCOME_SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for entry in self.entries if entry.outcome == OUTCOME_ERROR)

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.target_count,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "report": [entry.as_dict() for entry in self.entries],
        }


def _entry_from_result(result: UnitResult[int]) -> SyncReportEntry:
    if isinstance(result, Success):
        return SyncReportEntry(target_id=result.key, outcome=OUTCOME_SUCCESS, detail=result.value)
    else:
        return SyncReportEntry(
            target_id=result.key,
            outcome=OUTCOME_ERROR,
            detail=result.message,
            error_code=result.code,
        )


class ReviewSyncOrchestrator:
    def __init__(
        self,
        adapter: ReviewSyncAdapter,
        *,
        session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
        max_concurrency: int = 4,
        target_timeout_s: float = 60.0,
    ) -> None:
        self._adapter = adapter
        self._session_factory = session_factory
        self._max_concurrency = max_concurrency
        self._target_timeout_s = target_timeout_s

    async def _sync_one(self, bulkhead: Bulkhead, target: SyncTarget) -> UnitResult[int]:
        async def _bounded() -> int:
            return await asyncio.wait_for(self._adapter.sync(target), timeout=self._target_timeout_s)

        result = await isolate(target.location_id, lambda: bulkhead.run(_bounded))
        if isinstance(result, Failure):
            increment_counter("review_sync_target_failures_total")
            logger.warning(
                "review_sync_target_failed location_id=%s code=%s message=%s",
                target.location_id,
                result.code,
                result.message,
            )
        return result

    async def run(self) -> SyncRunReport:
        """Sync every eligible location and report per target.

        One target's failure never affects another; enumeration failure raises.
        """
        start = time.monotonic()
        async with self._session_factory() as session:
            targets = await list_sync_targets(session)
        logger.info("review_sync_start targets=%s", len(targets))

        bulkhead = Bulkhead("review_sync", self._max_concurrency)
        results = await asyncio.gather(*(self._sync_one(bulkhead, target) for target in targets))
        report = SyncRunReport(
            target_count=len(targets),
            entries=[_entry_from_result(result) for result in results],
        )
        increment_counter("review_sync_runs_total")
        logger.info(
            "review_sync_done targets=%s succeeded=%s failed=%s duration_ms=%.0f",
            report.target_count,
            report.succeeded,
            report.failed,
            (time.monotonic() - start) * 1000.0,
        )
        return report


def build_review_sync_orchestrator(settings: Settings | None = None) -> ReviewSyncOrchestrator:
    # Raises ConfigError before any target is touched.
    settings = settings or get_settings()
    provider = get_review_provider(settings)
    return ReviewSyncOrchestrator(
        ReviewSyncAdapter(provider),
        max_concurrency=settings.sync_max_concurrency,
        target_timeout_s=settings.sync_target_timeout_s,
    )


async def run_review_sync(settings: Settings | None = None) -> SyncRunReport:
    return await build_review_sync_orchestrator(settings).run()
