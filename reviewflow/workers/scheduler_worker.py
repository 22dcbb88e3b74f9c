from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from reviewflow.core.config import get_settings
from reviewflow.core.logging import configure_logging
from reviewflow.services.drafting.processor import process_pending_reviews
from reviewflow.services.sync.orchestrator import run_review_sync


logger = logging.getLogger(__name__)


def _every(minutes: int) -> set[int]:
    # arq matches on wall-clock minutes; intervals that don't divide 60 reset each hour.
    step = max(1, min(60, int(minutes)))
    return set(range(0, 60, step))


async def sync_reviews_job(ctx) -> dict:
    report = await run_review_sync(get_settings())
    logger.info(
        "scheduled_review_sync job_id=%s processed=%s failed=%s",
        ctx.get("job_id"),
        report.target_count,
        report.failed,
    )
    return report.as_dict()


async def process_reviews_job(ctx) -> dict:
    outcomes = await process_pending_reviews(settings=get_settings())
    logger.info("scheduled_review_drafting job_id=%s processed=%s", ctx.get("job_id"), len(outcomes))
    return {"processed": len(outcomes), "results": [outcome.as_dict() for outcome in outcomes]}


async def _startup(ctx) -> None:
    configure_logging()


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.scheduler_queue_name
    # Failed runs are not retried; the next tick picks up whatever is left.
    max_tries = 1
    functions = [sync_reviews_job, process_reviews_job]
    cron_jobs = [
        cron(sync_reviews_job, minute=_every(settings.sync_cron_minutes), unique=True, run_at_startup=False),
        cron(process_reviews_job, minute=_every(settings.draft_cron_minutes), unique=True, run_at_startup=False),
    ]
    on_startup = _startup
