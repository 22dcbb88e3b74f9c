from __future__ import annotations

import argparse
import asyncio
import sys

from reviewflow.core.config import get_settings
from reviewflow.core.errors import ReviewflowError
from reviewflow.core.logging import configure_logging
from reviewflow.services.drafting.processor import process_pending_reviews


async def _run(limit: int | None) -> int:
    outcomes = await process_pending_reviews(limit, get_settings())
    for outcome in outcomes:
        print(f"{outcome.review_id} {outcome.outcome} {outcome.detail or ''}".rstrip())
    print(f"processed={len(outcomes)}")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Draft AI replies for pending reviews")
    parser.add_argument("--limit", type=int, default=None, help="Batch size (defaults to DRAFT_BATCH_SIZE)")
    args = parser.parse_args()
    configure_logging()
    try:
        return asyncio.run(_run(args.limit))
    except ReviewflowError as exc:
        print(f"process_pending_reviews failed: {exc.code} {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
