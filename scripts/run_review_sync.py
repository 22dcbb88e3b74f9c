from __future__ import annotations

import asyncio
import json
import sys

from reviewflow.core.config import get_settings
from reviewflow.core.errors import ReviewflowError
from reviewflow.core.logging import configure_logging
from reviewflow.services.sync.orchestrator import run_review_sync


async def _run() -> int:
    report = await run_review_sync(get_settings())
    print(json.dumps(report.as_dict(), indent=2))
    # Partial failures are reported, not fatal; the next run retries them.
    return 0


def main() -> int:
    configure_logging()
    try:
        return asyncio.run(_run())
    except ReviewflowError as exc:
        print(f"run_review_sync failed: {exc.code} {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
