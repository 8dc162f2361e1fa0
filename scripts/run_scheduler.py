"""Run the plan advancement scheduler as a standalone worker.

    python -m scripts.run_scheduler            # long-running cron worker
    python -m scripts.run_scheduler --once scan
    python -m scripts.run_scheduler --once sweep
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from core.config import get_settings
from core.logging_config import setup_logging
from core.services.orchestrator import build_orchestrator
from core.services.scheduler import build_scheduler

logger = logging.getLogger(__name__)


async def _run(once: str | None) -> int:
    settings = get_settings()
    orchestrator = build_orchestrator(settings)
    if once == "scan":
        summary = await orchestrator.scan_and_dispatch()
        await orchestrator.drain()
        print(f"candidates={summary.candidates} queued={summary.queued} skipped={summary.skipped}")
        return 0
    if once == "sweep":
        print(f"reclaimed={await orchestrator.sweep_expired_leases()}")
        return 0

    scheduler = build_scheduler(orchestrator, settings)
    scheduler.start()
    logger.info("Scheduler started with jobs: %s", ", ".join(job.id for job in scheduler.get_jobs()))
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)
        await orchestrator.drain()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Periodized plan advancement scheduler")
    parser.add_argument("--once", choices=["scan", "sweep"], help="run a single job and exit")
    args = parser.parse_args()

    setup_logging(get_settings().log_level)
    try:
        return asyncio.run(_run(args.once))
    except KeyboardInterrupt:
        logger.info("Scheduler interrupted")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
