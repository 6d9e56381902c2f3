# scripts/run_scheduler.py
"""
Long-running worker: periodic batch matching plus outbox dispatch.

    python scripts/run_scheduler.py
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from buyermatch.jobs.scheduler import build_scheduler
from buyermatch.logging_config import configure_logging

log = logging.getLogger("run_scheduler")


async def main() -> None:
    configure_logging()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    sched = build_scheduler()
    sched.start()
    log.info("scheduler started: %s", ", ".join(j.id for j in sched.get_jobs()))
    try:
        await stop.wait()
    finally:
        sched.shutdown(wait=False)
        log.info("scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
