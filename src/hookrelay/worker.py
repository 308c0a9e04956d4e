"""Retry worker process.

Polls storage for due retry jobs and runs them until interrupted. Run as
many workers as you like against the same Qdrant; the claim protocol makes
sure each job runs on one of them.

Usage:
    ```bash
    hookrelay-worker            # poll until SIGINT/SIGTERM
    hookrelay-worker --once     # run due jobs once and exit
    ```
"""

from __future__ import annotations

import argparse
import asyncio
import signal

from hookrelay.config import Settings
from hookrelay.logging import configure_logging, get_logger
from hookrelay.service import WebhookService

logger = get_logger(__name__)


async def run_worker(settings: Settings, once: bool = False) -> int:
    """Run the retry loop until stopped.

    Args:
        settings: Configuration.
        once: Run a single poll and return instead of looping.

    Returns:
        Number of jobs processed when ``once`` is set, otherwise 0.
    """
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    async with WebhookService.create(settings) as service:
        logger.info("Retry worker starting", worker_id=service.scheduler.worker_id)
        if once:
            processed = await service.scheduler.run_due_jobs()
            logger.info("Retry worker finished single poll", processed=processed)
            return processed
        await service.scheduler.run_forever(stop_event)
    return 0


def main(argv: list[str] | None = None) -> None:
    """Console entry point for ``hookrelay-worker``."""
    parser = argparse.ArgumentParser(
        prog="hookrelay-worker",
        description="Run HookRelay retry jobs.",
    )
    parser.add_argument("--once", action="store_true", help="run due jobs once and exit")
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(level=settings.log_level, format=settings.log_format)
    asyncio.run(run_worker(settings, once=args.once))


if __name__ == "__main__":
    main()
