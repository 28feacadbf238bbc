#!/usr/bin/env python3
# backend/workers/reconciliation_worker.py

"""
Reservation Reconciliation Worker

Hosts the reconciliation sweeps (completion, unpaid expiry, orphaned
payment refunds, voucher expiry) on a fixed interval.

Usage:
    python -m workers.reconciliation_worker
"""

import asyncio
import logging
import signal
import sys

from core.logging_config import configure_logging
from modules.reservations.tasks.reconciliation_tasks import ReconciliationScheduler

logger = logging.getLogger(__name__)


async def run():
    scheduler = ReconciliationScheduler()

    # Catch up immediately instead of waiting a full interval
    results = await scheduler.run_once()
    logger.info(f"Initial reconciliation: {results}")

    scheduler.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms
            pass

    try:
        await stop_event.wait()
    finally:
        scheduler.stop()


def main():
    """Run the reconciliation worker"""
    configure_logging()
    logger.info("Starting reservation reconciliation worker...")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error(f"Worker error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
