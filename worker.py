#!/usr/bin/env python
"""
Calendar Sync Worker

Runs orchestrator ticks: every due connection is fetched and reconciled.

Run one tick (cron, every 30 minutes):
    python worker.py --once

Or loop in the foreground:
    SYNC_WORKER_INTERVAL=300 python worker.py
"""

import os
import sys
import time
import signal
import logging

from staysync.config import settings
from staysync.database import create_tables
from staysync.services.sync_orchestrator import SyncOrchestrator
from staysync.utils.logging_config import setup_logging

setup_logging(level=settings.log_level, json_format=settings.log_json, include_uvicorn=False)
logger = logging.getLogger("worker")

# Worker configuration
POLL_INTERVAL = int(os.getenv("SYNC_WORKER_INTERVAL", "300"))  # seconds
RUNNING = True


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    global RUNNING
    logger.info("Received shutdown signal, finishing current tick...")
    RUNNING = False


def run_once(orchestrator: SyncOrchestrator) -> int:
    """Run a single tick; returns the number of failed connections"""
    start_time = time.time()
    tick = orchestrator.run_tick()
    if tick.selected:
        logger.info(
            f"Tick: {tick.succeeded} ok / {tick.failed} failed of {tick.selected} | "
            f"{time.time() - start_time:.2f}s"
        )
    return tick.failed


def run_worker(orchestrator: SyncOrchestrator):
    """Main worker loop"""
    logger.info(f"Starting sync worker (interval: {POLL_INTERVAL}s, batch: {orchestrator.batch_size})")

    cycle = 0
    while RUNNING:
        cycle += 1
        try:
            run_once(orchestrator)
        except Exception as e:
            logger.error(f"Critical error in cycle {cycle}: {e}")

        if RUNNING:
            time.sleep(POLL_INTERVAL)

    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    create_tables()
    orchestrator = SyncOrchestrator()

    try:
        if "--once" in sys.argv:
            run_once(orchestrator)
        else:
            run_worker(orchestrator)
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        sys.exit(1)
