#!/usr/bin/env python
"""
Portal Sync Worker

Background process that drains the Portal sync queue: jobs left behind by
failed remote or local writes are re-attempted in enqueue order.

Run with:
    python worker.py

Or with environment:
    WORKER_POLL_INTERVAL=10 PORTAL_IDENTITY_EMAIL=ops@example.com python worker.py
"""

import sys
import time
import logging
import signal

from portal_sync.config import settings
from portal_sync.database import SessionLocal, create_tables
from portal_sync.services.portal_session import PortalSessionStore, SessionContext
from portal_sync.services.queue_drainer import QueueDrainer
from portal_sync.utils.logging_config import setup_logging

logger = logging.getLogger("worker")

RUNNING = True


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    global RUNNING
    logger.info("Received shutdown signal, finishing current drain...")
    RUNNING = False


def drain(db):
    """Run one drain pass; returns (processed, remaining)"""
    try:
        session = SessionContext.from_store(
            PortalSessionStore(db),
            identity_email=settings.portal_identity_email or None
        )
        result = QueueDrainer(db).drain(session)
        return result.processed, result.remaining

    except Exception as e:
        logger.error(f"Error draining sync queue: {e}")
        return 0, 0


def run_worker():
    """Main worker loop"""
    poll_interval = settings.worker_poll_interval

    logger.info("=" * 50)
    logger.info("Starting Portal Sync Worker")
    logger.info(f"Poll interval: {poll_interval}s")
    logger.info(f"Portal API: {settings.portal_api_base_url}")
    logger.info("=" * 50)

    cycle = 0

    while RUNNING:
        cycle += 1
        start_time = time.time()

        db = SessionLocal()
        try:
            processed, remaining = drain(db)

            if processed:
                duration = time.time() - start_time
                logger.info(
                    f"Cycle {cycle}: {processed} processed | {remaining} remaining | {duration:.2f}s"
                )

        except Exception as e:
            logger.error(f"Critical error in cycle {cycle}: {e}")

        finally:
            db.close()

        # Sleep in short steps so a shutdown signal is honoured promptly
        slept = 0
        while RUNNING and slept < poll_interval:
            time.sleep(1)
            slept += 1

    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    setup_logging(level=settings.log_level, json_format=settings.log_json, include_uvicorn=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    create_tables()

    try:
        run_worker()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        sys.exit(1)
