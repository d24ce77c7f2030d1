"""
Sync queue drainer.

Runs one pass over the persisted queue, replaying each job through the same
handler the original operation used. Jobs that fail stay in place with one more
attempt recorded; successful jobs are dropped.

Should be run periodically (worker.py or the API background loop) or on demand
via POST /api/portal-sync/drain.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..utils.logging_config import get_logger
from .dual_write import DualWriteOrchestrator
from .portal_session import SessionContext
from .sync_queue import SyncQueueStore, mark_attempt

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

# Non-reentrant: a drain never runs inside another drain in this process
_drain_lock = threading.Lock()


@dataclass
class DrainResult:
    processed: int = 0
    remaining: int = 0


class QueueDrainer:

    def __init__(
        self,
        db: Session,
        orchestrator: Optional[DualWriteOrchestrator] = None,
        queue: Optional[SyncQueueStore] = None
    ):
        self.db = db
        self.queue = queue or SyncQueueStore(db)
        self.orchestrator = orchestrator or DualWriteOrchestrator(db, queue=self.queue)

    def drain(self, session: SessionContext, identity_email: Optional[str] = None) -> DrainResult:
        """
        Process every job present when the pass starts, in enqueue order.

        Returns: DrainResult(processed, remaining)
        """
        with _drain_lock:
            return self._drain(session, identity_email)

    def _drain(self, session: SessionContext, identity_email: Optional[str]) -> DrainResult:
        jobs = self.queue.all()
        if not jobs:
            return DrainResult()

        start_time = time.time()

        # Local-only jobs can still run without a Portal session
        auth = self.orchestrator.auth.ensure_auth(session, identity_email)
        if auth.error:
            logger.warning(f"Drain continuing without Portal session: {auth.error.message}")

        remaining = []
        processed = 0
        for job in jobs:
            processed += 1
            try:
                result = self.orchestrator.replay(session, job)
            except Exception as e:
                logger.exception(f"Error replaying sync job {job.id}")
                self.db.rollback()
                remaining.append(mark_attempt(job, str(e) or e.__class__.__name__))
                continue

            if result.accepted:
                continue

            message = result.error.message if result.error else "Replay failed"
            failed = mark_attempt(job, message)
            structured_logger.job_failed(failed.id, failed.type, failed.attempts, message)
            remaining.append(failed)

        self.queue.replace(remaining, drained_ids=[job.id for job in jobs])

        duration_ms = int((time.time() - start_time) * 1000)
        structured_logger.drain_finished(processed, len(remaining), duration_ms)
        return DrainResult(processed=processed, remaining=len(remaining))
