"""Offline operation queue: durable FIFO of remote writes with bounded retries."""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from learning.models import OfflineOperation
from learning.store import LocalStore
from observability import metrics
from shared_types import OperationType

from .remote import RemoteStore

logger = structlog.get_logger()

MAX_ATTEMPTS = 5


@dataclass
class QueueResult:
    """Outcome of one pass over the queue."""

    succeeded: int = 0
    failed: int = 0
    dropped: int = 0
    deferred: int = 0
    still_pending: int = 0

    @property
    def drained(self) -> bool:
        return self.still_pending == 0


class OfflineQueue:
    """Replays queued operations against the remote store, oldest first.

    An operation that fails `max_attempts` times is dropped and counted.
    Passes are serialized; a second caller waits for the first to finish.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_base: float = 5.0,
        backoff_max: float = 300.0,
    ):
        self.store = store
        self.remote = remote
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.dropped_total = 0
        self._lock = threading.Lock()

    def enqueue(self, operation: OfflineOperation) -> OfflineOperation:
        queued = self.store.enqueue_offline_operation(operation)
        metrics.counter("queue.enqueued")
        return queued

    def pending_count(self) -> int:
        return self.store.queue.count()

    def clear(self) -> int:
        with self._lock:
            removed = self.store.queue.clear()
        logger.info("queue.cleared", removed=removed)
        return removed

    def backoff_delay(self, attempt_count: int) -> timedelta:
        if attempt_count <= 0:
            return timedelta(0)
        seconds = min(self.backoff_max, self.backoff_base * 2 ** (attempt_count - 1))
        return timedelta(seconds=seconds)

    def is_due(self, operation: OfflineOperation, now: datetime | None = None) -> bool:
        if operation.last_attempt is None or operation.attempt_count == 0:
            return True
        now = now or datetime.now()
        return now >= operation.last_attempt + self.backoff_delay(operation.attempt_count)

    def process(self, respect_backoff: bool = True, now: datetime | None = None) -> QueueResult:
        """Run one pass. With respect_backoff=False every operation is tried now."""
        result = QueueResult()
        if self.remote is None:
            result.still_pending = self.pending_count()
            return result

        with self._lock:
            for operation in self.store.peek_queue():
                if respect_backoff and not self.is_due(operation, now):
                    result.deferred += 1
                    continue
                if self._replay(operation):
                    result.succeeded += 1
                elif self._fail(operation, now):
                    result.dropped += 1
                else:
                    result.failed += 1
            result.still_pending = self.pending_count()

        if result.succeeded or result.failed or result.dropped:
            logger.info(
                "queue.processed",
                succeeded=result.succeeded,
                failed=result.failed,
                dropped=result.dropped,
                deferred=result.deferred,
                pending=result.still_pending,
            )
        return result

    def _replay(self, operation: OfflineOperation) -> bool:
        try:
            with metrics.timer("queue.replay"):
                self.remote.execute(operation)
        except Exception as e:
            logger.warning(
                "queue.replay_failed",
                op_id=operation.id,
                op_type=operation.op_type,
                attempt=operation.attempt_count + 1,
                error=str(e),
            )
            return False

        self.store.dequeue_offline_operation(operation.id)
        if operation.op_type == OperationType.SAVE_SESSION:
            session_id = operation.payload.get("session", {}).get("id")
            if session_id:
                self.store.sessions.mark_synced(session_id)
        metrics.counter("queue.replayed")
        return True

    def _fail(self, operation: OfflineOperation, now: datetime | None) -> bool:
        """Record a failed attempt. Returns True when the operation was dropped."""
        attempts = self.store.queue.record_failure(operation.id, now)
        if attempts < self.max_attempts:
            return False

        self.store.dequeue_offline_operation(operation.id)
        self.dropped_total += 1
        metrics.counter("queue.dropped")
        logger.warning(
            "queue.dropped",
            op_id=operation.id,
            op_type=operation.op_type,
            attempts=attempts,
        )
        return True
