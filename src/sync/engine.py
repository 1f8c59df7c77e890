"""Sync engine: connection state, background and manual sync, pull/merge from remote."""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog
from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from learning.models import OfflineOperation
from learning.store import LocalStore
from observability import metrics
from shared_types import ConnectionStatus, OperationType

from .queue import OfflineQueue
from .remote import RemoteStore

logger = structlog.get_logger()

UNREACHABLE_MESSAGE = "Unable to reach the sync service"
NOT_CONFIGURED_MESSAGE = "Sync is not configured"


@dataclass
class SyncStatus:
    """Point-in-time view of the sync engine, safe to hand to a UI."""

    status: ConnectionStatus
    last_sync_time: datetime | None
    error_message: str | None
    pending_operations: int
    failed_operations: int
    is_syncing: bool


@dataclass
class PullResult:
    patterns: int = 0
    preferences: int = 0
    skipped: int = 0


class SyncEngine:
    """Owns connectivity and replays the offline queue against the remote store.

    Background passes respect the queue's backoff and only advance
    `last_sync_time` when the queue ends up empty. A manual `sync_now` ignores
    backoff, pulls remote state and always stamps `last_sync_time` on success.
    Failures only ever surface through `status()`.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore | None = None,
        interval_seconds: float = 30.0,
        max_attempts: int = 5,
        backoff_base: float = 5.0,
        backoff_max: float = 300.0,
        on_error: Optional[Callable] = None,
    ):
        self.store = store
        self.remote = remote
        self.interval_seconds = interval_seconds
        self.on_error = on_error
        self.queue = OfflineQueue(
            store,
            remote,
            max_attempts=max_attempts,
            backoff_base=backoff_base,
            backoff_max=backoff_max,
        )
        self.scheduler = BackgroundScheduler()

        self._status = ConnectionStatus.UNKNOWN if remote else ConnectionStatus.OFFLINE
        self._last_sync_time: datetime | None = None
        self._error_message: str | None = None
        self._is_syncing = False
        self._state_lock = threading.Lock()
        self._sync_lock = threading.Lock()
        # Remote row id -> last change time already merged locally
        self._pulled: dict[str, datetime] = {}

    # State

    def status(self) -> SyncStatus:
        with self._state_lock:
            return SyncStatus(
                status=self._status,
                last_sync_time=self._last_sync_time,
                error_message=self._error_message,
                pending_operations=self.queue.pending_count(),
                failed_operations=self.queue.dropped_total,
                is_syncing=self._is_syncing,
            )

    @property
    def is_connected(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED

    def _set_status(self, status: ConnectionStatus, error: str | None = None) -> None:
        with self._state_lock:
            previous = self._status
            self._status = status
            self._error_message = error
        if previous != status:
            logger.info("sync.status_changed", previous=previous, status=status, error=error)

    def _stamp_sync(self) -> None:
        with self._state_lock:
            self._last_sync_time = datetime.now()

    # Connectivity

    def connect(self) -> ConnectionStatus:
        """Probe the remote store and settle on connected/disconnected/error."""
        if self.remote is None:
            self._set_status(ConnectionStatus.OFFLINE, NOT_CONFIGURED_MESSAGE)
            return self._status

        self._set_status(ConnectionStatus.CONNECTING)
        try:
            reachable = self.remote.probe()
        except Exception as e:
            self._set_status(ConnectionStatus.ERROR, str(e))
            return self._status

        if reachable:
            self._set_status(ConnectionStatus.CONNECTED)
        else:
            self._set_status(ConnectionStatus.DISCONNECTED, UNREACHABLE_MESSAGE)
        return self._status

    def set_credentials(self, remote: RemoteStore | None) -> ConnectionStatus:
        """Swap credentials/backend. None drops to offline."""
        if self.remote is not None and self.remote is not remote:
            self.remote.close()
        self.remote = remote
        self.queue.remote = remote
        self._pulled.clear()
        return self.connect()

    # Scheduling

    def start(self) -> None:
        """Probe once, then run background passes on an interval."""
        self.connect()
        self.scheduler.add_job(
            self.background_sync,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id="background_sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_listener(self._default_error_handler, EVENT_JOB_ERROR)
        self.scheduler.start()
        logger.info("sync.started", interval_seconds=self.interval_seconds, status=self._status)

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        if self.remote is not None:
            self.remote.close()
        logger.info("sync.stopped")

    def _default_error_handler(self, event):
        """Log APScheduler job failures; passes never raise on their own."""
        logger.error(
            "sync.job_error",
            job_id=event.job_id,
            exception=str(event.exception),
            traceback=event.traceback,
        )
        metrics.counter("sync.job_errors")
        if self.on_error:
            try:
                self.on_error(event)
            except Exception as e:
                logger.error("sync.on_error_failed", error=str(e))

    # Producers

    def submit(self, operation: OfflineOperation) -> OfflineOperation:
        """Queue an operation durably; push it right away when connected."""
        queued = self.queue.enqueue(operation)
        if self.is_connected and self.scheduler.running:
            try:
                self.scheduler.add_job(self._push_now, id="push_now", replace_existing=True)
            except Exception as e:
                logger.warning("sync.push_schedule_failed", error=str(e))
        return queued

    def _push_now(self) -> None:
        if not self._sync_lock.acquire(blocking=False):
            return
        try:
            result = self.queue.process(respect_backoff=True)
            if result.drained:
                self._stamp_sync()
        except Exception as e:
            logger.warning("sync.push_failed", error=str(e))
        finally:
            self._sync_lock.release()

    # Passes

    def background_sync(self) -> None:
        """Periodic pass. Reprobes when not connected, then drains the queue."""
        if self.remote is None:
            return
        if not self._sync_lock.acquire(blocking=False):
            logger.debug("sync.background_skipped", reason="sync in progress")
            return
        try:
            if not self.is_connected and self.connect() != ConnectionStatus.CONNECTED:
                return
            with metrics.timer("sync.background"):
                result = self.queue.process(respect_backoff=True)
            if result.drained:
                self._stamp_sync()
        except Exception as e:
            logger.warning("sync.background_failed", error=str(e))
            metrics.counter("sync.background_failed")
        finally:
            self._sync_lock.release()

    def sync_now(self) -> SyncStatus:
        """User-initiated sync. Concurrent calls collapse into the one running."""
        if not self._sync_lock.acquire(blocking=False):
            logger.info("sync.manual_collapsed")
            return self.status()

        with self._state_lock:
            self._is_syncing = True
        try:
            if self.connect() != ConnectionStatus.CONNECTED:
                return self.status()
            with metrics.timer("sync.manual"):
                result = self.queue.process(respect_backoff=False)
                pulled = self.pull()
            self._stamp_sync()
            metrics.counter("sync.manual_completed")
            logger.info(
                "sync.manual_completed",
                pushed=result.succeeded,
                pending=result.still_pending,
                dropped=result.dropped,
                pulled_patterns=pulled.patterns,
                pulled_preferences=pulled.preferences,
                pull_skipped=pulled.skipped,
            )
        except Exception as e:
            logger.warning("sync.manual_failed", error=str(e))
            metrics.counter("sync.manual_failed")
            self._set_status(ConnectionStatus.ERROR, str(e))
        finally:
            with self._state_lock:
                self._is_syncing = False
            self._sync_lock.release()
        return self.status()

    def pull(self) -> PullResult:
        """Merge remote patterns/preferences into the Local Store.

        Rows whose change time was already merged are skipped. Nothing is
        pulled while a remote wipe is queued, and patterns with a queued
        delete are left out, so a failed remote delete never restores them.
        """
        result = PullResult()
        pending = self.store.peek_queue()
        if any(op.op_type == OperationType.DELETE_ALL for op in pending):
            logger.info("sync.pull_skipped", reason="remote wipe pending")
            return result
        deleted = {
            (op.payload.get("original_phrase"), op.payload.get("corrected_phrase"))
            for op in pending
            if op.op_type == OperationType.DELETE_PATTERN
        }

        for record in self.remote.fetch_patterns():
            if (record.original_phrase, record.corrected_phrase) in deleted:
                result.skipped += 1
                continue
            key = f"pattern:{record.id}"
            if self._pulled.get(key) == record.last_seen:
                continue
            self.store.merge_pattern(record.to_domain())
            self._pulled[key] = record.last_seen
            result.patterns += 1

        for record in self.remote.fetch_preferences():
            key = f"preference:{record.id}"
            if self._pulled.get(key) == record.last_updated:
                continue
            self.store.merge_preference(record.to_domain())
            self._pulled[key] = record.last_updated
            result.preferences += 1
        return result

    def reset_sync(self) -> SyncStatus:
        """Forget sync bookkeeping and queued work, then sync from scratch."""
        self._pulled.clear()
        self.queue.clear()
        self.queue.dropped_total = 0
        with self._state_lock:
            self._last_sync_time = None
            self._error_message = None
        logger.info("sync.reset")
        return self.sync_now()
