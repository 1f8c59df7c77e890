"""Sync: offline queue, remote store, sync engine and snapshots."""

from .engine import SyncEngine, SyncStatus
from .queue import OfflineQueue, QueueResult
from .remote import RemoteStore, SupabaseRemoteStore
from .snapshot import ImportReport, SnapshotExporter

__all__ = [
    "SyncEngine",
    "SyncStatus",
    "OfflineQueue",
    "QueueResult",
    "RemoteStore",
    "SupabaseRemoteStore",
    "SnapshotExporter",
    "ImportReport",
]
