"""Incremental sync: persisted progress, the pass driver and the daemon loop."""

from __future__ import annotations

from .daemon import DEFAULT_INTERVAL_SECONDS, SyncDaemon
from .driver import SyncDriver, build_payload
from .errors import (
    PartitionNotFoundError,
    PartitionSyncError,
    SyncError,
    SyncStateWriteError,
)
from .models import EPOCH, PartitionReport, SyncReport, SyncState, SyncStatus
from .state import DEFAULT_STATE_RECORD_ID, STATE_RECORD_KIND, SyncStateStore

__all__ = [
    "DEFAULT_INTERVAL_SECONDS",
    "DEFAULT_STATE_RECORD_ID",
    "EPOCH",
    "PartitionNotFoundError",
    "PartitionReport",
    "PartitionSyncError",
    "STATE_RECORD_KIND",
    "SyncDaemon",
    "SyncDriver",
    "SyncError",
    "SyncReport",
    "SyncState",
    "SyncStateStore",
    "SyncStateWriteError",
    "SyncStatus",
    "build_payload",
]
