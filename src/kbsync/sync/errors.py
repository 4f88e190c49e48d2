"""Errors raised by the sync layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence


class SyncError(RuntimeError):
    """Base class for sync failures."""


@dataclass(slots=True)
class PartitionNotFoundError(SyncError):
    """Raised when a named partition is not offered by the content source."""

    name: str
    available: Sequence[str] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        SyncError.__init__(self, self.name)

    def __str__(self) -> str:
        known = ", ".join(self.available) or "none"
        return f"Partition {self.name!r} not found (available: {known})"


@dataclass(slots=True)
class PartitionSyncError(SyncError):
    """Raised when a partition's documents cannot be enumerated."""

    partition_id: str
    partition_name: str
    reason: str

    def __post_init__(self) -> None:
        SyncError.__init__(self, self.reason)

    def __str__(self) -> str:
        return (
            f"Failed to sync partition {self.partition_name!r} "
            f"({self.partition_id}): {self.reason}"
        )


class SyncStateWriteError(SyncError):
    """Raised when the sync state record cannot be persisted."""


__all__ = [
    "PartitionNotFoundError",
    "PartitionSyncError",
    "SyncError",
    "SyncStateWriteError",
]
