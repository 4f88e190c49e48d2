"""Errors raised by content sources."""

from __future__ import annotations


class ContentSourceError(RuntimeError):
    """Raised when the upstream source cannot be enumerated or read."""

    def __init__(self, message: str, *, partition_id: str | None = None):
        super().__init__(message)
        self.partition_id = partition_id


__all__ = ["ContentSourceError"]
