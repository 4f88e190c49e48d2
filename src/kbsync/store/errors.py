"""Errors raised by vector store adapters."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = ["VectorStoreError"]


@dataclass(slots=True)
class VectorStoreError(RuntimeError):
    """Raised when a vector store call fails for any reason."""

    message: str
    collection: str
    operation: str

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)

    def __str__(self) -> str:
        return f"{self.operation} on {self.collection!r} failed: {self.message}"
