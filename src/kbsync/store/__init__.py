"""Vector store contract and adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import VectorStoreError
from .models import (
    DistanceMetric,
    PointId,
    StoredRecord,
    VectorRecord,
    VectorStore,
)

if TYPE_CHECKING:  # pragma: no cover - type checker imports only
    from .qdrant import QdrantVectorStore, build_qdrant_store

__all__ = [
    "DistanceMetric",
    "PointId",
    "QdrantVectorStore",
    "StoredRecord",
    "VectorRecord",
    "VectorStore",
    "VectorStoreError",
    "build_qdrant_store",
]


def __getattr__(name: str) -> object:
    if name in {"QdrantVectorStore", "build_qdrant_store"}:
        from . import qdrant

        return getattr(qdrant, name)

    message = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(message)
