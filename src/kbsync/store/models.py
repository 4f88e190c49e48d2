"""Vector store records and the collaborator contract used by sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

PointId = int | str


class DistanceMetric(StrEnum):
    """Similarity metrics accepted when creating a collection."""

    COSINE = "Cosine"
    EUCLID = "Euclid"
    DOT = "Dot"
    MANHATTAN = "Manhattan"

    @classmethod
    def parse(cls, raw: str) -> "DistanceMetric":
        """Return the metric matching ``raw`` case-insensitively.

        Example:
            >>> DistanceMetric.parse("cosine")
            <DistanceMetric.COSINE: 'Cosine'>
        """

        normalized = raw.strip().lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        choices = ", ".join(member.value for member in cls)
        raise ValueError(f"Unknown distance metric {raw!r} (use {choices}).")


@dataclass(frozen=True, slots=True)
class VectorRecord:
    """Point written to the vector store."""

    id: PointId
    vector: tuple[float, ...]
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class StoredRecord:
    """Point read back from the vector store (vector omitted)."""

    id: str
    payload: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class VectorStore(Protocol):
    """Boundary contract for the hosted vector database."""

    def exists(self, collection: str) -> bool:
        """Return ``True`` when ``collection`` is present."""

    def create_collection(
        self,
        collection: str,
        *,
        vector_size: int,
        distance: DistanceMetric,
    ) -> None:
        """Create ``collection`` with the given vector geometry."""

    def upsert(
        self,
        collection: str,
        records: Sequence[VectorRecord],
    ) -> None:
        """Insert or replace ``records`` keyed by id."""

    def retrieve(
        self,
        collection: str,
        ids: Sequence[PointId],
    ) -> list[StoredRecord]:
        """Return stored records for ``ids``; unknown ids are omitted."""

    def delete(self, collection: str, ids: Sequence[PointId]) -> None:
        """Remove the points with ``ids``."""

    def count(self, collection: str) -> int:
        """Return the number of points stored in ``collection``."""


__all__ = [
    "DistanceMetric",
    "PointId",
    "StoredRecord",
    "VectorRecord",
    "VectorStore",
]
