"""Sync bookkeeping models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import cached_property
from typing import Any, Mapping

from pydantic import BaseModel, Field, field_validator

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Payload keys of the sentinel record. The camelCase spelling matches
# collections written by earlier releases.
_PAYLOAD_ALIASES: Mapping[str, str] = {
    "last_sync_time": "lastSyncTime",
    "processed_pages": "processedPages",
    "total_documents": "totalDocuments",
    "total_embeddings": "totalEmbeddings",
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SyncState(BaseModel):
    """Progress of incremental synchronization for one collection.

    ``processed_pages`` is kept as an ordered list for persistence, never
    holds duplicates, and is indexed in a set for membership checks.
    """

    last_sync_time: datetime = Field(default=EPOCH, alias="lastSyncTime")
    processed_pages: list[str] = Field(
        default_factory=list,
        alias="processedPages",
    )
    total_documents: int = Field(default=0, ge=0, alias="totalDocuments")
    total_embeddings: int = Field(default=0, ge=0, alias="totalEmbeddings")

    model_config = {
        "populate_by_name": True,
        "frozen": True,
    }

    @field_validator("last_sync_time")
    @classmethod
    def _normalize_time(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("processed_pages")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(str(item) for item in value))

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(cls.model_fields)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SyncState":
        """Decode a sentinel payload; missing or null fields use defaults.

        Example:
            >>> SyncState.from_payload({"processedPages": ["a", "a"]}).processed_pages
            ['a']
        """

        data: dict[str, Any] = {}
        for name, alias in _PAYLOAD_ALIASES.items():
            value = payload.get(alias, payload.get(name))
            if value is not None:
                data[name] = value
        return cls.model_validate(data)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @cached_property
    def processed_index(self) -> frozenset[str]:
        return frozenset(self.processed_pages)

    def contains(self, page_id: str) -> bool:
        return page_id in self.processed_index

    def merged(self, **changes: Any) -> "SyncState":
        """Return a validated copy with ``changes`` applied over this state.

        Raises:
            ValueError: If a change names an unknown field.
        """

        unknown = sorted(set(changes) - self.field_names())
        if unknown:
            raise ValueError(f"Unknown sync state fields: {', '.join(unknown)}")
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)

    def with_page(self, page_id: str) -> "SyncState":
        return self.merged(processed_pages=[*self.processed_pages, page_id])


@dataclass(frozen=True, slots=True)
class SyncStatus:
    """Read-only projection of :class:`SyncState` for reporting."""

    last_sync_time: datetime
    processed_count: int
    total_documents: int
    total_embeddings: int

    @classmethod
    def from_state(cls, state: SyncState) -> "SyncStatus":
        return cls(
            last_sync_time=state.last_sync_time,
            processed_count=len(state.processed_pages),
            total_documents=state.total_documents,
            total_embeddings=state.total_embeddings,
        )

    @property
    def never_synced(self) -> bool:
        return self.last_sync_time == EPOCH

    def as_dict(self) -> dict[str, Any]:
        return {
            "last_sync_time": self.last_sync_time.isoformat(),
            "processed_count": self.processed_count,
            "total_documents": self.total_documents,
            "total_embeddings": self.total_embeddings,
        }


@dataclass(slots=True)
class PartitionReport:
    """Outcome of syncing one partition."""

    partition_id: str
    partition_name: str
    listed: int = 0
    skipped: int = 0
    new_documents: int = 0
    embedded: int = 0
    failed_ids: list[str] = field(default_factory=list)
    pending_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "partition_id": self.partition_id,
            "partition_name": self.partition_name,
            "listed": self.listed,
            "skipped": self.skipped,
            "new_documents": self.new_documents,
            "embedded": self.embedded,
            "failed_ids": list(self.failed_ids),
            "pending_ids": list(self.pending_ids),
        }


@dataclass(slots=True)
class SyncReport:
    """Outcome of one sync pass across one or more partitions."""

    started_at: datetime
    dry_run: bool = False
    finished_at: datetime | None = None
    partitions: list[PartitionReport] = field(default_factory=list)

    @property
    def new_documents(self) -> int:
        return sum(item.new_documents for item in self.partitions)

    @property
    def new_embeddings(self) -> int:
        return sum(item.embedded for item in self.partitions)

    @property
    def failed_ids(self) -> list[str]:
        return [doc_id for item in self.partitions for doc_id in item.failed_ids]

    def summary(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": (
                self.finished_at.isoformat() if self.finished_at else None
            ),
            "dry_run": self.dry_run,
            "partitions": len(self.partitions),
            "new_documents": self.new_documents,
            "new_embeddings": self.new_embeddings,
            "failed": len(self.failed_ids),
        }

    def as_dict(self) -> dict[str, Any]:
        payload = self.summary()
        payload["partitions"] = [item.as_dict() for item in self.partitions]
        return payload


__all__ = [
    "EPOCH",
    "PartitionReport",
    "SyncReport",
    "SyncState",
    "SyncStatus",
]
