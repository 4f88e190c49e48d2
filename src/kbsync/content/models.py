"""Documents and partitions produced by content sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True, slots=True)
class Partition:
    """One logical grouping of documents synced as a unit."""

    id: str
    name: str


@dataclass(frozen=True, slots=True)
class Document:
    """Read-only snapshot of a source document for one sync pass.

    ``content`` is ``None`` until the body has been fetched with
    :meth:`ContentSource.load_content`.
    """

    id: str
    content: str | None = None
    last_modified: datetime | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    source: str = "notion"

    @property
    def title(self) -> str:
        value = self.metadata.get("title")
        return str(value) if value else ""

    @property
    def loaded(self) -> bool:
        return self.content is not None


@runtime_checkable
class ContentSource(Protocol):
    """Boundary contract for the upstream document source.

    Pagination is the implementation's concern; callers always receive
    complete listings. Listings may omit document bodies; callers fetch
    them per document with :meth:`load_content` once they know the
    document is needed.
    """

    def list_partitions(self) -> Sequence[Partition]: ...

    def list_documents(self, partition_id: str) -> Sequence[Document]: ...

    def load_content(self, document: Document) -> Document: ...


__all__ = ["ContentSource", "Document", "Partition"]
