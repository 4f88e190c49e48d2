"""Content source contract and the Notion implementation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import ContentSourceError
from .models import ContentSource, Document, Partition

if TYPE_CHECKING:  # pragma: no cover - type checker imports only
    from .notion import NotionContentSource, build_notion_source

__all__ = [
    "ContentSource",
    "ContentSourceError",
    "Document",
    "NotionContentSource",
    "Partition",
    "build_notion_source",
]


def __getattr__(name: str) -> object:
    if name in {"NotionContentSource", "build_notion_source"}:
        from . import notion

        return getattr(notion, name)

    message = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(message)
