"""Notion databases as a :class:`~kbsync.content.models.ContentSource`.

Each Notion database is one partition; each page in it is one document.
Listings carry page properties only. The body, the page's top-level blocks
rendered to plain text, is fetched by :meth:`NotionContentSource.load_content`.
"""

from __future__ import annotations

import os
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

import httpx
from notion_client import Client
from notion_client.errors import HTTPResponseError, RequestTimeoutError
from notion_client.helpers import collect_paginated_api

from kbsync.core.config import NotionSettings
from kbsync.core.logging import Logger, get_logger

from .errors import ContentSourceError
from .models import Document, Partition

__all__ = [
    "NO_TITLE",
    "NotionContentSource",
    "build_notion_source",
    "extract_block_text",
    "extract_page_title",
]

NO_TITLE = "(no title)"
_PAGE_SIZE = 100
_TITLE_PROPERTIES = ("Name", "Title", "Page", "Page Name")
_NOTION_ERRORS = (HTTPResponseError, RequestTimeoutError, httpx.HTTPError)


def _plain_text(rich_text: Sequence[Mapping[str, Any]] | None) -> str:
    if not rich_text:
        return ""
    return "".join(str(part.get("plain_text") or "") for part in rich_text)


def extract_page_title(properties: Mapping[str, Any]) -> str:
    """Return the human title of a page from its property map.

    Well-known property names win over the first ``title`` typed property.

    Example:
        >>> props = {"Name": {"type": "title", "title": [{"plain_text": "Hi"}]}}
        >>> extract_page_title(props)
        'Hi'
    """

    for name in _TITLE_PROPERTIES:
        prop = properties.get(name)
        if not isinstance(prop, Mapping):
            continue
        kind = prop.get("type")
        if kind in {"title", "rich_text"}:
            text = _plain_text(prop.get(kind))
            if text:
                return text

    for prop in properties.values():
        if isinstance(prop, Mapping) and prop.get("type") == "title":
            text = _plain_text(prop.get("title"))
            if text:
                return text

    return NO_TITLE


def extract_block_text(block: Mapping[str, Any]) -> str:
    """Render one block to plain text (empty string when it has none)."""

    kind = block.get("type")
    data = block.get(kind) if isinstance(kind, str) else None
    if not isinstance(data, Mapping):
        return ""
    text = _plain_text(data.get("rich_text"))

    if kind in {"bulleted_list_item", "numbered_list_item"}:
        return f"• {text}"
    if kind == "quote":
        return f"> {text}"
    if kind == "code":
        return f"```\n{text}\n```"
    return text


def _parse_timestamp(raw: Any) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


class NotionContentSource:
    """List Notion databases and their pages through ``notion-client``."""

    def __init__(
        self,
        client: Client,
        *,
        logger: Logger | None = None,
        collect: Callable[..., list[Any]] = collect_paginated_api,
    ) -> None:
        self._client = client
        self._collect = collect
        self._logger = logger or get_logger(__name__, component="notion")

    def list_partitions(self) -> list[Partition]:
        try:
            results = self._collect(
                self._client.search,
                filter={"property": "object", "value": "database"},
                page_size=_PAGE_SIZE,
            )
        except _NOTION_ERRORS as exc:
            raise ContentSourceError(
                f"Failed to fetch Notion databases: {exc}"
            ) from exc

        partitions = [
            Partition(
                id=str(result["id"]),
                name=_plain_text(result.get("title")) or NO_TITLE,
            )
            for result in results
            if result.get("object") == "database" and "id" in result
        ]
        self._logger.debug("notion-databases-listed", count=len(partitions))
        return partitions

    def list_documents(self, partition_id: str) -> list[Document]:
        try:
            pages = self._collect(
                self._client.databases.query,
                database_id=partition_id,
                page_size=_PAGE_SIZE,
            )
        except _NOTION_ERRORS as exc:
            raise ContentSourceError(
                f"Failed to fetch pages from database {partition_id}: {exc}",
                partition_id=partition_id,
            ) from exc

        documents: list[Document] = []
        for page in pages:
            if page.get("object") != "page" or "id" not in page:
                continue
            documents.append(self._build_document(page, partition_id))

        self._logger.debug(
            "notion-pages-listed",
            partition_id=partition_id,
            count=len(documents),
        )
        return documents

    def load_content(self, document: Document) -> Document:
        """Return ``document`` with its page body filled in.

        Pages whose blocks cannot be read (or have no text) fall back to
        their title.
        """

        if document.loaded:
            return document
        body = self._page_body(document.id)
        return replace(document, content=body or document.title)

    def _build_document(
        self,
        page: Mapping[str, Any],
        partition_id: str,
    ) -> Document:
        page_id = str(page["id"])
        properties = dict(page.get("properties") or {})
        title = extract_page_title(properties)
        last_edited = page.get("last_edited_time")

        metadata: dict[str, Any] = {
            **properties,
            "title": title,
            "databaseId": partition_id,
            "lastEdited": last_edited,
        }
        if page.get("url"):
            metadata["url"] = page["url"]

        return Document(
            id=page_id,
            last_modified=_parse_timestamp(last_edited),
            metadata=metadata,
            source="notion",
        )

    def _page_body(self, page_id: str) -> str:
        try:
            blocks = self._collect(
                self._client.blocks.children.list,
                block_id=page_id,
                page_size=_PAGE_SIZE,
            )
        except _NOTION_ERRORS as exc:
            # The title still makes the page searchable.
            self._logger.warning(
                "notion-blocks-unavailable",
                page_id=page_id,
                error=str(exc),
            )
            return ""

        parts = [extract_block_text(block) for block in blocks]
        return "\n\n".join(part for part in parts if part)


def build_notion_source(
    settings: NotionSettings,
    *,
    api_key: str | None = None,
    logger: Logger | None = None,
) -> NotionContentSource:
    """Return a source authenticated with ``NOTION_API_KEY``.

    Raises:
        ContentSourceError: If no API key is available.
    """

    token = api_key or os.environ.get("NOTION_API_KEY")
    if not token:
        raise ContentSourceError(
            "NOTION_API_KEY must be set to read from Notion."
        )
    client = Client(
        auth=token,
        timeout_ms=int(settings.timeout_seconds * 1000),
    )
    return NotionContentSource(client, logger=logger)
