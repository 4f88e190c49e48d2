"""Qdrant-backed :class:`~kbsync.store.models.VectorStore` adapter."""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator, Sequence

from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PointIdsList, PointStruct, VectorParams

from kbsync.core.config import QdrantSettings
from kbsync.core.logging import Logger, get_logger

from .errors import VectorStoreError
from .models import DistanceMetric, PointId, StoredRecord, VectorRecord

__all__ = ["QdrantVectorStore", "build_qdrant_store"]

_MEMORY_LOCATION = ":memory:"


class QdrantVectorStore:
    """Translate vector store calls into ``qdrant-client`` requests.

    Every client failure is re-raised as :class:`VectorStoreError` so callers
    only need to handle one error family regardless of transport.
    """

    def __init__(
        self,
        client: QdrantClient,
        *,
        logger: Logger | None = None,
    ) -> None:
        self._client = client
        self._logger = logger or get_logger(__name__, component="qdrant")

    @property
    def client(self) -> QdrantClient:
        return self._client

    @contextmanager
    def _translate(self, operation: str, collection: str) -> Iterator[None]:
        try:
            yield
        except VectorStoreError:
            raise
        except Exception as exc:
            self._logger.debug(
                "qdrant-call-failed",
                operation=operation,
                collection=collection,
                error_type=exc.__class__.__name__,
            )
            raise VectorStoreError(
                str(exc) or exc.__class__.__name__,
                collection=collection,
                operation=operation,
            ) from exc

    def exists(self, collection: str) -> bool:
        with self._translate("exists", collection):
            return bool(self._client.collection_exists(collection))

    def create_collection(
        self,
        collection: str,
        *,
        vector_size: int,
        distance: DistanceMetric,
    ) -> None:
        with self._translate("create_collection", collection):
            self._client.create_collection(
                collection_name=collection,
                vectors_config=VectorParams(
                    size=vector_size,
                    distance=Distance(distance.value),
                ),
            )
        self._logger.info(
            "qdrant-collection-created",
            collection=collection,
            vector_size=vector_size,
            distance=distance.value,
        )

    def upsert(
        self,
        collection: str,
        records: Sequence[VectorRecord],
    ) -> None:
        if not records:
            return
        points = [
            PointStruct(
                id=record.id,
                vector=list(record.vector),
                payload=dict(record.payload),
            )
            for record in records
        ]
        with self._translate("upsert", collection):
            self._client.upsert(
                collection_name=collection,
                points=points,
                wait=True,
            )

    def retrieve(
        self,
        collection: str,
        ids: Sequence[PointId],
    ) -> list[StoredRecord]:
        if not ids:
            return []
        with self._translate("retrieve", collection):
            records = self._client.retrieve(
                collection_name=collection,
                ids=list(ids),
                with_payload=True,
                with_vectors=False,
            )
        return [
            StoredRecord(id=str(record.id), payload=dict(record.payload or {}))
            for record in records
        ]

    def delete(self, collection: str, ids: Sequence[PointId]) -> None:
        if not ids:
            return
        with self._translate("delete", collection):
            self._client.delete(
                collection_name=collection,
                points_selector=PointIdsList(points=list(ids)),
                wait=True,
            )

    def count(self, collection: str) -> int:
        with self._translate("count", collection):
            result = self._client.count(collection_name=collection, exact=True)
        return int(result.count)


def build_qdrant_store(
    settings: QdrantSettings,
    *,
    api_key: str | None = None,
    logger: Logger | None = None,
) -> QdrantVectorStore:
    """Return a store connected according to ``settings``.

    ``api_key`` defaults to ``QDRANT_API_KEY`` from the environment. The
    special URL ``:memory:`` selects qdrant-client's in-process local mode.
    """

    if settings.url == _MEMORY_LOCATION:
        client = QdrantClient(location=_MEMORY_LOCATION)
    else:
        client = QdrantClient(
            url=settings.url,
            api_key=api_key or os.environ.get("QDRANT_API_KEY") or None,
            timeout=int(settings.timeout_seconds),
        )
    return QdrantVectorStore(client, logger=logger)
