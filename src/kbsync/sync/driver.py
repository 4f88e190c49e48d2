"""Incremental sync passes from a content source into a vector collection."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from kbsync.content import ContentSource, ContentSourceError, Document, Partition
from kbsync.core.logging import Logger, get_logger
from kbsync.embeddings import Embedder, EmbeddingError
from kbsync.store import DistanceMetric, VectorRecord, VectorStore

from .errors import PartitionNotFoundError, PartitionSyncError
from .models import PartitionReport, SyncReport, SyncStatus
from .state import SyncStateStore

__all__ = ["SyncDriver", "build_payload"]

EmbeddedDocument = tuple[Document, tuple[float, ...]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_payload(document: Document, partition: Partition) -> dict[str, Any]:
    """Return the stored payload for ``document``.

    Source metadata is kept as-is; the fixed keys below always win.
    """

    timestamp = (
        document.last_modified.isoformat() if document.last_modified else None
    )
    return {
        **document.metadata,
        "title": document.title,
        "source": document.source,
        "timestamp": timestamp,
        "partition_id": partition.id,
        "content": document.content,
    }


class SyncDriver:
    """Run sync passes with at-most-once embedding per document id.

    A document is embedded and upserted only when its id is not yet in the
    processed set; bodies are fetched from the source only for those
    documents. Ids are marked only after their batch upsert succeeds, so
    a failed write leaves the whole batch eligible for the next pass.
    """

    def __init__(
        self,
        *,
        source: ContentSource,
        embedder: Embedder,
        store: VectorStore,
        state: SyncStateStore,
        collection: str,
        distance: DistanceMetric = DistanceMetric.COSINE,
        now: Callable[[], datetime] = _utcnow,
        logger: Logger | None = None,
    ) -> None:
        self._source = source
        self._embedder = embedder
        self._store = store
        self._state = state
        self._collection = collection
        self._distance = distance
        self._now = now
        self._logger = logger or get_logger(
            __name__,
            component="sync",
            collection=collection,
        )

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def state(self) -> SyncStateStore:
        return self._state

    def ensure_collection(self) -> bool:
        """Create the collection when absent; return ``True`` if created."""

        if self._store.exists(self._collection):
            return False
        self._store.create_collection(
            self._collection,
            vector_size=self._embedder.dimension(),
            distance=self._distance,
        )
        return True

    def list_partitions(self) -> list[Partition]:
        return list(self._source.list_partitions())

    def run_full_sync(self, *, dry_run: bool = False) -> SyncReport:
        """Sync every partition offered by the content source.

        Raises:
            ContentSourceError: If partitions cannot be listed.
            PartitionSyncError: If a partition's documents cannot be listed.
            VectorStoreError: If a batch write fails.
            SyncStateWriteError: If sync state cannot be persisted.
        """

        report = SyncReport(started_at=self._now(), dry_run=dry_run)
        self._logger.info("sync-pass-start", scope="all", dry_run=dry_run)
        if not dry_run:
            self.ensure_collection()

        for partition in self.list_partitions():
            report.partitions.append(
                self._sync_partition(partition, dry_run=dry_run)
            )
        return self._finish(report)

    def run_partition_sync(
        self,
        name: str,
        *,
        dry_run: bool = False,
    ) -> SyncReport:
        """Sync the single partition called ``name`` (or with that id).

        Raises:
            PartitionNotFoundError: If no partition matches ``name``.
        """

        partitions = self.list_partitions()
        partition = next(
            (item for item in partitions if item.name == name),
            None,
        ) or next((item for item in partitions if item.id == name), None)
        if partition is None:
            raise PartitionNotFoundError(
                name,
                available=tuple(item.name for item in partitions),
            )

        report = SyncReport(started_at=self._now(), dry_run=dry_run)
        self._logger.info(
            "sync-pass-start",
            scope=partition.name,
            dry_run=dry_run,
        )
        if not dry_run:
            self.ensure_collection()
        report.partitions.append(
            self._sync_partition(partition, dry_run=dry_run)
        )
        return self._finish(report)

    def get_status(self) -> SyncStatus:
        return self._state.status()

    def clear_state(self) -> None:
        self._state.clear()

    def _list_documents(self, partition: Partition) -> Sequence[Document]:
        try:
            return self._source.list_documents(partition.id)
        except ContentSourceError as exc:
            self._logger.error(
                "sync-partition-failed",
                partition_id=partition.id,
                partition=partition.name,
                error=str(exc),
            )
            raise PartitionSyncError(
                partition.id,
                partition.name,
                str(exc),
            ) from exc

    def _sync_partition(
        self,
        partition: Partition,
        *,
        dry_run: bool,
    ) -> PartitionReport:
        report = PartitionReport(
            partition_id=partition.id,
            partition_name=partition.name,
        )
        documents = self._list_documents(partition)
        report.listed = len(documents)

        snapshot = self._state.load()
        pending: list[Document] = []
        seen: set[str] = set()
        for document in documents:
            if snapshot.contains(document.id) or document.id in seen:
                report.skipped += 1
                continue
            seen.add(document.id)
            pending.append(document)

        report.new_documents = len(pending)
        report.pending_ids = [document.id for document in pending]
        self._logger.info(
            "sync-partition-scanned",
            partition=partition.name,
            listed=report.listed,
            skipped=report.skipped,
            pending=report.new_documents,
        )
        if dry_run or not pending:
            return report

        loaded, unavailable = self._load_contents(pending)
        embedded, failed = self._embed(loaded)
        report.failed_ids = unavailable + failed
        if embedded:
            records = [
                VectorRecord(
                    id=document.id,
                    vector=tuple(vector),
                    payload=build_payload(document, partition),
                )
                for document, vector in embedded
            ]
            self._store.upsert(self._collection, records)
            for document, _ in embedded:
                self._state.mark_processed(document.id)
        report.embedded = len(embedded)

        self._logger.info(
            "sync-partition-complete",
            partition=partition.name,
            embedded=report.embedded,
            failed=len(report.failed_ids),
        )
        return report

    def _load_contents(
        self,
        documents: Sequence[Document],
    ) -> tuple[list[Document], list[str]]:
        """Fetch bodies for documents listed without one."""

        loaded: list[Document] = []
        unavailable: list[str] = []
        for document in documents:
            if document.loaded:
                loaded.append(document)
                continue
            try:
                loaded.append(self._source.load_content(document))
            except ContentSourceError as exc:
                self._logger.warning(
                    "sync-document-unavailable",
                    document_id=document.id,
                    error=str(exc),
                )
                unavailable.append(document.id)
        return loaded, unavailable

    def _embed(
        self,
        documents: Sequence[Document],
    ) -> tuple[list[EmbeddedDocument], list[str]]:
        failed: list[str] = []
        candidates: list[Document] = []
        for document in documents:
            if document.content and document.content.strip():
                candidates.append(document)
            else:
                self._logger.warning("sync-document-empty", document_id=document.id)
                failed.append(document.id)

        if not candidates:
            return [], failed

        try:
            vectors = self._embedder.embed(
                [document.content for document in candidates]
            )
        except EmbeddingError as exc:
            self._logger.warning(
                "sync-embed-batch-failed",
                size=len(candidates),
                error=str(exc),
            )
        else:
            return list(zip(candidates, vectors)), failed

        embedded: list[EmbeddedDocument] = []
        for document in candidates:
            try:
                (vector,) = self._embedder.embed([document.content])
            except EmbeddingError as exc:
                self._logger.warning(
                    "sync-embed-failed",
                    document_id=document.id,
                    error=str(exc),
                )
                failed.append(document.id)
                continue
            embedded.append((document, vector))
        return embedded, failed

    def _finish(self, report: SyncReport) -> SyncReport:
        finished = self._now()
        report.finished_at = finished
        if not report.dry_run:
            previous = self._state.load()
            # Only documents that reached the store are counted.
            self._state.update(
                last_sync_time=max(previous.last_sync_time, finished),
                total_documents=previous.total_documents + report.new_embeddings,
                total_embeddings=(
                    previous.total_embeddings + report.new_embeddings
                ),
            )
        self._logger.info("sync-pass-complete", **report.summary())
        return report
