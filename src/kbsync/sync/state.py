"""Persist sync progress inside the vector collection itself.

The state lives in one reserved point (the sentinel record) whose payload
carries the serialized :class:`~kbsync.sync.models.SyncState`. Keeping it in
the collection means a fresh deployment pointed at an existing collection
picks up where the last one stopped without any extra storage.

Every mutation is a full read of the sentinel followed by a full write. Two
writers racing on the same collection can lose each other's updates; run a
single sync process per collection.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from pydantic import ValidationError

from kbsync.core.logging import Logger, get_logger
from kbsync.store import (
    StoredRecord,
    VectorRecord,
    VectorStore,
    VectorStoreError,
)

from .errors import SyncStateWriteError
from .models import SyncState, SyncStatus

__all__ = ["DEFAULT_STATE_RECORD_ID", "STATE_RECORD_KIND", "SyncStateStore"]

DEFAULT_STATE_RECORD_ID = 999_999
STATE_RECORD_KIND = "sync-state"


class SyncStateStore:
    """Read and write :class:`SyncState` through a :class:`VectorStore`.

    Args:
        store: Vector store holding the collection.
        collection: Collection that also holds the synced documents.
        vector_size: Dimension of the collection's vectors. The sentinel
            carries a placeholder vector of that size.
        record_id: Reserved point id of the sentinel record.
        logger: Optional structured logger.
    """

    def __init__(
        self,
        store: VectorStore,
        *,
        collection: str,
        vector_size: int,
        record_id: int = DEFAULT_STATE_RECORD_ID,
        logger: Logger | None = None,
    ) -> None:
        if vector_size < 1:
            raise ValueError("vector_size must be >= 1")
        self._store = store
        self._collection = collection
        self._vector_size = vector_size
        self._record_id = record_id
        self._logger = logger or get_logger(
            __name__,
            component="sync-state",
            collection=collection,
        )

    @property
    def record_id(self) -> int:
        return self._record_id

    @property
    def collection(self) -> str:
        return self._collection

    def _placeholder_vector(self) -> tuple[float, ...]:
        # Unit basis vector: zero vectors are rejected by cosine collections.
        return (1.0,) + (0.0,) * (self._vector_size - 1)

    def _decode(self, payload: Mapping[str, Any]) -> SyncState:
        try:
            return SyncState.from_payload(payload)
        except ValidationError as exc:
            self._logger.warning(
                "sync-state-unreadable",
                record_id=self._record_id,
                error=str(exc),
            )
            return SyncState()

    def _collection_missing(self) -> bool:
        try:
            return not self._store.exists(self._collection)
        except VectorStoreError:
            return False

    def _from_records(self, records: Sequence[StoredRecord]) -> SyncState:
        if not records:
            self._logger.debug("sync-state-missing", record_id=self._record_id)
            return SyncState()
        return self._decode(records[0].payload)

    def load(self) -> SyncState:
        """Return the persisted state, or the zero state when unavailable.

        A missing collection, a missing sentinel, or a read failure all yield
        the zero state; nothing is raised.
        """

        try:
            records = self._store.retrieve(self._collection, [self._record_id])
        except VectorStoreError as exc:
            self._logger.warning(
                "sync-state-missing",
                record_id=self._record_id,
                reason=str(exc),
            )
            return SyncState()
        return self._from_records(records)

    def _load_for_write(self) -> SyncState:
        """Like :meth:`load`, but never defaults over an unreadable record.

        Raises:
            SyncStateWriteError: If the read fails while the collection
                exists.
        """

        try:
            records = self._store.retrieve(self._collection, [self._record_id])
        except VectorStoreError as exc:
            if self._collection_missing():
                self._logger.warning(
                    "sync-state-missing",
                    record_id=self._record_id,
                    reason=str(exc),
                )
                return SyncState()
            self._logger.error(
                "sync-state-read-failed",
                record_id=self._record_id,
                error=str(exc),
            )
            raise SyncStateWriteError(
                f"Refusing to overwrite sync state after a failed read: {exc}"
            ) from exc
        return self._from_records(records)

    def save(self, state: SyncState) -> None:
        """Overwrite the sentinel record with ``state``.

        Raises:
            SyncStateWriteError: If the store rejects the write.
        """

        payload = state.to_payload()
        payload["kind"] = STATE_RECORD_KIND
        record = VectorRecord(
            id=self._record_id,
            vector=self._placeholder_vector(),
            payload=payload,
        )
        try:
            self._store.upsert(self._collection, [record])
        except VectorStoreError as exc:
            self._logger.error(
                "sync-state-write-failed",
                record_id=self._record_id,
                error=str(exc),
            )
            raise SyncStateWriteError(
                f"Failed to persist sync state: {exc}"
            ) from exc

    def update(self, **changes: Any) -> SyncState:
        """Apply ``changes`` over the stored state and persist the result.

        Raises:
            ValueError: If a change names an unknown field.
            SyncStateWriteError: If the stored state cannot be read back
                or the write fails.
        """

        current = self._load_for_write()
        updated = current.merged(**changes)
        self.save(updated)
        return updated

    def is_processed(self, page_id: str) -> bool:
        return self.load().contains(page_id)

    def mark_processed(self, page_id: str) -> bool:
        """Record ``page_id`` as processed.

        Returns ``False`` without writing when it was already recorded.

        Raises:
            SyncStateWriteError: If the stored state cannot be read back
                or the write fails.
        """

        current = self._load_for_write()
        if current.contains(page_id):
            return False
        self.save(current.with_page(page_id))
        return True

    def clear(self) -> SyncState:
        """Reset the persisted state to the zero state."""

        previous = self.load()
        cleared = SyncState()
        self.save(cleared)
        self._logger.info(
            "sync-state-cleared",
            previous_processed=len(previous.processed_pages),
        )
        return cleared

    def delete(self) -> None:
        """Remove the sentinel record entirely.

        Raises:
            SyncStateWriteError: If the store rejects the delete.
        """

        try:
            self._store.delete(self._collection, [self._record_id])
        except VectorStoreError as exc:
            raise SyncStateWriteError(
                f"Failed to delete sync state: {exc}"
            ) from exc
        self._logger.info("sync-state-deleted", record_id=self._record_id)

    def status(self) -> SyncStatus:
        return SyncStatus.from_state(self.load())
