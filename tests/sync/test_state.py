"""Tests for :mod:`kbsync.sync.state`."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from fakes import COLLECTION, DIMENSION, STATE_ID, FakeVectorStore, RecordingLogger
from kbsync.store import DistanceMetric
from kbsync.sync import EPOCH, STATE_RECORD_KIND, SyncState, SyncStateStore
from kbsync.sync.errors import SyncStateWriteError


@pytest.fixture
def ready_store(store: FakeVectorStore) -> FakeVectorStore:
    store.create_collection(
        COLLECTION,
        vector_size=DIMENSION,
        distance=DistanceMetric.COSINE,
    )
    return store


def test_load_without_collection_returns_zero_state(
    state_store: SyncStateStore,
    logger: RecordingLogger,
) -> None:
    state = state_store.load()

    assert state == SyncState()
    assert state.last_sync_time == EPOCH
    assert state.processed_pages == []
    assert state.total_documents == 0
    assert state.total_embeddings == 0
    assert "sync-state-missing" in logger.events("warning")


def test_load_without_sentinel_returns_zero_state(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
    logger: RecordingLogger,
) -> None:
    assert state_store.load() == SyncState()
    assert "sync-state-missing" in logger.events("debug")


def test_save_writes_sentinel_with_camel_case_payload(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
) -> None:
    state_store.save(
        SyncState(
            last_sync_time=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            processed_pages=["a", "b"],
            total_documents=2,
            total_embeddings=2,
        )
    )

    record = ready_store.collections[COLLECTION][str(STATE_ID)]
    assert record.payload["processedPages"] == ["a", "b"]
    assert record.payload["totalDocuments"] == 2
    assert record.payload["totalEmbeddings"] == 2
    assert record.payload["lastSyncTime"].startswith("2024-01-02T03:04:05")
    assert record.payload["kind"] == STATE_RECORD_KIND
    assert record.vector == (1.0, 0.0, 0.0, 0.0)


def test_save_then_load_round_trips(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
) -> None:
    state = SyncState(
        last_sync_time=datetime(2024, 1, 2, tzinfo=timezone.utc),
        processed_pages=["x"],
        total_documents=1,
        total_embeddings=1,
    )
    state_store.save(state)

    assert state_store.load() == state


def test_mark_processed_twice_records_id_once(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
) -> None:
    assert state_store.mark_processed("page-1") is True
    writes_after_first = len(ready_store.upserts)

    assert state_store.mark_processed("page-1") is False
    assert state_store.mark_processed("page-1") is False

    assert state_store.load().processed_pages == ["page-1"]
    assert len(ready_store.upserts) == writes_after_first
    assert state_store.is_processed("page-1")
    assert not state_store.is_processed("page-2")


def test_clear_resets_every_processed_id(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
) -> None:
    for page_id in ("a", "b", "c"):
        state_store.mark_processed(page_id)
    state_store.update(total_documents=3, total_embeddings=3)

    state_store.clear()

    assert not any(state_store.is_processed(page_id) for page_id in "abc")
    status = state_store.status()
    assert status.processed_count == 0
    assert status.total_documents == 0
    assert status.never_synced


def test_update_merges_changes(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
) -> None:
    state_store.mark_processed("a")

    updated = state_store.update(total_documents=7)

    assert updated.total_documents == 7
    assert updated.processed_pages == ["a"]
    assert state_store.load() == updated


def test_update_rejects_unknown_fields(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
) -> None:
    with pytest.raises(ValueError, match="bogus"):
        state_store.update(bogus=1)

    assert ready_store.upserts == []


def test_write_failure_raises_sync_state_write_error(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
    logger: RecordingLogger,
) -> None:
    ready_store.fail_upsert = lambda records: True

    with pytest.raises(SyncStateWriteError):
        state_store.mark_processed("a")

    assert "sync-state-write-failed" in logger.events("error")


def test_corrupt_payload_loads_as_zero_state(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
    logger: RecordingLogger,
) -> None:
    state_store.save(SyncState(processed_pages=["a"]))
    record = ready_store.collections[COLLECTION][str(STATE_ID)]
    ready_store.collections[COLLECTION][str(STATE_ID)] = type(record)(
        id=record.id,
        vector=record.vector,
        payload={"totalDocuments": "not-a-number"},
    )

    assert state_store.load() == SyncState()
    assert "sync-state-unreadable" in logger.events("warning")


def test_delete_removes_sentinel(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
) -> None:
    state_store.mark_processed("a")

    state_store.delete()

    assert str(STATE_ID) not in ready_store.collections[COLLECTION]
    assert state_store.load() == SyncState()


def test_rejects_non_positive_vector_size(store: FakeVectorStore) -> None:
    with pytest.raises(ValueError):
        SyncStateStore(store, collection=COLLECTION, vector_size=0)


def test_failed_read_on_existing_collection_does_not_wipe_state(
    ready_store: FakeVectorStore,
    state_store: SyncStateStore,
    logger: RecordingLogger,
) -> None:
    state_store.mark_processed("a")
    state_store.mark_processed("b")
    ready_store.fail_reads = True

    assert state_store.load() == SyncState()
    with pytest.raises(SyncStateWriteError):
        state_store.mark_processed("c")
    with pytest.raises(SyncStateWriteError):
        state_store.update(total_documents=9)

    assert "sync-state-read-failed" in logger.events("error")
    ready_store.fail_reads = False
    assert state_store.load().processed_pages == ["a", "b"]


def test_mutation_on_missing_collection_still_defaults_before_writing(
    store: FakeVectorStore,
    state_store: SyncStateStore,
) -> None:
    with pytest.raises(SyncStateWriteError, match="Failed to persist"):
        state_store.mark_processed("a")

    assert store.upserts == []
