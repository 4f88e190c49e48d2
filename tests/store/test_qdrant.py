"""Tests for :mod:`kbsync.store.qdrant` against qdrant-client local mode."""

from __future__ import annotations

import pytest

pytest.importorskip("qdrant_client")

from qdrant_client import QdrantClient  # noqa: E402  (import after skip guard)

from fakes import RecordingLogger  # noqa: E402
from kbsync.core.config import QdrantSettings  # noqa: E402
from kbsync.store import (  # noqa: E402
    DistanceMetric,
    VectorRecord,
    VectorStoreError,
)
from kbsync.store.qdrant import QdrantVectorStore, build_qdrant_store  # noqa: E402
from kbsync.sync import SyncState, SyncStateStore  # noqa: E402

COLLECTION = "qdrant-test"
PAGE_A = "2f1c6f0e-7a3b-4d0e-9f52-6d1c3a0b1a01"
PAGE_B = "2f1c6f0e-7a3b-4d0e-9f52-6d1c3a0b1a02"
PAGE_MISSING = "2f1c6f0e-7a3b-4d0e-9f52-6d1c3a0b1a99"


@pytest.fixture
def qdrant_store() -> QdrantVectorStore:
    return QdrantVectorStore(
        QdrantClient(location=":memory:"),
        logger=RecordingLogger(),  # type: ignore[arg-type]
    )


def _create(store: QdrantVectorStore) -> None:
    store.create_collection(
        COLLECTION,
        vector_size=3,
        distance=DistanceMetric.COSINE,
    )


def test_create_collection_and_exists(qdrant_store: QdrantVectorStore) -> None:
    assert qdrant_store.exists(COLLECTION) is False

    _create(qdrant_store)

    assert qdrant_store.exists(COLLECTION) is True
    assert qdrant_store.count(COLLECTION) == 0


def test_upsert_retrieve_and_delete(qdrant_store: QdrantVectorStore) -> None:
    _create(qdrant_store)
    qdrant_store.upsert(
        COLLECTION,
        [
            VectorRecord(id=PAGE_A, vector=(0.1, 0.2, 0.3), payload={"title": "A"}),
            VectorRecord(id=PAGE_B, vector=(0.3, 0.2, 0.1), payload={"title": "B"}),
        ],
    )

    records = qdrant_store.retrieve(COLLECTION, [PAGE_A, PAGE_B, PAGE_MISSING])

    assert {record.id: record.payload["title"] for record in records} == {
        PAGE_A: "A",
        PAGE_B: "B",
    }

    qdrant_store.delete(COLLECTION, [PAGE_A])

    assert qdrant_store.count(COLLECTION) == 1
    assert [record.id for record in qdrant_store.retrieve(COLLECTION, [PAGE_A])] == []


def test_upsert_replaces_existing_point(qdrant_store: QdrantVectorStore) -> None:
    _create(qdrant_store)
    first = VectorRecord(id=PAGE_A, vector=(1.0, 0.0, 0.0), payload={"v": 1})
    second = VectorRecord(id=PAGE_A, vector=(0.0, 1.0, 0.0), payload={"v": 2})

    qdrant_store.upsert(COLLECTION, [first])
    qdrant_store.upsert(COLLECTION, [second])

    (record,) = qdrant_store.retrieve(COLLECTION, [PAGE_A])
    assert record.payload == {"v": 2}
    assert qdrant_store.count(COLLECTION) == 1


def test_empty_inputs_are_no_ops(qdrant_store: QdrantVectorStore) -> None:
    qdrant_store.upsert(COLLECTION, [])
    qdrant_store.delete(COLLECTION, [])

    assert qdrant_store.retrieve(COLLECTION, []) == []


def test_missing_collection_raises_vector_store_error(
    qdrant_store: QdrantVectorStore,
) -> None:
    with pytest.raises(VectorStoreError) as exc_info:
        qdrant_store.retrieve(COLLECTION, [PAGE_A])

    assert exc_info.value.operation == "retrieve"
    assert exc_info.value.collection == COLLECTION


def test_sync_state_round_trips_through_qdrant(
    qdrant_store: QdrantVectorStore,
) -> None:
    _create(qdrant_store)
    state_store = SyncStateStore(
        qdrant_store,
        collection=COLLECTION,
        vector_size=3,
        logger=RecordingLogger(),  # type: ignore[arg-type]
    )

    assert state_store.load() == SyncState()
    state_store.mark_processed(PAGE_A)
    state_store.mark_processed(PAGE_A)

    assert state_store.load().processed_pages == [PAGE_A]
    (sentinel,) = qdrant_store.retrieve(COLLECTION, [state_store.record_id])
    assert sentinel.id == str(state_store.record_id)
    assert sentinel.payload["processedPages"] == [PAGE_A]


def test_build_qdrant_store_supports_memory_location() -> None:
    store = build_qdrant_store(QdrantSettings(url=":memory:"))

    assert isinstance(store.client, QdrantClient)
    assert store.exists("anything") is False
