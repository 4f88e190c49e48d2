"""Shared pytest fixtures wiring the in-memory collaborators."""

from __future__ import annotations

import pytest

from fakes import (
    COLLECTION,
    DIMENSION,
    STATE_ID,
    Clock,
    FakeContentSource,
    FakeEmbedder,
    FakeVectorStore,
    RecordingLogger,
)
from kbsync.sync import SyncDriver, SyncStateStore


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def source() -> FakeContentSource:
    return FakeContentSource()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def state_store(
    store: FakeVectorStore,
    logger: RecordingLogger,
) -> SyncStateStore:
    return SyncStateStore(
        store,
        collection=COLLECTION,
        vector_size=DIMENSION,
        record_id=STATE_ID,
        logger=logger,  # type: ignore[arg-type]
    )


@pytest.fixture
def driver(
    source: FakeContentSource,
    embedder: FakeEmbedder,
    store: FakeVectorStore,
    state_store: SyncStateStore,
    clock: Clock,
    logger: RecordingLogger,
) -> SyncDriver:
    return SyncDriver(
        source=source,
        embedder=embedder,
        store=store,
        state=state_store,
        collection=COLLECTION,
        now=clock,
        logger=logger,  # type: ignore[arg-type]
    )
