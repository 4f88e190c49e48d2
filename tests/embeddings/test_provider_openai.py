from __future__ import annotations

from types import MethodType, SimpleNamespace
from typing import Iterable, Sequence

import pytest
from structlog import get_logger
from structlog.testing import capture_logs

pytest.importorskip("openai")

import httpx  # noqa: E402  (import after skip guard)
from openai import BadRequestError, RateLimitError  # noqa: E402

from kbsync.embeddings import EmbedRequestOptions  # noqa: E402
from kbsync.embeddings.errors import (  # noqa: E402
    EmbeddingConfigurationError,
    EmbeddingDimMismatchError,
    EmbeddingInputTooLargeError,
    EmbeddingRateLimitError,
    EmbeddingRequestError,
)
from kbsync.embeddings.openai import OpenAIEmbeddingsProvider  # noqa: E402


class _FakeEmbeddingsAPI:
    """Stub embeddings API returning scripted responses."""

    def __init__(self, script: Iterable[Sequence[Sequence[float]] | Exception]):
        self._script = list(script)
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    def create(
        self,
        *,
        model: str,
        input: Sequence[str],
    ) -> SimpleNamespace:
        self.calls.append((model, tuple(input)))
        if not self._script:
            raise AssertionError("unexpected OpenAI call")
        next_item = self._script.pop(0)
        if isinstance(next_item, Exception):
            raise next_item
        data = [SimpleNamespace(embedding=list(vector)) for vector in next_item]
        return SimpleNamespace(data=data)


class _FakeOpenAIClient:
    """Container exposing an embeddings API attribute."""

    def __init__(self, script: Iterable[Sequence[Sequence[float]] | Exception]):
        self.embeddings = _FakeEmbeddingsAPI(script)


def _vector(value: float, size: int = 3_072) -> tuple[float, ...]:
    return tuple(value for _ in range(size))


def _provider(client: _FakeOpenAIClient | None) -> OpenAIEmbeddingsProvider:
    return OpenAIEmbeddingsProvider(
        logger=get_logger("test.openai.provider"),
        client=client,  # type: ignore[arg-type]
        sleep=lambda _: None,
        now=lambda: 0.0,
    )


def _patch_token_estimator(
    provider: OpenAIEmbeddingsProvider,
    values: Iterable[int],
) -> None:
    iterator = iter(values)

    def _estimate(
        self: OpenAIEmbeddingsProvider,
        *,
        model: str,
        text: str,
    ) -> int:
        return next(iterator, 1)

    provider._estimate_tokens = MethodType(_estimate, provider)


def _status_error(cls, status: int):
    request = httpx.Request("POST", "https://example.com/embeddings")
    response = httpx.Response(status_code=status, request=request)
    return cls(message="failed", response=response, body=None)


def test_openai_provider_returns_embeddings_and_batches() -> None:
    client = _FakeOpenAIClient([(_vector(0.0),), (_vector(1.0),)])
    provider = _provider(client)
    _patch_token_estimator(provider, [1, 1])

    vectors = provider.embed_texts(
        ["alpha", "beta"],
        model="text-embedding-3-large",
        options=EmbedRequestOptions(max_batch_size=1),
    )

    assert vectors == (_vector(0.0), _vector(1.0))
    assert client.embeddings.calls == [
        ("text-embedding-3-large", ("alpha",)),
        ("text-embedding-3-large", ("beta",)),
    ]


def test_openai_provider_splits_batches_by_token_limit() -> None:
    client = _FakeOpenAIClient(
        [(_vector(0.0),), (_vector(1.0), _vector(2.0))]
    )
    provider = _provider(client)
    _patch_token_estimator(provider, [5000, 4000, 1000])

    vectors = provider.embed_texts(
        ["alpha", "beta", "gamma"],
        model="text-embedding-3-large",
        options=EmbedRequestOptions(max_batch_size=3),
    )

    assert len(vectors) == 3
    assert client.embeddings.calls == [
        ("text-embedding-3-large", ("alpha",)),
        ("text-embedding-3-large", ("beta", "gamma")),
    ]


def test_openai_provider_errors_when_input_exceeds_token_limit() -> None:
    client = _FakeOpenAIClient([])
    provider = _provider(client)
    _patch_token_estimator(provider, [10_000])

    with pytest.raises(EmbeddingInputTooLargeError) as exc_info:
        provider.embed_texts(
            ["oversize"],
            model="text-embedding-3-large",
            options=EmbedRequestOptions(max_batch_size=1),
        )

    assert exc_info.value.limit == 8_191
    assert client.embeddings.calls == []


def test_openai_provider_retries_then_raises_rate_limit() -> None:
    client = _FakeOpenAIClient(
        [_status_error(RateLimitError, 429) for _ in range(5)]
    )
    provider = _provider(client)
    _patch_token_estimator(provider, [1])

    with pytest.raises(EmbeddingRateLimitError):
        provider.embed_texts(
            ["alpha"],
            model="text-embedding-3-large",
            options=EmbedRequestOptions(max_batch_size=1),
        )

    assert provider.stats["retries"] == 4
    assert len(client.embeddings.calls) == 5


def test_openai_provider_recovers_after_transient_failure() -> None:
    client = _FakeOpenAIClient(
        [_status_error(RateLimitError, 429), (_vector(0.5),)]
    )
    provider = _provider(client)
    _patch_token_estimator(provider, [1])

    vectors = provider.embed_texts(
        ["alpha"],
        model="text-embedding-3-large",
        options=EmbedRequestOptions(max_batch_size=4),
    )

    assert vectors == (_vector(0.5),)
    assert provider.stats["retries"] == 1
    assert provider.stats["requests"] == 1


def test_openai_provider_does_not_retry_bad_requests() -> None:
    client = _FakeOpenAIClient([_status_error(BadRequestError, 400)])
    provider = _provider(client)
    _patch_token_estimator(provider, [1])

    with pytest.raises(EmbeddingRequestError) as exc_info:
        provider.embed_texts(
            ["alpha"],
            model="text-embedding-3-large",
            options=EmbedRequestOptions(max_batch_size=1),
        )

    assert exc_info.value.status_code == 400
    assert provider.stats["retries"] == 0


def test_openai_provider_checks_response_dimension() -> None:
    client = _FakeOpenAIClient([(_vector(0.0, size=8),)])
    provider = _provider(client)
    _patch_token_estimator(provider, [1])

    with pytest.raises(EmbeddingDimMismatchError) as exc_info:
        provider.embed_texts(
            ["alpha"],
            model="text-embedding-3-large",
            options=EmbedRequestOptions(max_batch_size=1),
        )

    assert exc_info.value.expected == 3_072
    assert exc_info.value.actual == 8


def test_describe_model_known_and_probed() -> None:
    client = _FakeOpenAIClient([(_vector(0.0, size=256),)])
    provider = _provider(client)
    _patch_token_estimator(provider, [1])

    assert provider.describe_model("text-embedding-3-large").dim == 3_072
    assert provider.describe_model("custom-embedder").dim == 256
    assert provider.describe_model("custom-embedder").dim == 256
    assert len(client.embeddings.calls) == 1


def test_client_is_created_lazily(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    provider = _provider(None)

    assert provider.describe_model("text-embedding-3-small").dim == 1_536

    with pytest.raises(EmbeddingConfigurationError, match="OPENAI_API_KEY"):
        provider.client


def test_embed_texts_logs_request_counters() -> None:
    client = _FakeOpenAIClient(
        [_status_error(RateLimitError, 429), (_vector(0.5),)]
    )
    provider = _provider(client)
    _patch_token_estimator(provider, [1])

    with capture_logs() as logs:
        provider.embed_texts(
            ["alpha"],
            model="text-embedding-3-large",
            options=EmbedRequestOptions(max_batch_size=4),
        )

    (entry,) = [
        log for log in logs if log["event"] == "openai-embed-complete"
    ]
    assert entry["inputs"] == 1
    assert entry["requests"] == 1
    assert entry["retries"] == 1
    assert entry["failures"] == 0
