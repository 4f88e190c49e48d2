"""OpenAI embeddings provider implementation."""

from __future__ import annotations

import os
import random
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

import httpx
import tiktoken
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    OpenAI,
    RateLimitError,
)

from kbsync.core.logging import Logger

from . import (
    EmbedRequestOptions,
    EmbeddingMatrix,
    EmbeddingProviderCaps,
    EmbeddingProviderModel,
    EmbeddingVector,
    ProviderInitContext,
)
from .errors import (
    EmbeddingConfigurationError,
    EmbeddingDimMismatchError,
    EmbeddingError,
    EmbeddingInputTooLargeError,
    EmbeddingRateLimitError,
    EmbeddingRequestError,
    EmbeddingRetryExceededError,
    EmbeddingRetryableError,
)

__all__ = [
    "OpenAIEmbeddingsProvider",
    "openai_provider_factory",
]

_PROVIDER = "openai"
_DEFAULT_TIMEOUT = 30.0
_TOKEN_PAD = 8
_BACKOFF_BASE = 0.5
_BACKOFF_MULTIPLIER = 2.0
_BACKOFF_CAP = 8.0
_JITTER_RATIO = 0.2
_MAX_ATTEMPTS = 5
_DEFAULT_REQUEST_TOKENS = 8_191
_DIMENSION_PROBE_TEXT = "kbsync dimension probe"


@dataclass(frozen=True, slots=True)
class _OpenAIModelMetadata:
    name: str
    dim: int
    max_batch_size: int
    max_request_tokens: int
    max_input_tokens: int | None = None


_OPENAI_MODELS: Mapping[str, _OpenAIModelMetadata] = {
    "text-embedding-3-small": _OpenAIModelMetadata(
        name="text-embedding-3-small",
        dim=1_536,
        max_batch_size=128,
        max_request_tokens=8_191,
        max_input_tokens=8_191,
    ),
    "text-embedding-3-large": _OpenAIModelMetadata(
        name="text-embedding-3-large",
        dim=3_072,
        max_batch_size=64,
        max_request_tokens=8_191,
        max_input_tokens=8_191,
    ),
    "text-embedding-ada-002": _OpenAIModelMetadata(
        name="text-embedding-ada-002",
        dim=1_536,
        max_batch_size=128,
        max_request_tokens=8_191,
        max_input_tokens=8_191,
    ),
}


def _normalize_model_name(model: str) -> str:
    normalized = model.strip()
    if not normalized:
        raise ValueError("model cannot be blank")
    return normalized


def _resolve_timeout(config: Mapping[str, object] | None) -> float:
    raw_env = os.environ.get("OPENAI_TIMEOUT_SECONDS")
    raw_config = None
    if config:
        candidate = config.get("timeout")
        if isinstance(candidate, (float, int)):
            raw_config = float(candidate)
    value = raw_env or raw_config
    if value is None:
        return _DEFAULT_TIMEOUT
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            "OPENAI_TIMEOUT_SECONDS must be a number when provided.",
        ) from exc
    if parsed <= 0:
        raise ValueError("OPENAI_TIMEOUT_SECONDS must be positive.")
    return parsed


class OpenAIEmbeddingsProvider:
    """Embed texts via the OpenAI embeddings API."""

    def __init__(
        self,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
        client: OpenAI | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.logger = logger
        self._config = dict(config or {})
        self._sleep = sleep
        self._now = now
        self._dim_cache: dict[str, int] = {}
        self._stats = {"requests": 0, "retries": 0, "failures": 0}
        self._client = client

    @property
    def client(self) -> OpenAI:
        """Return the API client, creating it on first use."""

        if self._client is None:
            self._client = self._build_client()
        return self._client

    @property
    def stats(self) -> Mapping[str, int]:
        """Return counters captured during the provider lifetime."""

        return dict(self._stats)

    # ------------------------------------------------------------------#
    # Provider interface
    # ------------------------------------------------------------------#
    def describe_model(self, model: str) -> EmbeddingProviderModel:
        name = _normalize_model_name(model)
        metadata = _OPENAI_MODELS.get(name)
        if metadata is not None:
            return EmbeddingProviderModel(
                provider=_PROVIDER,
                name=metadata.name,
                dim=metadata.dim,
            )

        cached = self._dim_cache.get(name)
        if cached is None:
            cached = self._probe_dimension(model=name)
        return EmbeddingProviderModel(provider=_PROVIDER, name=name, dim=cached)

    def capabilities(
        self,
        *,
        model: str | None = None,
    ) -> EmbeddingProviderCaps:
        metadata = (
            _OPENAI_MODELS.get(_normalize_model_name(model)) if model else None
        )
        if metadata is None:
            return EmbeddingProviderCaps(
                max_batch_size=128,
                max_request_tokens=_DEFAULT_REQUEST_TOKENS,
            )
        return EmbeddingProviderCaps(
            max_batch_size=metadata.max_batch_size,
            max_request_tokens=metadata.max_request_tokens,
            max_input_tokens=metadata.max_input_tokens,
        )

    def embed_texts(
        self,
        texts: Sequence[str],
        *,
        model: str,
        options: EmbedRequestOptions,
    ) -> EmbeddingMatrix:
        if not texts:
            return ()

        name = _normalize_model_name(model)
        caps = self.capabilities(model=name)
        limit = min(options.max_batch_size, caps.max_batch_size)
        token_limit = (
            caps.max_request_tokens
            or caps.max_input_tokens
            or _DEFAULT_REQUEST_TOKENS
        )
        if options.max_input_tokens is not None:
            token_limit = min(token_limit, options.max_input_tokens)

        normalized_texts = [self._normalize_text(text) for text in texts]
        token_counts = [
            self._estimate_tokens(model=name, text=text)
            for text in normalized_texts
        ]

        expected = self._dim_cache.get(name)
        metadata = _OPENAI_MODELS.get(name)
        if metadata is not None:
            expected = metadata.dim

        results: list[EmbeddingVector] = []
        for batch in self._chunk_batches(
            normalized_texts,
            token_counts,
            limit=limit,
            token_limit=token_limit,
            model=name,
        ):
            embeddings = self._invoke_with_retries(
                model=name,
                batch=batch.texts,
                token_count=batch.tokens,
            )
            for vector in embeddings:
                if expected is not None and len(vector) != expected:
                    raise EmbeddingDimMismatchError(
                        "Embedding dimension mismatch in OpenAI response.",
                        provider=_PROVIDER,
                        model=name,
                        expected=expected,
                        actual=len(vector),
                    )
            results.extend(
                tuple(float(value) for value in vector) for vector in embeddings
            )

        self.logger.debug(
            "openai-embed-complete",
            model=name,
            inputs=len(texts),
            **self.stats,
        )
        return tuple(results)

    # ------------------------------------------------------------------#
    # Internal helpers
    # ------------------------------------------------------------------#
    def _build_client(self) -> OpenAI:
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise EmbeddingConfigurationError(
                "OPENAI_API_KEY must be set to use the OpenAI provider.",
                provider=_PROVIDER,
                model="*",
            )

        return OpenAI(
            api_key=api_key,
            base_url=os.environ.get("OPENAI_BASE_URL"),
            organization=os.environ.get("OPENAI_ORG_ID"),
            timeout=_resolve_timeout(self._config),
        )

    @dataclass(slots=True)
    class _Batch:
        texts: tuple[str, ...]
        tokens: int

    def _chunk_batches(
        self,
        texts: Sequence[str],
        token_counts: Sequence[int],
        *,
        limit: int,
        token_limit: int,
        model: str,
    ) -> tuple[_Batch, ...]:
        batches: list[OpenAIEmbeddingsProvider._Batch] = []
        current: list[str] = []
        current_tokens = 0

        for text, tokens in zip(texts, token_counts):
            if tokens > token_limit:
                raise EmbeddingInputTooLargeError(
                    (
                        "Input text exceeds OpenAI token limit "
                        f"({tokens} > {token_limit})."
                    ),
                    provider=_PROVIDER,
                    model=model,
                    token_count=tokens,
                    limit=token_limit,
                )

            would_exceed_batch = len(current) >= limit
            would_exceed_tokens = current_tokens + tokens > token_limit
            if current and (would_exceed_batch or would_exceed_tokens):
                batches.append(self._Batch(tuple(current), current_tokens))
                current = []
                current_tokens = 0

            current.append(text)
            current_tokens += tokens

        if current:
            batches.append(self._Batch(tuple(current), current_tokens))

        return tuple(batches)

    def _probe_dimension(self, *, model: str) -> int | None:
        embeddings = self._invoke_with_retries(
            model=model,
            batch=(_DIMENSION_PROBE_TEXT,),
            token_count=self._estimate_tokens(
                model=model,
                text=_DIMENSION_PROBE_TEXT,
            ),
            is_probe=True,
        )
        if not embeddings:
            return None
        dimension = len(embeddings[0])
        self._dim_cache[model] = dimension
        return dimension

    def _estimate_tokens(self, *, model: str, text: str) -> int:
        try:
            encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            encoding = tiktoken.get_encoding("cl100k_base")
        return _TOKEN_PAD + len(encoding.encode(text, disallowed_special=()))

    @staticmethod
    def _normalize_text(text: str) -> str:
        normalized = text.replace("\r\n", "\n").replace("\r", "\n")
        return normalized.strip()

    def _invoke_with_retries(
        self,
        *,
        model: str,
        batch: Sequence[str],
        token_count: int,
        is_probe: bool = False,
    ) -> list[list[float]]:
        client = self.client
        attempts = 0
        jitter_source = random.Random()

        while attempts < _MAX_ATTEMPTS:
            attempts += 1
            start = self._now()
            try:
                response = client.embeddings.create(
                    model=model,
                    input=list(batch),
                )
            except Exception as exc:
                retryable = self._is_retryable(exc)
                status, request_id = self._extract_context(exc)
                if not (retryable and attempts < _MAX_ATTEMPTS):
                    self._stats["failures"] += 1
                    raise self._translate_exception(
                        exc,
                        attempts=attempts,
                        model=model,
                        status=status,
                        request_id=request_id,
                    ) from exc

                delay = self._compute_backoff(
                    attempt=attempts,
                    rng=jitter_source,
                )
                self.logger.warning(
                    "openai-embed-retry",
                    provider=_PROVIDER,
                    model=model,
                    attempt=attempts,
                    max_attempts=_MAX_ATTEMPTS,
                    retry_delay=delay,
                    error_type=exc.__class__.__name__,
                    status_code=status,
                    request_id=request_id,
                    is_probe=is_probe,
                )
                self._stats["retries"] += 1
                self._sleep(delay)
                continue

            self._stats["requests"] += 1
            self.logger.debug(
                "openai-embed-request",
                provider=_PROVIDER,
                model=model,
                batch_size=len(batch),
                token_count=token_count,
                latency=self._now() - start,
                attempts=attempts,
                is_probe=is_probe,
            )
            return [list(item.embedding) for item in response.data]

        raise EmbeddingRetryExceededError(
            "Failed to embed texts after multiple attempts.",
            provider=_PROVIDER,
            model=model,
            attempts=attempts,
        )

    @staticmethod
    def _compute_backoff(*, attempt: int, rng: random.Random) -> float:
        if attempt <= 1:
            return 0.0
        base = _BACKOFF_BASE * (_BACKOFF_MULTIPLIER ** (attempt - 2))
        base = min(base, _BACKOFF_CAP)
        jitter = 1.0 + rng.uniform(-_JITTER_RATIO, _JITTER_RATIO)
        return round(base * jitter, 2)

    @staticmethod
    def _is_retryable(exc: Exception) -> bool:
        if isinstance(
            exc,
            (
                RateLimitError,
                APITimeoutError,
                APIConnectionError,
                httpx.TimeoutException,
                httpx.NetworkError,
            ),
        ):
            return True
        if isinstance(exc, APIStatusError):
            status, _ = OpenAIEmbeddingsProvider._extract_context(exc)
            return status is not None and status >= 500
        return False

    @staticmethod
    def _extract_context(exc: Exception) -> tuple[int | None, str | None]:
        status: int | None = None
        request_id: str | None = None

        status_value = getattr(exc, "status_code", None)
        if isinstance(status_value, int):
            status = status_value

        value = getattr(exc, "request_id", None)
        if isinstance(value, str):
            request_id = value

        return status, request_id

    @staticmethod
    def _translate_exception(
        exc: Exception,
        *,
        attempts: int,
        model: str,
        status: int | None,
        request_id: str | None,
    ) -> EmbeddingError:
        message = str(exc) or exc.__class__.__name__
        context = {
            "provider": _PROVIDER,
            "model": model,
            "status_code": status,
            "request_id": request_id,
        }
        if isinstance(exc, RateLimitError):
            return EmbeddingRateLimitError(message, **context)
        if isinstance(
            exc,
            (APITimeoutError, APIConnectionError, httpx.HTTPError),
        ):
            return EmbeddingRetryableError(message, **context)
        if isinstance(exc, APIStatusError) and status and status >= 500:
            return EmbeddingRetryableError(message, **context)
        if attempts >= _MAX_ATTEMPTS:
            return EmbeddingRetryExceededError(
                "Exceeded retry attempts when calling OpenAI embeddings API.",
                attempts=attempts,
                **context,
            )
        return EmbeddingRequestError(message, **context)


def openai_provider_factory(
    context: ProviderInitContext,
) -> OpenAIEmbeddingsProvider:
    """Factory registered with the provider registry."""

    return OpenAIEmbeddingsProvider(
        logger=context.logger,
        config=context.config,
    )
