"""Embedding provider abstractions and registry.

The sync driver only needs ``embed(texts) -> vectors``; providers expose a
richer contract (model description, capability hints) which
:class:`BoundEmbedder` narrows down for a single configured model.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Callable,
    Mapping,
    Protocol,
    Sequence,
    runtime_checkable,
)

from kbsync.core.logging import Logger

from .errors import EmbeddingError

__all__ = [
    "BoundEmbedder",
    "EmbeddingVector",
    "EmbeddingMatrix",
    "EmbedRequestOptions",
    "Embedder",
    "EmbeddingError",
    "EmbeddingProviderCaps",
    "EmbeddingProviderModel",
    "EmbeddingsProvider",
    "ProviderFactory",
    "ProviderInitContext",
    "ProviderRegistry",
    "ProviderRegistryError",
    "ProviderNotRegisteredError",
    "OpenAIEmbeddingsProvider",
    "openai_provider_factory",
    "register_builtin_providers",
    "create_default_provider_registry",
]

EmbeddingVector = tuple[float, ...]
EmbeddingMatrix = tuple[EmbeddingVector, ...]


@dataclass(frozen=True, slots=True)
class EmbedRequestOptions:
    """Request tuning options shared across embedding providers."""

    max_batch_size: int
    timeout: float | None = None
    max_input_tokens: int | None = None

    def __post_init__(self) -> None:  # pragma: no cover
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive when provided")
        if self.max_input_tokens is not None and self.max_input_tokens < 1:
            raise ValueError("max_input_tokens must be >= 1 when provided")


@dataclass(frozen=True, slots=True)
class EmbeddingProviderCaps:
    """Capability metadata surfaced by providers for planning."""

    max_batch_size: int
    max_input_tokens: int | None = None
    max_request_tokens: int | None = None

    def __post_init__(self) -> None:  # pragma: no cover
        if self.max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")


@dataclass(frozen=True, slots=True)
class EmbeddingProviderModel:
    """Model descriptor returned from providers when resolving dims."""

    provider: str
    name: str
    dim: int | None = None

    def __post_init__(self) -> None:  # pragma: no cover
        provider = self.provider.strip().lower()
        if not provider:
            raise ValueError("provider cannot be empty")
        object.__setattr__(self, "provider", provider)

        name = self.name.strip()
        if not name:
            raise ValueError("model name cannot be empty")
        object.__setattr__(self, "name", name)

        if self.dim is not None and self.dim < 1:
            raise ValueError("dim must be >= 1 when provided")

    @property
    def key(self) -> str:
        """Return the canonical provider:model key."""

        return f"{self.provider}:{self.name}"


@runtime_checkable
class EmbeddingsProvider(Protocol):
    """Boundary contract for embedding providers."""

    def describe_model(self, model: str) -> EmbeddingProviderModel:
        """Return provider metadata for ``model``."""

    def capabilities(
        self,
        *,
        model: str | None = None,
    ) -> EmbeddingProviderCaps:
        """Return provider-level or model-specific capability hints."""

    def embed_texts(
        self,
        texts: Sequence[str],
        *,
        model: str,
        options: EmbedRequestOptions,
    ) -> EmbeddingMatrix:
        """Embed ``texts`` using ``model`` honoring ``options`` constraints."""


@runtime_checkable
class Embedder(Protocol):
    """What the sync driver consumes: one vector per text, same order."""

    def embed(self, texts: Sequence[str]) -> EmbeddingMatrix: ...

    def dimension(self) -> int: ...


class BoundEmbedder:
    """Pin a provider to one model and request options."""

    def __init__(
        self,
        provider: EmbeddingsProvider,
        *,
        model: str,
        options: EmbedRequestOptions,
        vector_size: int | None = None,
    ) -> None:
        self._provider = provider
        self._model = model
        self._options = options
        self._vector_size = vector_size

    @property
    def model(self) -> str:
        return self._model

    def embed(self, texts: Sequence[str]) -> EmbeddingMatrix:
        vectors = self._provider.embed_texts(
            texts,
            model=self._model,
            options=self._options,
        )
        if len(vectors) != len(texts):
            raise EmbeddingError(
                (
                    "Provider returned "
                    f"{len(vectors)} vectors for {len(texts)} inputs."
                ),
                provider=type(self._provider).__name__,
                model=self._model,
            )
        return vectors

    def dimension(self) -> int:
        """Return the configured size, else ask the provider."""

        if self._vector_size is not None:
            return self._vector_size
        described = self._provider.describe_model(self._model)
        if described.dim is None:
            raise EmbeddingError(
                "Unable to determine embedding dimension; set "
                "embeddings.vector_size in kbsync.toml.",
                provider=described.provider,
                model=described.name,
            )
        self._vector_size = described.dim
        return described.dim


@dataclass(frozen=True, slots=True)
class ProviderInitContext:
    """Construction context supplied to provider factories."""

    logger: Logger
    config: Mapping[str, object] | None = None

    def __post_init__(self) -> None:
        config = dict(self.config or {})
        object.__setattr__(self, "config", MappingProxyType(config))


ProviderFactory = Callable[[ProviderInitContext], EmbeddingsProvider]
"""Factory callable responsible for instantiating providers."""


class ProviderRegistryError(RuntimeError):
    """Base error type raised when interacting with the provider registry."""


class ProviderNotRegisteredError(ProviderRegistryError):
    """Raised when a provider lookup fails for the requested key."""


class ProviderRegistry:
    """Mutable registry mapping provider keys to factory callables."""

    def __init__(
        self,
        factories: Mapping[str, ProviderFactory] | None = None,
    ) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        if factories:
            for key, factory in factories.items():
                self.register(key, factory)

    @staticmethod
    def _normalize_key(key: str) -> str:
        normalized = key.strip().lower()
        if not normalized:
            raise ValueError("provider key cannot be empty")
        return normalized

    def register(self, key: str, factory: ProviderFactory) -> None:
        """Register ``factory`` under ``key``; errors if key already present."""

        normalized = self._normalize_key(key)
        if normalized in self._factories:
            raise ProviderRegistryError(
                f"Provider {normalized!r} already registered",
            )
        self._factories[normalized] = factory

    def get_factory(self, key: str) -> ProviderFactory:
        """Return the factory registered for ``key`` or raise."""

        normalized = self._normalize_key(key)
        try:
            return self._factories[normalized]
        except KeyError as exc:
            known = ", ".join(sorted(self._factories)) or "none"
            raise ProviderNotRegisteredError(
                f"No provider registered under key {normalized!r} "
                f"(known: {known})",
            ) from exc

    def create(
        self,
        key: str,
        *,
        logger: Logger,
        config: Mapping[str, object] | None = None,
    ) -> EmbeddingsProvider:
        """Instantiate the provider registered under ``key``."""

        factory = self.get_factory(key)
        context = ProviderInitContext(logger=logger, config=config)
        return factory(context)

    def snapshot(self) -> Mapping[str, ProviderFactory]:
        """Return an immutable view of registered provider factories."""

        return MappingProxyType(dict(self._factories))


if TYPE_CHECKING:  # pragma: no cover - type checker imports only
    from .openai import OpenAIEmbeddingsProvider, openai_provider_factory


def __getattr__(name: str) -> object:
    if name in {"OpenAIEmbeddingsProvider", "openai_provider_factory"}:
        from . import openai

        return getattr(openai, name)

    message = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(message)


def _load_openai_factory() -> ProviderFactory:
    from .openai import openai_provider_factory

    return openai_provider_factory


def register_builtin_providers(
    registry: ProviderRegistry,
) -> ProviderRegistry:
    """Register built-in embedding providers on ``registry``."""

    if "openai" not in registry.snapshot():
        registry.register("openai", _load_openai_factory())
    return registry


def create_default_provider_registry() -> ProviderRegistry:
    """Return a provider registry populated with built-in providers."""

    registry = ProviderRegistry()
    register_builtin_providers(registry)
    return registry
