"""Configuration models and loaders for :mod:`kbsync`."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
import os
from pathlib import Path
from typing import Any, Mapping

import tomllib
import tomlkit
from pydantic import BaseModel, Field, ValidationError, field_validator

from kbsync.resources import get_resource
from kbsync.store.models import DistanceMetric


class ConfigError(RuntimeError):
    """Raised when the configuration stack cannot be read or validated."""


class WorkspaceSettings(BaseModel):
    """Workspace-level configuration values."""

    root: Path = Field(
        default_factory=lambda: Path("~/.kbsync").expanduser(),
        description="Absolute path to the workspace root.",
    )

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
    }

    @field_validator("root")
    @classmethod
    def _expand_root(cls, value: Path) -> Path:
        return value.expanduser()


class NotionSettings(BaseModel):
    """Content source settings for the Notion workspace."""

    timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="HTTP timeout applied to Notion API calls.",
    )

    model_config = {"frozen": True}


class QdrantSettings(BaseModel):
    """Vector store connection and collection settings."""

    url: str = Field(
        default="http://localhost:6333",
        description="Qdrant endpoint URL (or ':memory:' for local mode).",
    )
    collection: str = Field(
        default="aiportal-data",
        min_length=1,
        description="Collection holding document vectors and sync state.",
    )
    distance: DistanceMetric = Field(
        default=DistanceMetric.COSINE,
        description="Distance metric used when creating the collection.",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Request timeout for Qdrant calls.",
    )

    model_config = {
        "frozen": True,
        "str_strip_whitespace": True,
    }

    @field_validator("distance", mode="before")
    @classmethod
    def _coerce_distance(cls, value: Any) -> Any:
        if isinstance(value, str):
            return DistanceMetric.parse(value)
        return value


class EmbeddingSettings(BaseModel):
    """Embedding provider selection."""

    provider: str = Field(
        default="openai",
        description="Registered embedding provider key.",
    )
    model: str = Field(
        default="text-embedding-3-large",
        description="Embedding model name passed to the provider.",
    )
    max_batch_size: int = Field(
        default=64,
        ge=1,
        description="Upper bound on texts sent per embedding request.",
    )
    vector_size: int | None = Field(
        default=None,
        ge=1,
        description=(
            "Explicit vector dimension; ``null`` asks the provider to "
            "describe the model."
        ),
    )

    model_config = {
        "frozen": True,
        "str_strip_whitespace": True,
    }

    @field_validator("provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("Embedding provider cannot be blank.")
        return normalized


class SyncSettings(BaseModel):
    """Synchronization bookkeeping settings."""

    state_record_id: int = Field(
        default=999_999,
        ge=0,
        description=(
            "Reserved point id of the sentinel record holding sync state."
        ),
    )
    interval_seconds: float = Field(
        default=600.0,
        gt=0.0,
        description="Delay between passes when running as a daemon.",
    )

    model_config = {"frozen": True}


class AppConfig(BaseModel):
    """Root configuration for the :mod:`kbsync` application."""

    workspace_settings: WorkspaceSettings = Field(
        default_factory=WorkspaceSettings,
        alias="workspace",
    )
    log_level: str = Field(
        default="INFO",
        description="Default logging level for the application runtime.",
    )
    notion: NotionSettings = Field(default_factory=NotionSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)

    model_config = {
        "str_strip_whitespace": True,
        "validate_assignment": True,
        "populate_by_name": True,
    }

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def workspace(self) -> Path:
        """Return the configured workspace root path."""

        return self.workspace_settings.root


DEFAULTS_RESOURCE_NAME = "kbsync.defaults.toml"

# Environment variable -> dotted config key.
_ENV_OVERRIDES: Mapping[str, str] = {
    "KBSYNC_WORKSPACE": "workspace.root",
    "KBSYNC_LOG_LEVEL": "log_level",
    "QDRANT_URL": "qdrant.url",
    "QDRANT_COLLECTION": "qdrant.collection",
    "OPENAI_EMBED_MODEL": "embeddings.model",
}


def read_packaged_defaults_text() -> str:
    """Return the raw packaged defaults TOML content."""

    resource = get_resource(DEFAULTS_RESOURCE_NAME)
    return resource.read_text(encoding="utf-8")


def load_packaged_defaults() -> dict[str, Any]:
    """Load the packaged defaults as a plain dictionary.

    Example:
        >>> load_packaged_defaults()["qdrant"]["collection"]
        'aiportal-data'
    """

    return tomllib.loads(read_packaged_defaults_text())


def _deep_merge(
    base: Mapping[str, Any],
    overlay: Mapping[str, Any],
) -> dict[str, Any]:
    """Recursively merge ``overlay`` into ``base`` returning a new dict."""

    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], MappingABC)
            and isinstance(value, MappingABC)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _set_dotted(target: dict[str, Any], dotted: str, value: Any) -> None:
    head, _, tail = dotted.partition(".")
    if not tail:
        target[head] = value
        return
    child = target.setdefault(head, {})
    _set_dotted(child, tail, value)


def env_config_from_environ(
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Translate supported environment variables into a config layer.

    Example:
        >>> env_config_from_environ({"QDRANT_URL": "http://qdrant:6333"})
        {'qdrant': {'url': 'http://qdrant:6333'}}
    """

    source = os.environ if environ is None else environ
    layer: dict[str, Any] = {}
    for variable, dotted in _ENV_OVERRIDES.items():
        value = source.get(variable)
        if value:
            _set_dotted(layer, dotted, value)
    return layer


def load_config(
    *,
    defaults: Mapping[str, Any],
    user_config: Mapping[str, Any] | None = None,
    env_config: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Load configuration according to the precedence stack.

    Args:
        defaults: Packaged defaults shipped with the application.
        user_config: Parsed workspace ``kbsync.toml`` content.
        env_config: Settings derived from environment variables.
        cli_overrides: Settings supplied via CLI flags.

    Returns:
        A validated :class:`AppConfig` instance.

    Raises:
        ConfigError: If the merged stack fails validation.
    """

    stack = dict(defaults)
    for layer in (user_config, env_config, cli_overrides):
        if layer:
            stack = _deep_merge(stack, layer)

    workspace_raw = stack.get("workspace")
    if isinstance(workspace_raw, (str, Path)):
        stack["workspace"] = {"root": workspace_raw}

    try:
        return AppConfig(**stack)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def load_workspace_config(
    config_path: Path,
    *,
    environ: Mapping[str, str] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> AppConfig:
    """Read ``config_path`` (if present) and resolve the full stack.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """

    user_config: dict[str, Any] | None = None
    if config_path.exists():
        try:
            user_config = tomllib.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigError(
                f"Failed to read workspace config at {config_path}: {exc}"
            ) from exc

    return load_config(
        defaults=load_packaged_defaults(),
        user_config=user_config,
        env_config=env_config_from_environ(environ),
        cli_overrides=cli_overrides,
    )


def render_user_config(
    config: AppConfig,
    *,
    include_defaults: bool = True,
) -> str:
    """Render a ``kbsync.toml`` document for users to customize."""

    document = tomlkit.document()

    if include_defaults:
        document.add(tomlkit.comment("Generated by kbsync init"))
        document.add(
            tomlkit.comment(
                "Precedence: CLI flags > env vars > kbsync.toml > defaults"
            )
        )
        document.add(tomlkit.comment("Secrets come from the environment:"))
        document.add(
            tomlkit.comment(
                "  NOTION_API_KEY, OPENAI_API_KEY, QDRANT_API_KEY"
            )
        )
        document.add(tomlkit.comment("Environment overrides:"))
        for variable in sorted(_ENV_OVERRIDES):
            document.add(
                tomlkit.comment(f"  {variable} -> {_ENV_OVERRIDES[variable]}")
            )
        document.add(tomlkit.nl())

    document["log_level"] = config.log_level

    workspace_table = tomlkit.table()
    workspace_table["root"] = str(config.workspace)
    document["workspace"] = workspace_table

    notion_table = tomlkit.table()
    notion_table["timeout_seconds"] = config.notion.timeout_seconds
    document["notion"] = notion_table

    qdrant_table = tomlkit.table()
    qdrant_table["url"] = config.qdrant.url
    qdrant_table["collection"] = config.qdrant.collection
    qdrant_table["distance"] = config.qdrant.distance.value
    qdrant_table["timeout_seconds"] = config.qdrant.timeout_seconds
    document["qdrant"] = qdrant_table

    embeddings_table = tomlkit.table()
    embeddings_table["provider"] = config.embeddings.provider
    embeddings_table["model"] = config.embeddings.model
    embeddings_table["max_batch_size"] = config.embeddings.max_batch_size
    if config.embeddings.vector_size is not None:
        embeddings_table["vector_size"] = config.embeddings.vector_size
    document["embeddings"] = embeddings_table

    sync_table = tomlkit.table()
    sync_table["state_record_id"] = config.sync.state_record_id
    sync_table["interval_seconds"] = config.sync.interval_seconds
    document["sync"] = sync_table

    return tomlkit.dumps(document)


__all__ = [
    "AppConfig",
    "ConfigError",
    "DEFAULTS_RESOURCE_NAME",
    "EmbeddingSettings",
    "NotionSettings",
    "QdrantSettings",
    "SyncSettings",
    "WorkspaceSettings",
    "env_config_from_environ",
    "load_config",
    "load_packaged_defaults",
    "load_workspace_config",
    "read_packaged_defaults_text",
    "render_user_config",
]
