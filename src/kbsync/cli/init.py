"""Helpers for the ``kbsync init`` command."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping

from kbsync.core.config import (
    AppConfig,
    env_config_from_environ,
    load_config,
    load_packaged_defaults,
    render_user_config,
)
from kbsync.core.paths import WorkspacePaths, resolve_workspace


def _ensure_directories(paths: WorkspacePaths) -> None:
    """Create the workspace directories if they are missing."""

    paths.workspace.mkdir(parents=True, exist_ok=True)
    paths.logs_dir.mkdir(parents=True, exist_ok=True)


def init_workspace(
    *,
    workspace: Path,
    refresh: bool = False,
    log_level: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Bootstrap the workspace directory and its ``kbsync.toml``.

    An existing ``kbsync.toml`` is left untouched unless ``refresh`` is set.

    Example:
        >>> from pathlib import Path
        >>> config = init_workspace(workspace=Path("/tmp/kbsync-example"))
        >>> str(config.workspace).endswith("kbsync-example")
        True

    Args:
        workspace: Target directory for the workspace.
        refresh: Whether to overwrite an existing ``kbsync.toml``.
        log_level: Optional override for the configured logging level.
        environ: Environment used for overrides (defaults to ``os.environ``).

    Returns:
        The resolved configuration after applying overrides.
    """

    paths = resolve_workspace(workspace_override=workspace)
    _ensure_directories(paths)

    cli_overrides: dict[str, object] = {"workspace": str(paths.workspace)}
    if log_level:
        cli_overrides["log_level"] = log_level

    config = load_config(
        defaults=load_packaged_defaults(),
        env_config=env_config_from_environ(environ),
        cli_overrides=cli_overrides,
    )

    config_path = paths.config_file
    if refresh or not config_path.exists():
        config_path.write_text(render_user_config(config), encoding="utf-8")

    return config


__all__ = ["init_workspace"]
