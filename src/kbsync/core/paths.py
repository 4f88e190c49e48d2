"""Workspace path helpers for :mod:`kbsync`."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

__all__ = [
    "CONFIG_FILENAME",
    "WorkspacePaths",
    "resolve_workspace",
]

CONFIG_FILENAME = "kbsync.toml"


@dataclass(frozen=True, slots=True)
class WorkspacePaths:
    """Resolved locations for a workspace instance.

    Example:
        >>> from pathlib import Path
        >>> paths = WorkspacePaths(
        ...     workspace=Path("/tmp/kbsync"),
        ...     config_file=Path("/tmp/kbsync/kbsync.toml"),
        ...     logs_dir=Path("/tmp/kbsync/logs"),
        ... )
        >>> paths.logs_dir.name
        'logs'
    """

    workspace: Path
    config_file: Path
    logs_dir: Path

    def iter_all(self) -> Iterable[Path]:
        """Yield every path managed within the workspace."""

        yield from (self.workspace, self.config_file, self.logs_dir)

    @classmethod
    def for_root(cls, root: Path) -> "WorkspacePaths":
        """Return the standard layout rooted at ``root`` without resolving."""

        return cls(
            workspace=root,
            config_file=root / CONFIG_FILENAME,
            logs_dir=root / "logs",
        )


def resolve_workspace(
    *,
    workspace_override: Path | None = None,
    env_override: Path | None = None,
) -> WorkspacePaths:
    """Resolve canonical workspace locations.

    Args:
        workspace_override: Optional override provided by CLI flags.
        env_override: Optional override from ``KBSYNC_WORKSPACE``.

    Returns:
        Resolved workspace paths after precedence rules are applied.

    Raises:
        ValueError: If the resolved workspace points to a regular file.
    """

    base = workspace_override or env_override or Path.home() / ".kbsync"
    raw = Path(base).expanduser()
    if raw.is_absolute():
        workspace = raw.resolve(strict=False)
    else:
        workspace = (Path.cwd() / raw).resolve(strict=False)

    if workspace.exists() and workspace.is_file():
        raise ValueError(f"Workspace file path not allowed: {workspace}")

    return WorkspacePaths.for_root(workspace)
