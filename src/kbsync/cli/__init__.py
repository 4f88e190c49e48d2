"""Command-line interface for :mod:`kbsync`.

This module exposes the Typer application behind the ``kbsync`` console
script: ``kbsync init`` bootstraps a workspace and ``kbsync sync ...`` runs
and inspects synchronization.

Example:
    >>> import typer
    >>> from kbsync.cli import create_app
    >>> app = create_app()
    >>> isinstance(app, typer.Typer)
    True
"""

from __future__ import annotations

import os
from pathlib import Path

import typer

from kbsync.cli.init import init_workspace
from kbsync.cli.sync import create_sync_app
from kbsync.core.config import AppConfig, ConfigError, DEFAULTS_RESOURCE_NAME
from kbsync.core.logging import configure_logging, get_logger
from kbsync.core.paths import CONFIG_FILENAME, resolve_workspace

_app_help = (
    "Incrementally sync Notion databases into a Qdrant collection."
    "\n\n"
    "Use `kbsync init` to bootstrap a workspace and populate `kbsync.toml`."
)


def _emit_workspace_summary(
    *,
    config: AppConfig,
    refresh: bool,
    existing: bool,
) -> None:
    """Print a human-friendly summary of bootstrap results."""

    typer.secho("Workspace initialized", fg=typer.colors.GREEN, bold=True)
    typer.echo(f"  workspace: {config.workspace}")
    typer.echo(f"  config: {config.workspace / CONFIG_FILENAME}")
    typer.echo(f"  defaults: packaged resource ({DEFAULTS_RESOURCE_NAME})")
    typer.echo(f"  log level: {config.log_level}")
    typer.echo(f"  qdrant: {config.qdrant.url} ({config.qdrant.collection})")
    typer.echo(f"  embeddings: {config.embeddings.provider}:{config.embeddings.model}")

    if existing and not refresh:
        typer.echo("  note: existing config detected; file left untouched")
    elif refresh:
        typer.echo("  note: config regenerated from current settings")


def create_app() -> "typer.Typer":
    """Return the Typer application powering the ``kbsync`` CLI."""

    app = typer.Typer(
        help=_app_help,
        no_args_is_help=True,
        rich_markup_mode="rich",
        invoke_without_command=False,
        cls=typer.core.TyperGroup,
    )

    app.add_typer(create_sync_app(), name="sync")

    @app.callback()
    def main_callback() -> None:
        """Top-level CLI callback ensuring subcommands are dispatched."""

        return None

    @app.command(
        "init",
        help="Bootstrap a workspace and seed kbsync.toml.",
    )
    def init_command(
        workspace: Path | None = typer.Option(
            None,
            "--workspace",
            "-w",
            help=(
                "Override the workspace directory (defaults to $HOME/.kbsync "
                "or KBSYNC_WORKSPACE)."
            ),
        ),
        refresh: bool = typer.Option(
            False,
            "--refresh",
            help="Overwrite an existing kbsync.toml with current settings.",
        ),
        log_level: str | None = typer.Option(
            None,
            "--log-level",
            "-l",
            help="Override the logging level (DEBUG/INFO/WARNING/ERROR).",
        ),
    ) -> None:
        """Initialize (or refresh) the local workspace.

        Example:
            >>> from typer.testing import CliRunner
            >>> runner = CliRunner()
            >>> app = create_app()
            >>> result = runner.invoke(app, ["init", "--help"])
            >>> result.exit_code
            0
        """

        env_workspace = os.environ.get("KBSYNC_WORKSPACE")
        env_workspace_path = (
            Path(env_workspace).expanduser() if env_workspace else None
        )

        try:
            paths = resolve_workspace(
                workspace_override=workspace,
                env_override=env_workspace_path,
            )
        except ValueError as exc:
            typer.secho(f"Workspace error: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc

        existing = paths.config_file.exists()

        try:
            config = init_workspace(
                workspace=paths.workspace,
                refresh=refresh,
                log_level=log_level,
            )
        except (ConfigError, OSError) as exc:
            message = f"Failed to initialize workspace: {exc}"
            typer.secho(message, fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc

        try:
            configure_logging(
                level=config.log_level,
                workspace_path=config.workspace,
            )
        except ValueError as exc:
            typer.secho(f"Invalid log level: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1) from exc
        logger = get_logger(__name__, command="init")
        logger.info(
            "init-complete",
            workspace=str(config.workspace),
            refresh=refresh,
            existing=existing,
        )

        _emit_workspace_summary(
            config=config,
            refresh=refresh,
            existing=existing,
        )

    return app


__all__ = ["create_app"]
