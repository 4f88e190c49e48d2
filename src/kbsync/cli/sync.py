"""Typer command group for sync operations."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import NoReturn

import typer

from kbsync.content import ContentSource, ContentSourceError, build_notion_source
from kbsync.core.config import AppConfig, ConfigError, load_workspace_config
from kbsync.core.logging import Logger, configure_logging, get_logger
from kbsync.core.paths import WorkspacePaths, resolve_workspace
from kbsync.embeddings import (
    BoundEmbedder,
    EmbedRequestOptions,
    Embedder,
    EmbeddingError,
    ProviderRegistryError,
    create_default_provider_registry,
)
from kbsync.store import VectorStore, VectorStoreError, build_qdrant_store
from kbsync.sync import (
    SyncDaemon,
    SyncDriver,
    SyncError,
    SyncReport,
    SyncStateStore,
)

_FAILURES = (
    SyncError,
    ContentSourceError,
    VectorStoreError,
    EmbeddingError,
    ProviderRegistryError,
)


def build_embedder(config: AppConfig, *, logger: Logger) -> Embedder:
    """Return the configured embedding provider bound to one model."""

    settings = config.embeddings
    registry = create_default_provider_registry()
    provider = registry.create(
        settings.provider,
        logger=logger.bind(component="embeddings"),
    )
    return BoundEmbedder(
        provider,
        model=settings.model,
        options=EmbedRequestOptions(max_batch_size=settings.max_batch_size),
        vector_size=settings.vector_size,
    )


@dataclass(slots=True)
class SyncCLIContext:
    """Shared context carried across `kbsync sync` commands.

    Collaborators are built on first use so commands that never touch
    Notion (``status``, ``clear``) do not need its credentials.
    """

    paths: WorkspacePaths
    config: AppConfig
    logger: Logger
    _store: VectorStore | None = field(default=None, repr=False)
    _embedder: Embedder | None = field(default=None, repr=False)
    _source: ContentSource | None = field(default=None, repr=False)

    @property
    def collection(self) -> str:
        return self.config.qdrant.collection

    def store(self) -> VectorStore:
        if self._store is None:
            self._store = build_qdrant_store(
                self.config.qdrant,
                logger=self.logger.bind(component="qdrant"),
            )
        return self._store

    def embedder(self) -> Embedder:
        if self._embedder is None:
            self._embedder = build_embedder(self.config, logger=self.logger)
        return self._embedder

    def source(self) -> ContentSource:
        if self._source is None:
            self._source = build_notion_source(
                self.config.notion,
                logger=self.logger.bind(component="notion"),
            )
        return self._source

    def state(self) -> SyncStateStore:
        return SyncStateStore(
            self.store(),
            collection=self.collection,
            vector_size=self.embedder().dimension(),
            record_id=self.config.sync.state_record_id,
            logger=self.logger.bind(component="sync-state"),
        )

    def driver(self) -> SyncDriver:
        return SyncDriver(
            source=self.source(),
            embedder=self.embedder(),
            store=self.store(),
            state=self.state(),
            collection=self.collection,
            distance=self.config.qdrant.distance,
            logger=self.logger.bind(component="sync"),
        )


_sync_app = typer.Typer(
    name="sync",
    help=(
        "Synchronize Notion databases into a Qdrant collection.\n\n"
        "Each page is embedded at most once until the sync state is cleared; "
        "progress is stored in a reserved record of the collection."
    ),
    no_args_is_help=True,
    invoke_without_command=False,
)


def _resolve_workspace_override(workspace: Path | None) -> WorkspacePaths:
    env_workspace = os.environ.get("KBSYNC_WORKSPACE")
    env_override = Path(env_workspace).expanduser() if env_workspace else None
    return resolve_workspace(
        workspace_override=workspace,
        env_override=env_override,
    )


def _require_context(ctx: typer.Context) -> SyncCLIContext:
    context = getattr(ctx, "obj", None)
    if not isinstance(context, SyncCLIContext):
        typer.secho(
            "Internal error: sync context not initialized.",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    return context


def _handle_service_failure(
    action: str,
    error: Exception,
    *,
    logger: Logger,
) -> NoReturn:
    typer.secho(
        f"Sync {action} failed: {error}",
        fg=typer.colors.RED,
    )
    logger.error(
        "sync-action-failed",
        action=action,
        error=str(error),
        error_type=error.__class__.__name__,
    )
    raise typer.Exit(code=1) from error


def _render_report(report: SyncReport) -> None:
    title = "Dry run complete" if report.dry_run else "Sync complete"
    typer.secho(title, fg=typer.colors.GREEN, bold=True)
    for partition in report.partitions:
        typer.secho(f"Partition {partition.partition_name}", fg=typer.colors.CYAN)
        typer.echo(f"  listed: {partition.listed}")
        typer.echo(f"  skipped: {partition.skipped}")
        typer.echo(f"  new documents: {partition.new_documents}")
        if not report.dry_run:
            typer.echo(f"  embedded: {partition.embedded}")
        if partition.failed_ids:
            typer.secho(
                f"  failed: {', '.join(partition.failed_ids)}",
                fg=typer.colors.YELLOW,
            )
    typer.echo(f"New documents: {report.new_documents}")
    if not report.dry_run:
        typer.echo(f"New embeddings: {report.new_embeddings}")


@_sync_app.callback()
def configure_sync_commands(
    ctx: typer.Context,
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        "-w",
        help=(
            "Override workspace directory (defaults to "
            "KBSYNC_WORKSPACE or ~/.kbsync)."
        ),
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        "-l",
        help=(
            "Override log level for sync commands "
            "(defaults to config log_level)."
        ),
    ),
) -> None:
    """Initialize common sync CLI context."""

    try:
        paths = _resolve_workspace_override(workspace)
    except ValueError as exc:
        typer.secho(f"Workspace error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc

    if not paths.config_file.exists():
        typer.secho(
            (
                "Workspace config not found at "
                f"{paths.config_file}. Run `kbsync init` first."
            ),
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)

    try:
        config = load_workspace_config(paths.config_file)
    except ConfigError as exc:
        typer.secho(
            f"Failed to load workspace config: {exc}",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1) from exc

    try:
        configure_logging(
            level=log_level or config.log_level,
            workspace_path=config.workspace,
        )
    except ValueError as exc:
        typer.secho(f"Invalid log level: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    logger = get_logger(__name__, command="sync")
    logger.debug(
        "sync-context-configured",
        workspace=str(config.workspace),
        collection=config.qdrant.collection,
        model=config.embeddings.model,
    )

    ctx.obj = SyncCLIContext(paths=paths, config=config, logger=logger)


@_sync_app.command(
    "run",
    help=(
        "Embed pages not yet recorded in the sync state and upsert them into "
        "the collection. Without --partition every Notion database is synced."
    ),
)
def run_sync(
    ctx: typer.Context,
    partition: str | None = typer.Option(
        None,
        "--partition",
        "-p",
        metavar="NAME",
        help="Sync a single database by name (or id).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="List what would be embedded without embedding or writing.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the pass report as JSON.",
    ),
) -> None:
    """Run one sync pass and report what changed."""

    context = _require_context(ctx)
    try:
        driver = context.driver()
        if partition:
            report = driver.run_partition_sync(partition, dry_run=dry_run)
        else:
            report = driver.run_full_sync(dry_run=dry_run)
    except _FAILURES as exc:
        _handle_service_failure("run", exc, logger=context.logger)

    if json_output:
        typer.echo(json.dumps(report.as_dict(), indent=2, sort_keys=True))
    else:
        _render_report(report)

    context.logger.info(
        "sync-run",
        partition=partition,
        dry_run=dry_run,
        new_documents=report.new_documents,
        new_embeddings=report.new_embeddings,
    )


@_sync_app.command(
    "status",
    help="Show the stored sync state and the collection's point count.",
)
def sync_status(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the status as JSON.",
    ),
) -> None:
    """Render the persisted sync state."""

    context = _require_context(ctx)
    try:
        status = context.state().status()
        store = context.store()
        points = (
            store.count(context.collection)
            if store.exists(context.collection)
            else None
        )
    except _FAILURES as exc:
        _handle_service_failure("status", exc, logger=context.logger)

    payload = status.as_dict()
    payload["collection"] = context.collection
    payload["points"] = points

    if json_output:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    else:
        typer.secho(
            f"Collection {context.collection}",
            fg=typer.colors.CYAN,
            bold=True,
        )
        if points is None:
            typer.secho("  collection does not exist", fg=typer.colors.YELLOW)
        else:
            typer.echo(f"  points: {points}")
        last_sync = "never" if status.never_synced else payload["last_sync_time"]
        typer.echo(f"  last sync: {last_sync}")
        typer.echo(f"  processed pages: {status.processed_count}")
        typer.echo(f"  total documents: {status.total_documents}")
        typer.echo(f"  total embeddings: {status.total_embeddings}")

    context.logger.info("sync-status", json=json_output, points=points)


@_sync_app.command(
    "partitions",
    help="List the Notion databases visible to the integration.",
)
def list_partitions(ctx: typer.Context) -> None:
    """Print each partition's name and id."""

    context = _require_context(ctx)
    try:
        partitions = list(context.source().list_partitions())
    except _FAILURES as exc:
        _handle_service_failure("partitions", exc, logger=context.logger)

    if not partitions:
        typer.secho("No databases found.", fg=typer.colors.YELLOW)
    for item in partitions:
        typer.echo(f"{item.name}\t{item.id}")

    context.logger.info("sync-partitions", count=len(partitions))


@_sync_app.command(
    "clear",
    help=(
        "Reset the sync state so every page is embedded again on the next "
        "run. Stored vectors are kept and overwritten by id."
    ),
)
def clear_state(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip the confirmation prompt.",
    ),
) -> None:
    """Reset the persisted sync state."""

    context = _require_context(ctx)
    if not force:
        typer.confirm(
            f"Clear sync state for collection {context.collection!r}?",
            abort=True,
        )

    try:
        context.state().clear()
    except _FAILURES as exc:
        _handle_service_failure("clear", exc, logger=context.logger)

    typer.secho("Sync state cleared.", fg=typer.colors.GREEN)
    context.logger.info("sync-clear", collection=context.collection)


@_sync_app.command(
    "delete-document",
    help=(
        "Delete one document's point from the collection. The sync state is "
        "not changed; clear it to have the page embedded again."
    ),
)
def delete_document(
    ctx: typer.Context,
    document_id: str = typer.Argument(
        ...,
        metavar="ID",
        help="Document (Notion page) id to delete.",
    ),
) -> None:
    """Remove a single point by id."""

    context = _require_context(ctx)
    if document_id == str(context.config.sync.state_record_id):
        typer.secho(
            "Refusing to delete the sync state record; use `kbsync sync clear`.",
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)

    try:
        context.store().delete(context.collection, [document_id])
    except _FAILURES as exc:
        _handle_service_failure("delete-document", exc, logger=context.logger)

    typer.secho(f"Deleted document {document_id}.", fg=typer.colors.GREEN)
    context.logger.info("sync-delete-document", document_id=document_id)


@_sync_app.command(
    "daemon",
    help="Run full sync passes forever, sleeping between passes.",
)
def run_daemon(
    ctx: typer.Context,
    interval: float | None = typer.Option(
        None,
        "--interval",
        "-i",
        min=1.0,
        help="Seconds between passes (defaults to sync.interval_seconds).",
    ),
    max_cycles: int | None = typer.Option(
        None,
        "--max-cycles",
        min=1,
        help="Stop after this many passes.",
    ),
) -> None:
    """Start the sync loop in the foreground."""

    context = _require_context(ctx)
    try:
        driver = context.driver()
    except _FAILURES as exc:
        _handle_service_failure("daemon", exc, logger=context.logger)

    daemon = SyncDaemon(
        driver,
        interval_seconds=interval or context.config.sync.interval_seconds,
        logger=context.logger.bind(component="daemon"),
    )
    typer.secho(
        f"Syncing every {daemon.interval_seconds:g}s (Ctrl+C to stop).",
        fg=typer.colors.CYAN,
    )
    try:
        cycles = daemon.run(max_cycles=max_cycles)
    except KeyboardInterrupt:
        typer.echo("Stopped.")
        return
    typer.echo(f"Completed {cycles} cycle(s).")


def create_sync_app() -> typer.Typer:
    """Return the Typer app implementing `kbsync sync` commands."""

    return _sync_app


__all__ = ["SyncCLIContext", "build_embedder", "create_sync_app"]
