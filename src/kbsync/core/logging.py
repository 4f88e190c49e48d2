"""Logging helpers for :mod:`kbsync`.

Console output goes through Rich while the optional workspace log file
receives one JSON object per line, so a daemon running for days leaves a
greppable trail of sync passes.
"""

from __future__ import annotations

import gzip
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import shutil
from typing import Any, Iterable

from rich.console import Console
from rich.logging import RichHandler
import structlog

Logger = structlog.stdlib.BoundLogger

_CONSOLE_PROCESSOR = structlog.dev.ConsoleRenderer(colors=False)
_FILE_PROCESSOR = structlog.processors.JSONRenderer(sort_keys=True)
_TIMESTAMPER = structlog.processors.TimeStamper(fmt="iso", utc=True)

_ROTATION_BACKUP_COUNT = 14
_DEFAULT_LOG_FILENAME = "kbsync.log"

# HTTP client libraries log every request at INFO; a sync pass issues
# hundreds of them.
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "notion_client")


def _normalize_level(level: str) -> int:
    """Return the logging module level constant for ``level``.

    Raises:
        ValueError: If the level name is not recognized.
    """

    normalized = level.strip().upper()
    value = logging.getLevelName(normalized)
    if isinstance(value, str):  # ``getLevelName`` echoes unknown names.
        raise ValueError(f"Unsupported log level: {level!r}")
    return value


def _reset_root_logger(
    root: logging.Logger,
    handlers: Iterable[logging.Handler],
) -> None:
    for handler in list(root.handlers):
        root.removeHandler(handler)
        try:
            handler.close()
        except Exception:  # pragma: no cover
            pass
    for handler in handlers:
        root.addHandler(handler)


def _quiet_third_party(level: int) -> None:
    floor = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)


def _foreign_pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _TIMESTAMPER,
    ]


def _configure_structlog() -> None:
    structlog.reset_defaults()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            _TIMESTAMPER,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _gzip_rotator(source: str, dest: str) -> None:
    """Compress rotated log file ``source`` into ``dest`` using gzip."""

    with open(source, "rb") as src, gzip.open(dest, "wb") as target:
        shutil.copyfileobj(src, target)
    Path(source).unlink(missing_ok=True)


def _build_file_handler(log_file: Path, level: int) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        log_file,
        when="midnight",
        backupCount=_ROTATION_BACKUP_COUNT,
        utc=True,
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(level)
    handler.suffix = "%Y-%m-%d"
    handler.namer = lambda name: f"{name}.gz"
    handler.rotator = _gzip_rotator
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_FILE_PROCESSOR,
            foreign_pre_chain=_foreign_pre_chain(),
        )
    )
    return handler


def _build_console_handler(
    level: int,
    console: Console | None = None,
) -> RichHandler:
    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        enable_link_path=False,
        log_time_format="%Y-%m-%d %H:%M:%S",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_CONSOLE_PROCESSOR,
            foreign_pre_chain=_foreign_pre_chain(),
        )
    )
    return handler


def configure_logging(
    *,
    level: str = "INFO",
    workspace_path: str | Path | None = None,
    console: Console | None = None,
) -> Path | None:
    """Configure structlog alongside stdlib logging.

    Args:
        level: Log level name to apply to the root logger (case-insensitive).
        workspace_path: Optional workspace root; when given, JSON logs are
            written to ``<workspace>/logs/kbsync.log``.
        console: Optional Rich console override, primarily for testing.

    Returns:
        The log file path when file logging is enabled, otherwise ``None``.

    Raises:
        ValueError: If ``level`` is not a recognized log level name.
    """

    log_level = _normalize_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    _configure_structlog()

    handlers: list[logging.Handler] = [
        _build_console_handler(log_level, console=console)
    ]

    log_file: Path | None = None
    if workspace_path is not None:
        workspace = Path(workspace_path).expanduser().resolve(strict=False)
        log_dir = workspace / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / _DEFAULT_LOG_FILENAME
        handlers.append(_build_file_handler(log_file, log_level))

    _reset_root_logger(root_logger, handlers)
    _quiet_third_party(log_level)

    logging.captureWarnings(True)
    return log_file


def get_logger(name: str | None = None, **initial_context: Any) -> Logger:
    """Return a structured logger bound to an optional context.

    Example:
        >>> logger = get_logger(__name__, component="sync-driver")
        >>> isinstance(logger, structlog.stdlib.BoundLogger)
        True
    """

    return structlog.get_logger(name).bind(**initial_context)


__all__ = ["Logger", "configure_logging", "get_logger"]
