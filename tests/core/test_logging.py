"""Tests for :mod:`kbsync.core.logging`."""

from __future__ import annotations

import gzip
import io
import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import pytest
import structlog
from rich.console import Console
from rich.logging import RichHandler

from kbsync.core.logging import configure_logging, get_logger


def _clear_root_handlers() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Ensure each test runs with a clean logging configuration."""

    _clear_root_handlers()
    yield
    _clear_root_handlers()
    structlog.reset_defaults()


def _build_console() -> Console:
    return Console(file=io.StringIO(), width=120, record=True)


def test_configure_logging_writes_json_lines(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"

    log_file = configure_logging(
        level="debug",
        workspace_path=workspace,
        console=_build_console(),
    )

    root = logging.getLogger()
    assert len([h for h in root.handlers if isinstance(h, RichHandler)]) == 1
    assert (
        len([h for h in root.handlers if isinstance(h, TimedRotatingFileHandler)])
        == 1
    )

    logger = get_logger(__name__, component="sync")
    logger.info("sync-pass-start", scope="all")
    for handler in root.handlers:
        handler.flush()

    assert log_file == workspace.resolve() / "logs" / "kbsync.log"
    payload = json.loads(log_file.read_text(encoding="utf-8").strip())
    assert payload["event"] == "sync-pass-start"
    assert payload["component"] == "sync"
    assert payload["scope"] == "all"
    assert payload["level"] == "info"


def test_configure_logging_without_workspace_omits_file_handler() -> None:
    assert configure_logging(level="info", console=_build_console()) is None

    root = logging.getLogger()
    assert any(isinstance(h, RichHandler) for h in root.handlers)
    assert not any(
        isinstance(h, TimedRotatingFileHandler) for h in root.handlers
    )


def test_configure_logging_rejects_unknown_level() -> None:
    with pytest.raises(ValueError):
        configure_logging(level="chatty", console=_build_console())


def test_http_client_loggers_are_quieted() -> None:
    configure_logging(level="debug", console=_build_console())

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("notion_client").level == logging.WARNING


def test_configure_logging_rotates_with_compression(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"

    configure_logging(
        level="warning",
        workspace_path=workspace,
        console=_build_console(),
    )
    root = logging.getLogger()
    file_handler = next(
        h for h in root.handlers if isinstance(h, TimedRotatingFileHandler)
    )

    get_logger("rotate", task="rotation").warning("pre-rotation", sample=True)
    for handler in root.handlers:
        handler.flush()

    file_handler.doRollover()

    archives = sorted((workspace / "logs").glob("kbsync.log.*.gz"))
    assert archives, "Expected a compressed log archive after rollover"
    with gzip.open(archives[-1], "rt", encoding="utf-8") as fh:
        archived = fh.read()
    assert "pre-rotation" in archived
