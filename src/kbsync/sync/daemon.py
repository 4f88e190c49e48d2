"""Repeat full sync passes on a fixed delay."""

from __future__ import annotations

import time
from typing import Callable

from kbsync.content import ContentSourceError
from kbsync.core.logging import Logger, get_logger
from kbsync.embeddings import EmbeddingError
from kbsync.store import VectorStoreError

from .driver import SyncDriver
from .errors import SyncError
from .models import SyncReport

__all__ = ["DEFAULT_INTERVAL_SECONDS", "SyncDaemon"]

DEFAULT_INTERVAL_SECONDS = 600.0

_CYCLE_ERRORS = (SyncError, ContentSourceError, VectorStoreError, EmbeddingError)


class SyncDaemon:
    """Run :meth:`SyncDriver.run_full_sync` forever (or ``max_cycles`` times).

    The delay starts after a pass finishes, so passes never overlap. A failed
    pass is logged and the loop carries on; the next pass retries whatever
    was left unmarked.
    """

    def __init__(
        self,
        driver: SyncDriver,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        logger: Logger | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._driver = driver
        self._interval = interval_seconds
        self._sleep = sleep
        self._logger = logger or get_logger(__name__, component="daemon")

    @property
    def interval_seconds(self) -> float:
        return self._interval

    def run_once(self) -> SyncReport | None:
        """Run one pass; return its report, or ``None`` when it failed."""

        try:
            report = self._driver.run_full_sync()
        except _CYCLE_ERRORS as exc:
            self._logger.error(
                "sync-cycle-failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return None
        self._logger.info("sync-cycle-complete", **report.summary())
        return report

    def run(self, *, max_cycles: int | None = None) -> int:
        """Loop until ``max_cycles`` passes ran; return the count."""

        if max_cycles is not None and max_cycles < 1:
            raise ValueError("max_cycles must be >= 1 when provided")

        self._logger.info(
            "sync-daemon-start",
            interval_seconds=self._interval,
            max_cycles=max_cycles,
        )
        cycles = 0
        while True:
            self.run_once()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            self._logger.debug("sync-daemon-sleep", seconds=self._interval)
            self._sleep(self._interval)
        self._logger.info("sync-daemon-stop", cycles=cycles)
        return cycles
