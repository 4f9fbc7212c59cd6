"""Recalculation Scheduler — debounced, superseding background passes.

Every trigger bumps a generation counter and (re)schedules a single
APScheduler job a short debounce window ahead, so a burst of edits
collapses into one pass. A pass that finishes after a newer trigger has
arrived is stale: the callback is told its generation and must check
``is_current`` before publishing results (last write wins).

When the scheduler has not been started (tests, scripts) triggers run
synchronously.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from tradejournal.config import settings
from tradejournal.utils.logger import get_logger

logger = get_logger("RecalcScheduler")

JOB_ID = "recalculate"


class RecalcScheduler:
    """Debounces recalculation requests onto a background thread."""

    def __init__(
        self,
        run: Callable[[int], None],
        debounce_seconds: float | None = None,
    ) -> None:
        self._run = run
        self._debounce = debounce_seconds
        self._generation = 0
        self._lock = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None
        self.is_running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> dict:
        if self.is_running:
            return {"status": "already_running"}
        self._scheduler = BackgroundScheduler()
        self._scheduler.start()
        self.is_running = True
        logger.info("Started")
        return {"status": "started"}

    def stop(self) -> dict:
        if not self.is_running or not self._scheduler:
            return {"status": "not_running"}
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self.is_running = False
        logger.info("Stopped")
        return {"status": "stopped"}

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def request(self, reason: str = "") -> int:
        """Ask for a recalculation; returns the generation it was assigned."""
        with self._lock:
            self._generation += 1
            generation = self._generation

        if not self.is_running or not self._scheduler:
            self._execute(generation)
            return generation

        delay = settings.RECALC_DEBOUNCE_SECONDS if self._debounce is None else self._debounce
        self._scheduler.add_job(
            self._execute,
            DateTrigger(run_date=datetime.now() + timedelta(seconds=delay)),
            args=[generation],
            id=JOB_ID,
            name=f"Recalculate ({reason or 'change'})",
            replace_existing=True,
            max_instances=3,
            misfire_grace_time=None,
        )
        logger.debug("Queued generation %d (%s)", generation, reason or "change")
        return generation

    def _execute(self, generation: int) -> None:
        if not self.is_current(generation):
            logger.info(
                "Generation %d superseded by %d, skipping",
                generation, self._generation,
            )
            return
        try:
            self._run(generation)
        except Exception:
            logger.error("Recalculation %d failed", generation, exc_info=True)
