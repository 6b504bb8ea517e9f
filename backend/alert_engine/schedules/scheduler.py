"""Background scheduler loop driving ScheduleRunner.run_due on a fixed interval."""

import logging
import threading
from datetime import UTC, datetime
from typing import Any

from .runner import ScheduleRunner

logger = logging.getLogger(__name__)


class AlertScheduler:
    """Daemon thread that ticks every ``interval_seconds`` until stopped.

    A tick runs every Due schedule through the runner. Manual runs go through
    the same runner and the same per-schedule locks, so both paths can overlap
    safely.
    """

    def __init__(self, runner: ScheduleRunner, interval_seconds: float = 300.0) -> None:
        self.runner = runner
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._last_sent = 0

    def tick(self) -> int:
        """Run all Due schedules once. Returns the number of schedules run."""
        with self._lock:
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
        summaries = self.runner.run_due()
        ran = [s for s in summaries if not (s.coalesced or s.not_due or s.paused)]
        self._last_sent = sum(s.sent for s in ran)
        if ran:
            logger.info("Scheduler tick: %d schedules run, %d messages sent", len(ran), self._last_sent)
        return len(ran)

    def start(self) -> None:
        if self.is_running:
            logger.warning("AlertScheduler already started")
            return
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("AlertScheduler started (interval=%ss)", self.interval_seconds)
            while not self._stop_event.wait(self.interval_seconds):
                try:
                    self.tick()
                except Exception:
                    logger.exception("Scheduler tick failed")
            logger.info("AlertScheduler stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="alert-scheduler")
        self._thread.start()

    def stop(self) -> None:
        """Stop between ticks, waiting up to 5 seconds for a tick in progress."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=5.0)
        if self._thread.is_alive():
            logger.warning("Scheduler thread did not stop cleanly")
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def health(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "tick_count": self._tick_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "last_tick_sent": self._last_sent,
        }
