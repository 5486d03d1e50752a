# finance_tracker/scheduler.py
from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

from finance_tracker.core.clock import Clock, as_utc, utc_now
from finance_tracker.core.errors import PersistenceError, RunInProgressError
from finance_tracker.processor import RecurringProcessor

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    status: str
    timestamp: str
    processed: int = 0
    failed: int = 0
    failed_categories: List[str] = field(default_factory=list)
    error: Optional[str] = None


class RecurringScheduler:
    """Fire the recurring processor once a day at ``run_at`` (UTC).

    At most one run is active at a time. A firing that finds a run in
    progress, whether from the timer or from :meth:`run_now`, is skipped.
    """

    def __init__(
        self,
        processor: RecurringProcessor,
        run_at: time = time(0, 0),
        clock: Clock = utc_now,
    ) -> None:
        self.processor = processor
        self.run_at = run_at
        self.clock = clock
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_result: Optional[RunResult] = None
        self._last_fired_on: Optional[date] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def last_result(self) -> Optional[RunResult]:
        return self._last_result

    def run_now(self) -> RunResult:
        if not self._lock.acquire(blocking=False):
            raise RunInProgressError("Recurring run already in progress")

        try:
            timestamp = self.clock().isoformat()
            try:
                outcome = self.processor.process_recurring_categories()
            except PersistenceError as exc:
                logger.exception("Recurring run failed to load due categories")
                result = RunResult(status="failure", timestamp=timestamp, error=str(exc))
            else:
                result = RunResult(
                    status="success" if not outcome.failed else "partial",
                    timestamp=timestamp,
                    processed=len(outcome.processed),
                    failed=len(outcome.failed),
                    failed_categories=list(outcome.failed),
                )
            self._last_result = result
            return result
        finally:
            self._lock.release()

    def next_run_at(self, now: datetime) -> datetime:
        """The next ``run_at`` after *now* whose date has not fired yet."""
        now = as_utc(now)
        target = now.replace(
            hour=self.run_at.hour,
            minute=self.run_at.minute,
            second=0,
            microsecond=0,
        )
        if target <= now:
            target += timedelta(days=1)
        if target.date() == self._last_fired_on:
            target += timedelta(days=1)
        return target

    def seconds_until_next_run(self, now: Optional[datetime] = None) -> float:
        now = as_utc(now or self.clock())
        return (self.next_run_at(now) - now).total_seconds()

    def _fire(self) -> None:
        try:
            self.run_now()
        except RunInProgressError:
            logger.warning("Previous recurring run still active; skipping this firing")
        except Exception:
            logger.exception("Error processing recurring transactions")

    def _loop(self) -> None:
        while True:
            now = as_utc(self.clock())
            target = self.next_run_at(now)
            # The wait is monotonic; the wall clock may still read before target on wake-up.
            if self._stop.wait(max((target - now).total_seconds(), 0)):
                return
            self._last_fired_on = target.date()
            logger.info("Starting recurring transaction processing for %s...", target.date().isoformat())
            worker = threading.Thread(target=self._fire, name="recurring-run", daemon=True)
            worker.start()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="recurring-scheduler", daemon=True)
        self._thread.start()
        logger.info("Recurring scheduler started; daily run at %s UTC", self.run_at.strftime("%H:%M"))

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def status_payload(self) -> Dict[str, object]:
        return {
            "running": self.is_running,
            "runAt": self.run_at.strftime("%H:%M"),
            "lastResult": asdict(self._last_result) if self._last_result else None,
        }
