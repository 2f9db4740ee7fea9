"""Cycle scheduling.

The scheduler is a small state machine:

    IDLE -> RUNNING -> (SLEEPING -> RUNNING)* -> STOPPED

Running once (``check_interval: 0``) and running forever share the same loop;
only the decision to continue after a cycle differs. Sleeping waits on a
threading.Event so stop() interrupts it immediately, while a cycle that is
already running is allowed to finish.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .engine import ReconciliationEngine
from .errors import ValidationError
from .fetchers import FetcherStatus
from .models import Outcome, ReconciliationResult, SyncConfig
from .resolver import DesiredStateResolver

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


@dataclass
class CycleReport:
    """Everything that happened in one cycle."""

    results: List[ReconciliationResult] = field(default_factory=list)
    validation_errors: List[ValidationError] = field(default_factory=list)
    duration: float = 0.0
    unhealthy_fetchers: Dict[str, FetcherStatus] = field(default_factory=dict)

    @property
    def counts(self) -> Dict[Outcome, int]:
        counter = Counter(r.outcome for r in self.results)
        return {outcome: counter.get(outcome, 0) for outcome in Outcome}

    @property
    def failures(self) -> List[ReconciliationResult]:
        return [r for r in self.results if r.failed]

    @property
    def has_failures(self) -> bool:
        return bool(self.validation_errors) or any(r.failed for r in self.results)

    @property
    def has_fatal_errors(self) -> bool:
        if self.validation_errors:
            return True
        return any(getattr(r.error, "fatal", False) for r in self.failures)

    def log_summary(self) -> None:
        for error in self.validation_errors:
            logger.error(f"Invalid record {error}")
        for result in self.failures:
            level = logging.ERROR if getattr(result.error, "fatal", False) else logging.WARNING
            logger.log(level, f"Failed {result.target}: {result.error_class}: {result.detail}")
        for key, status in self.unhealthy_fetchers.items():
            fallback = f"serving last known {status.last_value}" if status.last_value else "no address cached"
            logger.warning(
                f"Fetcher {key} unhealthy after {status.consecutive_failures} failure(s), "
                f"{fallback}: {status.last_error}"
            )

        counts = self.counts
        summary = ", ".join(f"{counts[o]} {o.value}" for o in Outcome)
        invalid = f", {len(self.validation_errors)} invalid" if self.validation_errors else ""
        level = logging.WARNING if self.has_failures else logging.INFO
        logger.log(
            level,
            f"Cycle finished in {self.duration:.1f}s: {len(self.results)} target(s): {summary}{invalid}",
        )


class Scheduler:
    def __init__(
        self,
        config: SyncConfig,
        resolver: DesiredStateResolver,
        engine: ReconciliationEngine,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.resolver = resolver
        self.engine = engine
        self._stop_event = stop_event or threading.Event()
        self._state = SchedulerState.IDLE
        self.last_report: Optional[CycleReport] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    def stop(self) -> None:
        """Request shutdown. Safe to call from a signal handler."""
        self._stop_event.set()

    def run_cycle(self) -> CycleReport:
        """Resolve desired state and reconcile it once."""
        started = time.monotonic()
        targets, validation_errors = self.resolver.resolve(self.config)
        results = self.engine.run_cycle(targets, cancel_event=self._stop_event)
        return CycleReport(
            results=results,
            validation_errors=validation_errors,
            duration=time.monotonic() - started,
            unhealthy_fetchers=self.resolver.unhealthy_fetchers(),
        )

    def run(self) -> int:
        """Run cycles until done; return the process exit status."""
        interval = self.config.check_interval

        while True:
            self._state = SchedulerState.RUNNING
            report = self.run_cycle()
            self.last_report = report
            report.log_summary()

            if interval == 0:
                self._state = SchedulerState.STOPPED
                return 1 if report.has_failures else 0

            if self._stop_event.is_set():
                break
            self._state = SchedulerState.SLEEPING
            logger.debug(f"Sleeping {interval}s until next cycle")
            if self._stop_event.wait(interval):
                break

        self._state = SchedulerState.STOPPED
        logger.info("Shutting down gracefully...")
        return 1 if report.has_fatal_errors else 0
