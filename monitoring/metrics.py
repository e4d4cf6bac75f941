"""monitoring/metrics.py

Crank metrics counters and periodic reporter.

Counters live for the process lifetime and are owned by whoever builds
the keeper; executor and scheduler get them by reference. The blockhash
error streak is the only counter that ever goes back to zero.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from monitoring.exporters import export_run_metrics

logger = logging.getLogger(__name__)


@dataclass
class CrankMetrics:
    """Process-wide crank counters."""
    success_count: int = 0
    failure_count: int = 0
    last_success_slot: int = 0
    consecutive_blockhash_errors: int = 0

    def record_success(self, slot: int) -> None:
        self.success_count += 1
        self.last_success_slot = slot
        self.consecutive_blockhash_errors = 0

    def record_failure(self) -> None:
        self.failure_count += 1

    def set_blockhash_streak(self, streak: int) -> None:
        self.consecutive_blockhash_errors = streak

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def summary(self) -> str:
        return (
            f"[METRICS] Successes: {self.success_count} | Failures: {self.failure_count} "
            f"| Last Success Slot: {self.last_success_slot}"
        )


class MetricsReporter:
    """Logs (and optionally appends to CSV) a metrics snapshot every `interval_seconds`."""

    def __init__(
        self,
        metrics: CrankMetrics,
        interval_seconds: float = 60.0,
        csv_path: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.metrics = metrics
        self.interval_seconds = interval_seconds
        self.csv_path = csv_path
        self._clock = clock
        self._last_report: Optional[float] = None

    def report(self) -> None:
        logger.info(self.metrics.summary())
        self._last_report = self._clock()
        if self.csv_path:
            export_run_metrics(self.metrics.to_dict(), self.csv_path)

    def maybe_report(self) -> bool:
        """Report if the interval has elapsed since the last report.

        Returns:
            True if a report was emitted.
        """
        now = self._clock()
        if self._last_report is not None and now - self._last_report < self.interval_seconds:
            return False
        self.report()
        return True
