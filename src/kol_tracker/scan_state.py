"""
Process-wide scan state and Helius credit estimate.

The API reads the state for ``/api/scanner/status``; the ingestion
pipeline is the only writer.  ``try_begin`` is a synchronous
check-and-set, so under a single event loop two scan requests can never
both observe ``idle``.
"""

from __future__ import annotations

import logging
from enum import Enum

from .models import ScanStatus

logger = logging.getLogger(__name__)


class ScanPhase(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DONE = "done"


class CreditCounter:
    """Cumulative estimate of Helius credits spent by this process."""

    def __init__(self) -> None:
        self.used = 0
        self._logged = 0

    def add(self, credits: int) -> None:
        self.used += credits

    def since_last_log(self) -> int:
        """Credits spent since the previous call (for the periodic log)."""
        delta = self.used - self._logged
        self._logged = self.used
        return delta


class ScanState:
    def __init__(self, credits: CreditCounter | None = None) -> None:
        self.phase = ScanPhase.IDLE
        self.done = 0
        self.total = 0
        self.credits = credits or CreditCounter()

    @property
    def is_scanning(self) -> bool:
        return self.phase == ScanPhase.SCANNING

    def try_begin(self, total: int) -> bool:
        """Enter ``scanning`` unless a scan is already running."""
        if self.phase == ScanPhase.SCANNING:
            return False
        self.phase = ScanPhase.SCANNING
        self.done = 0
        self.total = total
        return True

    def advance(self, n: int = 1) -> None:
        self.done = min(self.done + n, self.total)

    def finish(self) -> None:
        self.phase = ScanPhase.DONE
        self.done = self.total

    def snapshot(self) -> ScanStatus:
        if self.phase == ScanPhase.SCANNING:
            progress = f"{self.done}/{self.total}"
        else:
            progress = self.phase.value
        return ScanStatus(
            phase=self.phase.value,
            done=self.done,
            total=self.total,
            progress=progress,
            credits_used=self.credits.used,
        )
