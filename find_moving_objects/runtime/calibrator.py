"""
Bank size calibration.

During warm-up the calibrator measures the rate at which scans arrive and
derives how many scans the window must hold to cover ``target_seconds``. The
calibration happens once; after that the result is fixed for the lifetime of
the process.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from find_moving_objects.scoring.confidence import ConfidenceScorer
from find_moving_objects.utils.logger import get_logger

MIN_NR_SCANS = 2


class CalibrationState(str, Enum):
    WARMUP = "WARMUP"
    STEADY = "STEADY"


@dataclass(frozen=True)
class CalibrationResult:
    target_seconds: float
    hz: float
    messages: int
    elapsed_s: float
    nr_scans_in_bank: int

    @property
    def root_1(self) -> float:
        return self.target_seconds * 0.6

    @property
    def root_2(self) -> float:
        return self.target_seconds * 1.4

    def scorer(self) -> ConfidenceScorer:
        return ConfidenceScorer.from_target_seconds(self.target_seconds)


def nr_scans_for_rate(target_seconds: float, hz: float) -> int:
    """
    Scans needed to span ``target_seconds`` at ``hz``: an exactly integral
    product is bumped by one, anything else is rounded up, never below 2.
    """
    if not math.isfinite(hz) or not math.isfinite(target_seconds):
        raise ValueError(f"Cannot size bank for target={target_seconds} hz={hz}")
    nr_scans = target_seconds * hz
    if float(nr_scans).is_integer():
        n = int(nr_scans) + 1
    else:
        n = math.ceil(nr_scans)
    return max(MIN_NR_SCANS, n)


class BankSizeCalibrator:
    def __init__(
        self,
        target_seconds: float,
        max_messages: int = 100,
        max_time: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "",
    ):
        if target_seconds <= 0:
            raise ValueError(f"target_seconds must be positive, got {target_seconds}")
        self.target_seconds = float(target_seconds)
        self.max_messages = int(max_messages)
        self.max_time = float(max_time)
        self.clock = clock
        self.name = name
        self.logger = get_logger(__name__)

        self.state = CalibrationState.WARMUP
        self.result: Optional[CalibrationResult] = None
        self.received_messages = 0
        self._start_time: Optional[float] = None

    @property
    def done(self) -> bool:
        return self.state is CalibrationState.STEADY

    def observe(self, now: Optional[float] = None) -> bool:
        """Register one message arrival. Returns True once calibration has completed."""
        if self.done:
            return True
        now = self.clock() if now is None else float(now)

        # The first message only starts the clock.
        if self._start_time is None:
            self._start_time = now
            return False

        self.received_messages += 1
        elapsed = now - self._start_time
        if elapsed <= 0:
            return False
        if self.max_time <= elapsed or self.max_messages <= self.received_messages:
            self._finish(elapsed)
            return True
        return False

    def _finish(self, elapsed: float) -> None:
        hz = self.received_messages / elapsed
        self.result = CalibrationResult(
            target_seconds=self.target_seconds,
            hz=hz,
            messages=self.received_messages,
            elapsed_s=elapsed,
            nr_scans_in_bank=nr_scans_for_rate(self.target_seconds, hz),
        )
        self.state = CalibrationState.STEADY
        self.logger.info(
            "Stream %s has rate %.2fHz (based on %d msgs during %.2f seconds)",
            self.name or "<scan>",
            hz,
            self.received_messages,
            elapsed,
        )
        self.logger.info("Optimized bank size is %d", self.result.nr_scans_in_bank)
