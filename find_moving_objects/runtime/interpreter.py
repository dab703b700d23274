"""
Ingress adapters between a scan transport and the banks.

``LaserScanInterpreter`` serves one scan stream, ``LaserScanArrayInterpreter``
serves synchronized arrays of scans with one independent bank per position in
the array. Both optionally run a one-shot bank size calibration first.
"""
from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from find_moving_objects.fusion.transforms import TransformProvider
from find_moving_objects.runtime.bank import Bank, BankStatus
from find_moving_objects.runtime.calibrator import BankSizeCalibrator
from find_moving_objects.runtime.health_monitor import HealthMonitor
from find_moving_objects.scoring.confidence import ConfidenceScorer
from find_moving_objects.utils.errors import BankError
from find_moving_objects.utils.logger import get_logger
from find_moving_objects.utils.types import BankArgument, MovingObject, ScanRecord


class IngressState(str, Enum):
    WARMUP = "WARMUP"  # scans only feed the rate probe
    STEADY = "STEADY"  # scans feed the bank(s)


@dataclass
class InterpreterConfig:
    optimize_nr_scans_in_bank: float = 0.0  # target window length in seconds, 0 disables calibration
    max_messages: int = 100
    max_time: float = 5.0
    parallel: bool = False
    max_workers: Optional[int] = None
    lookup_timeout: float = 0.0
    watchdog_ms: float = 0.0

    @classmethod
    def from_config(cls, section: Optional[Dict[str, Any]]) -> "InterpreterConfig":
        section = dict(section or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(section) - known)
        if unknown:
            raise ValueError(f"Unknown interpreter parameters: {', '.join(unknown)}")
        return cls(**section)


class _Ingress:
    def __init__(
        self,
        arg: BankArgument,
        cfg: InterpreterConfig | None = None,
        transforms: Optional[TransformProvider] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "scan",
    ):
        self.arg = arg.validate()
        self.cfg = cfg or InterpreterConfig()
        self.transforms = transforms
        self.name = name
        self.logger = get_logger(__name__)
        self.scorer = ConfidenceScorer()
        self.calibrator: Optional[BankSizeCalibrator] = None
        self.state = IngressState.STEADY
        if self.cfg.optimize_nr_scans_in_bank != 0.0:
            self.calibrator = BankSizeCalibrator(
                target_seconds=self.cfg.optimize_nr_scans_in_bank,
                max_messages=self.cfg.max_messages,
                max_time=self.cfg.max_time,
                clock=clock,
                name=name,
            )
            self.state = IngressState.WARMUP

    def _consumed_by_warmup(self, now: Optional[float]) -> bool:
        """True while scans are routed to the rate probe (including the one that completes it)."""
        if self.state is IngressState.STEADY:
            return False
        if self.calibrator.observe(now):
            result = self.calibrator.result
            self.arg = replace(self.arg, nr_scans_in_bank=result.nr_scans_in_bank)
            self.scorer = result.scorer()
            self.state = IngressState.STEADY
        return True

    def _make_bank(self, name: str) -> Bank:
        return Bank(
            transforms=self.transforms,
            scorer=self.scorer,
            name=name,
            lookup_timeout=self.cfg.lookup_timeout,
        )


def _cycle(bank: Bank, arg: BankArgument, scan: ScanRecord, health: HealthMonitor) -> List[MovingObject]:
    if not bank.initialized:
        # A failed init leaves the bank untouched; the next scan retries.
        bank.init(arg, scan)
        return []
    if bank.add_scan(scan) is not BankStatus.OK:
        return []
    t0 = time.perf_counter()
    objects = bank.find_moving_objects()
    health.check_latency((time.perf_counter() - t0) * 1000.0)
    return objects


class LaserScanInterpreter(_Ingress):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.bank: Optional[Bank] = None
        self.health = HealthMonitor(self.cfg.watchdog_ms, name=self.name)

    @property
    def monitors(self) -> List[HealthMonitor]:
        return [self.health]

    def on_scan(self, scan: ScanRecord, now: Optional[float] = None) -> List[MovingObject]:
        if self._consumed_by_warmup(now):
            return []
        if self.bank is None:
            self.logger.debug("LaserScan sensor is using frame: %s", scan.frame_id)
            self.bank = self._make_bank(self.name)
        return _cycle(self.bank, self.arg, scan, self.health)


class LaserScanArrayInterpreter(_Ingress):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.banks: List[Bank] = []
        self.arguments: List[BankArgument] = []
        self.monitors: List[HealthMonitor] = []
        self.faulted: Set[int] = set()
        self._executor: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> "LaserScanArrayInterpreter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _create_banks(self, nr_streams: int) -> None:
        for i in range(nr_streams):
            suffix = f"_{i}"
            self.arguments.append(self.arg.with_suffix(suffix))
            self.banks.append(self._make_bank(f"{self.name}{suffix}"))
            self.monitors.append(HealthMonitor(self.cfg.watchdog_ms, name=f"{self.name}{suffix}"))
        self.logger.info("Created %d banks for scan array %s", nr_streams, self.name)

    def on_scans(self, scans: Sequence[ScanRecord], now: Optional[float] = None) -> List[List[MovingObject]]:
        if self._consumed_by_warmup(now):
            return [[] for _ in scans]
        if not self.banks:
            if scans:
                self.logger.debug("Scan array sensor is using frame: %s", scans[0].frame_id)
            self._create_banks(len(scans))
        if len(scans) != len(self.banks):
            self.logger.warning("Scan array has %d scans, expected %d", len(scans), len(self.banks))

        n = min(len(scans), len(self.banks))
        if self.cfg.parallel and n > 1:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.cfg.max_workers, thread_name_prefix="bank")
            results = list(self._executor.map(self._process, range(n), scans[:n]))
        else:
            results = [self._process(i, scans[i]) for i in range(n)]
        return results + [[] for _ in range(len(scans) - n)]

    def _process(self, index: int, scan: ScanRecord) -> List[MovingObject]:
        if index in self.faulted:
            return []
        try:
            return _cycle(self.banks[index], self.arguments[index], scan, self.monitors[index])
        except BankError as exc:
            # Fatal to this stream only; the other banks keep running.
            self.logger.error("Bank %s faulted, stream %d disabled: %s", self.banks[index].name, index, exc)
            self.faulted.add(index)
            return []
