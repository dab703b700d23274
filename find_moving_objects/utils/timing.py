from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional


@dataclass
class StageTimer:
    """Lightweight per-stage timing for a single detection cycle."""

    start_ts: float = field(default_factory=time.perf_counter)
    stages_ms: Dict[str, float] = field(default_factory=dict)

    def mark(self, stage_name: str, stage_start_ts: float) -> None:
        self.stages_ms[stage_name] = self.stages_ms.get(stage_name, 0.0) + (time.perf_counter() - stage_start_ts) * 1000.0

    @contextmanager
    def stage(self, stage_name: str) -> Iterator[None]:
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.mark(stage_name, t0)

    def total_ms(self) -> float:
        return (time.perf_counter() - self.start_ts) * 1000.0


@dataclass
class RateMeter:
    """Exponential moving average message-rate estimator (Hz)."""

    smoothing: float = 0.9
    hz: float = 0.0
    _last_ts: Optional[float] = None

    def tick(self, now: Optional[float] = None) -> float:
        now = time.perf_counter() if now is None else now
        if self._last_ts is None:
            self._last_ts = now
            return self.hz
        dt = max(now - self._last_ts, 1e-9)
        inst_hz = 1.0 / dt
        self.hz = inst_hz if self.hz <= 0 else (self.smoothing * self.hz + (1 - self.smoothing) * inst_hz)
        self._last_ts = now
        return self.hz
