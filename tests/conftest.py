from __future__ import annotations

from typing import Iterable, Tuple

import numpy as np
import pytest

from find_moving_objects.fusion.transforms import RigidTransform, TransformBuffer
from find_moving_objects.utils.types import BankArgument, ScanRecord

NR_READINGS = 100
ANGLE_INCREMENT = 0.01


def object_ranges(spans: Iterable[Tuple[int, int, float]], n: int = NR_READINGS) -> np.ndarray:
    """nan everywhere except ``(first, last, range)`` spans (inclusive)."""
    ranges = np.full(n, np.nan)
    for first, last, r in spans:
        ranges[first : last + 1] = r
    return ranges


@pytest.fixture
def make_scan():
    def _make(ranges, stamp: float = 0.0, frame_id: str = "laser", **kwargs) -> ScanRecord:
        params = dict(angle_min=0.0, angle_increment=ANGLE_INCREMENT, range_min=0.05, range_max=30.0)
        params.update(kwargs)
        return ScanRecord(ranges=np.asarray(ranges, dtype=float), stamp=stamp, frame_id=frame_id, **params)

    return _make


@pytest.fixture
def approaching_scans(make_scan):
    """One object over indices [10, 20] closing in 5.0 -> 4.0 -> 3.0 m over 0.5 s."""
    return [make_scan(object_ranges([(10, 20, r)]), stamp=t) for r, t in ((5.0, 0.0), (4.0, 0.25), (3.0, 0.5))]


@pytest.fixture
def static_tree() -> TransformBuffer:
    """map -> odom -> base_link -> laser, all identity and valid at any stamp."""
    buf = TransformBuffer()
    buf.set_static("map", "odom", RigidTransform.identity())
    buf.set_static("odom", "base_link", RigidTransform.identity())
    buf.set_static("base_link", "laser", RigidTransform.identity())
    return buf


@pytest.fixture
def bank_arg() -> BankArgument:
    return BankArgument(nr_scans_in_bank=3)
