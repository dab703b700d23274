from __future__ import annotations

from dataclasses import dataclass
from typing import List

from find_moving_objects.perception.segmentation.base_segmenter import BaseSegmenter
from find_moving_objects.utils.types import BankArgument, CandidateObject, ScanRecord


@dataclass
class SegmenterConfig:
    edge_max_delta_range: float = 0.15
    min_nr_points: int = 3
    max_distance: float = 6.5


class RangeJumpSegmenter(BaseSegmenter):
    """
    Splits a scan into objects at range discontinuities.

    A reading is usable when it is finite, inside [range_min, range_max] and not
    farther than ``max_distance``. An object is a run of usable readings where
    consecutive ranges differ by at most ``edge_max_delta_range``; runs shorter
    than ``min_nr_points`` are discarded.
    """

    def __init__(self, cfg: SegmenterConfig | None = None):
        self.cfg = cfg or SegmenterConfig()

    @classmethod
    def from_argument(cls, arg: BankArgument) -> "RangeJumpSegmenter":
        return cls(
            SegmenterConfig(
                edge_max_delta_range=arg.object_threshold_edge_max_delta_range,
                min_nr_points=arg.object_threshold_min_nr_points,
                max_distance=arg.object_threshold_max_distance,
            )
        )

    def segment(self, scan: ScanRecord) -> List[CandidateObject]:
        ranges = scan.ranges
        valid = scan.valid_mask(self.cfg.max_distance)
        objects: List[CandidateObject] = []

        start = None
        for i in range(len(scan)):
            if not valid[i]:
                if start is not None:
                    self._close(scan, start, i - 1, objects)
                    start = None
                continue
            if start is None:
                start = i
            elif abs(ranges[i] - ranges[i - 1]) > self.cfg.edge_max_delta_range:
                self._close(scan, start, i - 1, objects)
                start = i

        if start is not None:
            self._close(scan, start, len(scan) - 1, objects)
        return objects

    def _close(self, scan: ScanRecord, first: int, last: int, out: List[CandidateObject]) -> None:
        if last - first + 1 < self.cfg.min_nr_points:
            return
        out.append(CandidateObject.from_span(scan, first, last))
