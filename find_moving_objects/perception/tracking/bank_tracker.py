from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from find_moving_objects.fusion.transforms import RigidTransform
from find_moving_objects.perception.tracking.track import TrackMatch
from find_moving_objects.utils.types import BankArgument, CandidateObject


@dataclass
class TrackerConfig:
    max_delta_distance: float = 2.5  # closest-point displacement allowed across the window
    max_delta_width_in_points: int = 15


class BankTracker:
    """
    Matches objects of the newest scan in the window with objects of the oldest.

    Closest points are compared in a common frame (the fixed frame when both
    transforms are known, otherwise the sensor frame). Matching is greedy
    nearest-neighbour and one-to-one: new objects are visited in angle order
    and an old object, once taken, is not offered again.
    """

    def __init__(self, cfg: TrackerConfig | None = None):
        self.cfg = cfg or TrackerConfig()

    @classmethod
    def from_argument(cls, arg: BankArgument) -> "BankTracker":
        return cls(
            TrackerConfig(
                max_delta_distance=arg.object_threshold_bank_tracking_max_delta_distance,
                max_delta_width_in_points=arg.object_threshold_max_delta_width_in_points,
            )
        )

    def match(
        self,
        old_objects: Sequence[CandidateObject],
        new_objects: Sequence[CandidateObject],
        old_transform: Optional[RigidTransform] = None,
        new_transform: Optional[RigidTransform] = None,
    ) -> List[TrackMatch]:
        if not old_objects or not new_objects:
            return []

        old_pts = np.array([o.closest_point for o in old_objects])
        new_pts = np.array([o.closest_point for o in new_objects])
        if old_transform is not None and new_transform is not None:
            old_pts = old_transform.apply(old_pts)
            new_pts = new_transform.apply(new_pts)

        # (new, old) distance and width matrices
        dist = np.linalg.norm(new_pts[:, None, :] - old_pts[None, :, :], axis=2)
        width_delta = np.abs(
            np.array([o.nr_points for o in new_objects])[:, None] - np.array([o.nr_points for o in old_objects])[None, :]
        )
        gate = (dist <= self.cfg.max_delta_distance) & (width_delta <= self.cfg.max_delta_width_in_points)

        matches: List[TrackMatch] = []
        used = np.zeros(len(old_objects), dtype=bool)
        for n, new_obj in enumerate(new_objects):
            candidates = np.flatnonzero(gate[n] & ~used)
            if candidates.size == 0:
                continue
            best = int(candidates[np.argmin(dist[n, candidates])])
            used[best] = True
            matches.append(TrackMatch(old=old_objects[best], new=new_obj, distance=float(dist[n, best])))
        return matches
