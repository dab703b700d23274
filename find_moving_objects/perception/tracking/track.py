from __future__ import annotations

from dataclasses import dataclass

from find_moving_objects.utils.types import CandidateObject


@dataclass
class TrackMatch:
    old: CandidateObject
    new: CandidateObject
    distance: float  # between closest points, in the common frame
