from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from find_moving_objects.utils.errors import BankConfigurationError

# Frames a moving object can be expressed in. "sensor" is the scan's own frame.
FRAME_KEYS = ("map", "fixed", "base")
VELOCITY_FRAMES = ("sensor",) + FRAME_KEYS


@dataclass(frozen=True, eq=False)
class ScanRecord:
    """One planar ranging scan. Ranges are copied into a read-only array."""

    ranges: np.ndarray
    angle_min: float
    angle_increment: float
    range_min: float
    range_max: float
    stamp: float
    frame_id: str = "laser"

    def __post_init__(self):
        ranges = np.array(self.ranges, dtype=float).reshape(-1)
        ranges.setflags(write=False)
        object.__setattr__(self, "ranges", ranges)

    def __len__(self) -> int:
        return int(self.ranges.shape[0])

    def is_well_formed(self) -> bool:
        return (
            len(self) > 0
            and math.isfinite(self.stamp)
            and math.isfinite(self.angle_increment)
            and self.angle_increment > 0.0
            and math.isfinite(self.angle_min)
            and bool(self.frame_id)
        )

    def angle_at(self, index: int) -> float:
        return self.angle_min + index * self.angle_increment

    def angles(self) -> np.ndarray:
        return self.angle_min + np.arange(len(self)) * self.angle_increment

    def valid_mask(self, max_distance: Optional[float] = None) -> np.ndarray:
        r = self.ranges
        with np.errstate(invalid="ignore"):
            mask = np.isfinite(r) & (r >= self.range_min) & (r <= self.range_max)
            if max_distance is not None:
                mask &= r <= max_distance
        return mask

    def is_valid(self, index: int) -> bool:
        r = float(self.ranges[index])
        return math.isfinite(r) and self.range_min <= r <= self.range_max

    def points(self) -> np.ndarray:
        """Cartesian (N, 2) points in the sensor frame; invalid readings give nan/inf rows."""
        a = self.angles()
        return np.column_stack((self.ranges * np.cos(a), self.ranges * np.sin(a)))

    def point_at(self, index: int) -> np.ndarray:
        a = self.angle_at(index)
        r = float(self.ranges[index])
        return np.array([r * math.cos(a), r * math.sin(a)])

    def with_ranges(self, ranges: Sequence[float]) -> "ScanRecord":
        return replace(self, ranges=np.asarray(ranges, dtype=float))

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ScanRecord":
        ranges = [np.nan if r is None else r for r in d.get("ranges", [])]
        return cls(
            ranges=np.asarray(ranges, dtype=float),
            angle_min=float(d.get("angle_min", 0.0)),
            angle_increment=float(d.get("angle_increment", 0.0)),
            range_min=float(d.get("range_min", 0.0)),
            range_max=float(d.get("range_max", math.inf)),
            stamp=float(d.get("stamp", math.nan)),
            frame_id=str(d.get("frame_id", "laser")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stamp": self.stamp,
            "frame_id": self.frame_id,
            "angle_min": self.angle_min,
            "angle_increment": self.angle_increment,
            "range_min": self.range_min,
            "range_max": self.range_max,
            "ranges": [float(r) if math.isfinite(r) else None for r in self.ranges],
        }


@dataclass(frozen=True, eq=False)
class CandidateObject:
    """A contiguous run of valid scan points hypothesized to be one physical object."""

    first_index: int
    last_index: int
    points: np.ndarray  # (N, 2), sensor frame
    ranges: np.ndarray
    angle_begin: float
    angle_end: float
    seen_width: float  # angular extent in radians
    width_m: float  # chord between first and last point
    closest_index: int
    closest_point: np.ndarray
    closest_distance: float
    stamp: float
    frame_id: str

    @classmethod
    def from_span(cls, scan: ScanRecord, first: int, last: int) -> "CandidateObject":
        ranges = np.array(scan.ranges[first : last + 1])
        angles = scan.angle_min + np.arange(first, last + 1) * scan.angle_increment
        points = np.column_stack((ranges * np.cos(angles), ranges * np.sin(angles)))
        k = int(np.argmin(ranges))
        return cls(
            first_index=first,
            last_index=last,
            points=points,
            ranges=ranges,
            angle_begin=float(angles[0]),
            angle_end=float(angles[-1]),
            seen_width=(last - first) * scan.angle_increment,
            width_m=float(np.linalg.norm(points[-1] - points[0])),
            closest_index=first + k,
            closest_point=points[k].copy(),
            closest_distance=float(ranges[k]),
            stamp=scan.stamp,
            frame_id=scan.frame_id,
        )

    @property
    def nr_points(self) -> int:
        return self.last_index - self.first_index + 1


@dataclass
class MovingObject:
    old: CandidateObject
    new: CandidateObject
    stamp_old: float
    stamp_new: float
    dt: float
    velocity_frame: str
    position: np.ndarray  # new closest point, velocity frame
    old_position: np.ndarray  # old closest point, velocity frame
    delta_position: np.ndarray
    velocity: np.ndarray
    velocity_sensor_frame: np.ndarray
    positions: Dict[str, Optional[np.ndarray]] = field(default_factory=dict)
    confidence: float = 0.0
    transforms: Optional[Any] = None  # TransformFlags of the cycle

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.velocity))

    @property
    def velocity_normalized(self) -> np.ndarray:
        speed = self.speed
        if speed <= 0.0:
            return np.zeros(2)
        return self.velocity / speed

    @property
    def seen_width(self) -> float:
        return self.new.seen_width

    @property
    def old_seen_width(self) -> float:
        return self.old.seen_width

    @property
    def width_m(self) -> float:
        return self.new.width_m

    def to_dict(self) -> Dict[str, Any]:
        def vec(v):
            return None if v is None else [float(x) for x in v]

        return {
            "stamp_old": self.stamp_old,
            "stamp_new": self.stamp_new,
            "dt": self.dt,
            "frame_id": self.new.frame_id,
            "angle_begin": self.new.angle_begin,
            "angle_end": self.new.angle_end,
            "nr_points": self.new.nr_points,
            "seen_width": self.seen_width,
            "old_seen_width": self.old_seen_width,
            "width_m": self.width_m,
            "closest_distance": self.new.closest_distance,
            "velocity_frame": self.velocity_frame,
            "position": vec(self.position),
            "delta_position": vec(self.delta_position),
            "velocity": vec(self.velocity),
            "velocity_normalized": vec(self.velocity_normalized),
            "speed": self.speed,
            "positions": {k: vec(v) for k, v in self.positions.items()},
            "confidence": self.confidence,
            "transforms": asdict(self.transforms) if self.transforms is not None else None,
        }


# Count fields; YAML or CLI overrides may deliver them as integral floats.
_INTEGER_FIELDS = (
    "nr_scans_in_bank",
    "object_threshold_min_nr_points",
    "object_threshold_max_delta_width_in_points",
)


# Topic / namespace strings are opaque to the engine and only suffixed for arrays.
# topic_objects stays shared: every stream publishes its objects to one topic.
_SUFFIXED_FIELDS = (
    "topic_ema",
    "topic_objects_closest_point_markers",
    "topic_objects_velocity_arrows",
    "topic_objects_delta_position_lines",
    "topic_objects_width_lines",
    "velocity_arrow_ns",
    "delta_position_line_ns",
    "width_line_ns",
    "node_name_suffix",
)


@dataclass(frozen=True)
class BankArgument:
    nr_scans_in_bank: int = 11
    ema_alpha: float = 1.0
    object_threshold_edge_max_delta_range: float = 0.15
    object_threshold_min_nr_points: int = 3
    object_threshold_max_distance: float = 6.5
    object_threshold_min_speed: float = 0.1
    object_threshold_max_delta_width_in_points: int = 15
    object_threshold_bank_tracking_max_delta_distance: float = 2.5
    object_threshold_min_confidence: float = 0.67
    base_confidence: float = 0.3

    map_frame: str = "map"
    fixed_frame: str = "odom"
    base_frame: str = "base_link"
    velocity_frame: str = "fixed"

    publish_ema: bool = False
    publish_objects: bool = True
    publish_objects_closest_point_markers: bool = True
    publish_objects_velocity_arrows: bool = True
    publish_objects_delta_position_lines: bool = False
    publish_objects_width_lines: bool = False
    velocity_arrows_use_full_gray_scale: bool = False

    topic_ema: str = "ema"
    topic_objects: str = "moving_objects"
    topic_objects_closest_point_markers: str = "objects_closest_point_markers"
    topic_objects_velocity_arrows: str = "objects_velocity_arrows"
    topic_objects_delta_position_lines: str = "objects_delta_position_lines"
    topic_objects_width_lines: str = "objects_width_lines"
    velocity_arrow_ns: str = "velocity_arrow_ns"
    delta_position_line_ns: str = "delta_position_line_ns"
    width_line_ns: str = "width_line_ns"
    node_name_suffix: str = ""

    def validate(self) -> "BankArgument":
        for name in _INTEGER_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise BankConfigurationError(f"{name} must be an integer, got {value!r}")
        if self.nr_scans_in_bank < 2:
            raise BankConfigurationError(f"nr_scans_in_bank must be an integer >= 2, got {self.nr_scans_in_bank}")
        if not (0.0 < self.ema_alpha <= 1.0):
            raise BankConfigurationError(f"ema_alpha must be in (0, 1], got {self.ema_alpha}")
        if self.object_threshold_min_nr_points < 1:
            raise BankConfigurationError("object_threshold_min_nr_points must be >= 1")
        for name in (
            "object_threshold_edge_max_delta_range",
            "object_threshold_max_distance",
            "object_threshold_min_speed",
            "object_threshold_max_delta_width_in_points",
            "object_threshold_bank_tracking_max_delta_distance",
        ):
            if getattr(self, name) < 0:
                raise BankConfigurationError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.velocity_frame not in VELOCITY_FRAMES:
            raise BankConfigurationError(f"velocity_frame must be one of {VELOCITY_FRAMES}, got {self.velocity_frame!r}")
        for name in ("map_frame", "fixed_frame", "base_frame"):
            if not getattr(self, name):
                raise BankConfigurationError(f"{name} must not be empty")
        return self

    def frame_name(self, key: str, sensor_frame: str = "") -> str:
        if key == "sensor":
            return sensor_frame
        return {"map": self.map_frame, "fixed": self.fixed_frame, "base": self.base_frame}[key]

    def with_suffix(self, suffix: str) -> "BankArgument":
        return replace(self, **{name: getattr(self, name) + suffix for name in _SUFFIXED_FIELDS})

    @classmethod
    def from_config(cls, section: Optional[Dict[str, Any]]) -> "BankArgument":
        section = dict(section or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(section) - known)
        if unknown:
            raise BankConfigurationError(f"Unknown bank parameters: {', '.join(unknown)}")
        for name in _INTEGER_FIELDS:
            value = section.get(name)
            if isinstance(value, float) and value.is_integer():
                section[name] = int(value)
        return cls(**section).validate()


@dataclass
class ScanPacket:
    """Everything that arrived at one instant: one scan per stream plus transforms."""

    timestamp: float
    scans: List[ScanRecord] = field(default_factory=list)
    transforms: List[Any] = field(default_factory=list)  # dynamic StampedTransforms
    static_transforms: List[Any] = field(default_factory=list)

    @property
    def scan(self) -> Optional[ScanRecord]:
        return self.scans[0] if self.scans else None
