"""
Synthetic planar scene for demos and tests.

A laser mounted on a base that drives along the odom x axis observes circular
obstacles (moving or static) and an optional wall parallel to the x axis. Each
packet carries the scan, the dynamic odom -> base transform at the scan stamp
and, on the first packet, the static map -> odom and base -> laser transforms.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional, Tuple

import numpy as np

from find_moving_objects.fusion.transforms import RigidTransform, StampedTransform
from find_moving_objects.inputs.base_input import BaseInput
from find_moving_objects.utils.logger import get_logger
from find_moving_objects.utils.types import ScanPacket, ScanRecord


@dataclass
class Obstacle:
    x: float
    y: float
    radius: float = 0.3
    vx: float = 0.0
    vy: float = 0.0

    def center_at(self, t: float) -> np.ndarray:
        return np.array([self.x + self.vx * t, self.y + self.vy * t])


@dataclass
class SyntheticConfig:
    nr_packets: int = 40
    rate_hz: float = 10.0
    start_stamp: float = 0.0
    nr_readings: int = 720
    angle_min: float = -math.pi
    range_min: float = 0.05
    range_max: float = 10.0
    noise_std: float = 0.0
    seed: int = 42
    sensor_speed: float = 0.0  # base_link speed along odom x
    laser_offset: Tuple[float, float, float] = (0.1, 0.0, 0.0)
    wall_y: Optional[float] = None
    obstacles: List[Obstacle] = field(default_factory=lambda: [Obstacle(x=0.0, y=3.0, vx=1.0)])
    map_frame: str = "map"
    fixed_frame: str = "odom"
    base_frame: str = "base_link"
    sensor_frame: str = "laser"

    @property
    def angle_increment(self) -> float:
        return 2.0 * math.pi / self.nr_readings

    @classmethod
    def from_config(cls, section: Optional[Dict[str, Any]]) -> "SyntheticConfig":
        section = dict(section or {})
        obstacles = section.pop("obstacles", None)
        if "laser_offset" in section:
            section["laser_offset"] = tuple(section["laser_offset"])
        cfg = cls(**section)
        if obstacles is not None:
            cfg.obstacles = [Obstacle(**o) for o in obstacles]
        return cfg


def cast_rays(origin: np.ndarray, directions: np.ndarray, obstacles: List[Obstacle], t: float, wall_y: Optional[float]) -> np.ndarray:
    """Distance along each unit direction to the first surface hit, inf on a miss."""
    hits = np.full(directions.shape[0], np.inf)
    for ob in obstacles:
        oc = origin - ob.center_at(t)
        b = directions @ oc
        c = float(oc @ oc) - ob.radius**2
        disc = b * b - c
        with np.errstate(invalid="ignore"):
            s = -b - np.sqrt(disc)
        ok = (disc >= 0.0) & (s > 0.0)
        hits = np.where(ok & (s < hits), s, hits)
    if wall_y is not None:
        dy = directions[:, 1]
        with np.errstate(divide="ignore", invalid="ignore"):
            s = (wall_y - origin[1]) / dy
        ok = np.isfinite(s) & (s > 0.0)
        hits = np.where(ok & (s < hits), s, hits)
    return hits


class SyntheticInput(BaseInput):
    def __init__(self, cfg: SyntheticConfig | None = None):
        self.cfg = cfg or SyntheticConfig()
        self.logger = get_logger(__name__)
        self.rng = np.random.default_rng(self.cfg.seed)
        self._laser = RigidTransform(*self.cfg.laser_offset)

    def start(self) -> None:
        self.logger.info(
            "Synthetic scene: %d packets at %.1f Hz, %d obstacles, sensor speed %.2f m/s",
            self.cfg.nr_packets,
            self.cfg.rate_hz,
            len(self.cfg.obstacles),
            self.cfg.sensor_speed,
        )

    def base_pose(self, t: float) -> RigidTransform:
        return RigidTransform(self.cfg.sensor_speed * t, 0.0, 0.0)

    def scan_at(self, t: float, stamp: float) -> ScanRecord:
        cfg = self.cfg
        laser_in_odom = self.base_pose(t).compose(self._laser)
        angles = cfg.angle_min + np.arange(cfg.nr_readings) * cfg.angle_increment + laser_in_odom.yaw
        directions = np.column_stack((np.cos(angles), np.sin(angles)))
        origin = np.array([laser_in_odom.x, laser_in_odom.y])
        ranges = cast_rays(origin, directions, cfg.obstacles, t, cfg.wall_y)
        if cfg.noise_std > 0:
            ranges = ranges + self.rng.normal(0.0, cfg.noise_std, size=ranges.shape)
        ranges = np.where(ranges > cfg.range_max, np.inf, ranges)
        return ScanRecord(
            ranges=ranges,
            angle_min=cfg.angle_min,
            angle_increment=cfg.angle_increment,
            range_min=cfg.range_min,
            range_max=cfg.range_max,
            stamp=stamp,
            frame_id=cfg.sensor_frame,
        )

    def frames(self) -> Generator[Tuple[int, ScanPacket], None, None]:
        cfg = self.cfg
        for idx in range(1, cfg.nr_packets + 1):
            t = (idx - 1) / cfg.rate_hz
            stamp = cfg.start_stamp + t
            packet = ScanPacket(
                timestamp=stamp,
                scans=[self.scan_at(t, stamp)],
                transforms=[StampedTransform(cfg.fixed_frame, cfg.base_frame, stamp, self.base_pose(t))],
            )
            if idx == 1:
                packet.static_transforms = [
                    StampedTransform(cfg.map_frame, cfg.fixed_frame, stamp, RigidTransform.identity()),
                    StampedTransform(cfg.base_frame, cfg.sensor_frame, stamp, self._laser),
                ]
            yield idx, packet

    def stop(self) -> None:
        return
