from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from find_moving_objects.fusion.transforms import RigidTransform, TransformProvider
from find_moving_objects.utils.logger import get_logger
from find_moving_objects.utils.types import FRAME_KEYS, BankArgument


@dataclass(frozen=True)
class TransformFlags:
    transform_old_time_map_frame_success: bool = False
    transform_new_time_map_frame_success: bool = False
    transform_old_time_fixed_frame_success: bool = False
    transform_new_time_fixed_frame_success: bool = False
    transform_old_time_base_frame_success: bool = False
    transform_new_time_base_frame_success: bool = False

    @classmethod
    def all_ok(cls) -> "TransformFlags":
        return cls(True, True, True, True, True, True)

    @property
    def all_succeeded(self) -> bool:
        return (
            self.transform_old_time_map_frame_success
            and self.transform_new_time_map_frame_success
            and self.transform_old_time_fixed_frame_success
            and self.transform_new_time_fixed_frame_success
            and self.transform_old_time_base_frame_success
            and self.transform_new_time_base_frame_success
        )


@dataclass
class FrameLookups:
    """The six lookups of one cycle, keyed by "map" / "fixed" / "base"."""

    old: Dict[str, Optional[RigidTransform]] = field(default_factory=dict)
    new: Dict[str, Optional[RigidTransform]] = field(default_factory=dict)

    @property
    def flags(self) -> TransformFlags:
        return TransformFlags(
            transform_old_time_map_frame_success=self.old.get("map") is not None,
            transform_new_time_map_frame_success=self.new.get("map") is not None,
            transform_old_time_fixed_frame_success=self.old.get("fixed") is not None,
            transform_new_time_fixed_frame_success=self.new.get("fixed") is not None,
            transform_old_time_base_frame_success=self.old.get("base") is not None,
            transform_new_time_base_frame_success=self.new.get("base") is not None,
        )

    def pair(self, key: str) -> Optional[Tuple[RigidTransform, RigidTransform]]:
        old, new = self.old.get(key), self.new.get(key)
        if old is None or new is None:
            return None
        return old, new


class FrameResolver:
    """
    Resolves sensor -> {map, fixed, base} transforms for a timestamp.

    A failed lookup is an ordinary outcome: ``resolve`` returns
    ``(False, None)`` and never waits longer than ``timeout`` seconds.
    """

    def __init__(self, provider: Optional[TransformProvider], sensor_frame: str, timeout: float = 0.0):
        self.provider = provider
        self.sensor_frame = sensor_frame
        self.timeout = max(0.0, float(timeout))
        self.logger = get_logger(__name__)

    def resolve(self, timestamp: float, target_frame: str) -> Tuple[bool, Optional[RigidTransform]]:
        if target_frame == self.sensor_frame:
            return True, RigidTransform.identity()
        if self.provider is None:
            return False, None
        tf = self.provider.lookup(target_frame, self.sensor_frame, timestamp, self.timeout)
        if tf is None:
            self.logger.debug("No transform %s -> %s at %.3f", self.sensor_frame, target_frame, timestamp)
            return False, None
        return True, tf

    def resolve_pair(self, old_stamp: float, new_stamp: float, arg: BankArgument) -> FrameLookups:
        lookups = FrameLookups()
        for key in FRAME_KEYS:
            frame = arg.frame_name(key)
            _, lookups.old[key] = self.resolve(old_stamp, frame)
            _, lookups.new[key] = self.resolve(new_stamp, frame)
        return lookups
