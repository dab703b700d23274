from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple

import numpy as np

from find_moving_objects.fusion.frame_resolver import FrameLookups, FrameResolver
from find_moving_objects.fusion.transforms import TransformProvider
from find_moving_objects.perception.segmentation.range_segmenter import RangeJumpSegmenter
from find_moving_objects.perception.tracking.bank_tracker import BankTracker
from find_moving_objects.perception.tracking.track import TrackMatch
from find_moving_objects.scoring.confidence import ConfidenceScorer
from find_moving_objects.utils.errors import BankError, NonMonotonicTimestampError
from find_moving_objects.utils.logger import get_logger
from find_moving_objects.utils.timing import StageTimer
from find_moving_objects.utils.types import FRAME_KEYS, BankArgument, MovingObject, ScanRecord


class BankStatus(str, Enum):
    OK = "OK"
    NOT_INITIALIZED = "NOT_INITIALIZED"
    MALFORMED_SCAN = "MALFORMED_SCAN"


class Bank:
    """
    Sliding window of recent scans of one sensor stream.

    Each detection cycle segments the oldest and the newest scan, matches their
    objects, expresses the matches in the configured frame and keeps those that
    move fast enough and are trusted enough.
    """

    def __init__(
        self,
        transforms: Optional[TransformProvider] = None,
        scorer: Optional[ConfidenceScorer] = None,
        name: str = "bank",
        lookup_timeout: float = 0.0,
    ):
        self.transforms = transforms
        self.scorer = scorer or ConfidenceScorer()
        self.name = name
        self.lookup_timeout = lookup_timeout
        self.logger = get_logger(__name__)

        self.arg: Optional[BankArgument] = None
        self.resolver: Optional[FrameResolver] = None
        self.segmenter: Optional[RangeJumpSegmenter] = None
        self.tracker: Optional[BankTracker] = None
        self._window: Optional[Deque[ScanRecord]] = None
        self._ema: Optional[np.ndarray] = None
        self._fault: Optional[BankError] = None
        self.last_stages_ms: Dict[str, float] = {}
        self.last_lookups: Optional[FrameLookups] = None

    # ------------------------------------------------------------------ #
    # Window management
    # ------------------------------------------------------------------ #
    @property
    def initialized(self) -> bool:
        return self._window is not None

    @property
    def window(self) -> Tuple[ScanRecord, ...]:
        return tuple(self._window) if self._window is not None else ()

    @property
    def dt(self) -> float:
        if not self._window or len(self._window) < 2:
            return 0.0
        return self._window[-1].stamp - self._window[0].stamp

    def init(self, arg: BankArgument, scan: ScanRecord) -> BankStatus:
        arg.validate()
        self._raise_if_faulted()
        if scan is None or not scan.is_well_formed():
            self.logger.warning("Bank %s: malformed first scan, waiting for the next one", self.name)
            return BankStatus.MALFORMED_SCAN

        self.arg = arg
        self.resolver = FrameResolver(self.transforms, scan.frame_id, timeout=self.lookup_timeout)
        self.segmenter = RangeJumpSegmenter.from_argument(arg)
        self.tracker = BankTracker.from_argument(arg)
        self._window = deque(maxlen=arg.nr_scans_in_bank)
        self._window.append(scan)
        self._ema = np.where(scan.valid_mask(), scan.ranges, np.nan)
        self.logger.info(
            "Bank %s initialised: %d scans, sensor frame %s, %d readings per scan",
            self.name,
            arg.nr_scans_in_bank,
            scan.frame_id,
            len(scan),
        )
        return BankStatus.OK

    def add_scan(self, scan: ScanRecord) -> BankStatus:
        self._raise_if_faulted()
        if self._window is None:
            return BankStatus.NOT_INITIALIZED
        if scan is None or not scan.is_well_formed() or len(scan) != len(self._window[-1]):
            self.logger.warning("Bank %s: dropping malformed scan", self.name)
            return BankStatus.MALFORMED_SCAN

        newest = self._window[-1]
        if scan.stamp < newest.stamp:
            self._fault = NonMonotonicTimestampError(
                f"Bank {self.name}: scan stamp {scan.stamp:.6f} is older than newest {newest.stamp:.6f}"
            )
            self.logger.error("%s", self._fault)
            raise self._fault

        self._window.append(scan)
        self._update_ema(scan)
        return BankStatus.OK

    # Ingress names used by transport adapters.
    def submit_first_scan(self, arg: BankArgument, scan: ScanRecord) -> BankStatus:
        return self.init(arg, scan)

    def submit_scan(self, scan: ScanRecord) -> BankStatus:
        return self.add_scan(scan)

    def run_detection_cycle(self) -> List[MovingObject]:
        return self.find_moving_objects()

    def ema_scan(self) -> Optional[ScanRecord]:
        """Exponentially smoothed ranges, stamped like the newest scan."""
        if self._window is None or self._ema is None:
            return None
        return self._window[-1].with_ranges(self._ema)

    def _update_ema(self, scan: ScanRecord) -> None:
        alpha = self.arg.ema_alpha
        valid = scan.valid_mask()
        fresh = np.isnan(self._ema)
        blended = np.where(fresh, scan.ranges, alpha * scan.ranges + (1.0 - alpha) * self._ema)
        self._ema = np.where(valid, blended, self._ema)

    def _raise_if_faulted(self) -> None:
        if self._fault is not None:
            raise BankError(f"Bank {self.name} is faulted: {self._fault}")

    # ------------------------------------------------------------------ #
    # Detection cycle
    # ------------------------------------------------------------------ #
    def find_moving_objects(self) -> List[MovingObject]:
        self._raise_if_faulted()
        if self._window is None or len(self._window) < 2:
            return []
        old_scan, new_scan = self._window[0], self._window[-1]
        dt = new_scan.stamp - old_scan.stamp
        if dt <= 0:
            return []

        arg = self.arg
        timer = StageTimer()
        with timer.stage("segmentation"):
            old_objects = self.segmenter.segment(old_scan)
            new_objects = self.segmenter.segment(new_scan)

        with timer.stage("transforms"):
            lookups = self.resolver.resolve_pair(old_scan.stamp, new_scan.stamp, arg)
        flags = lookups.flags

        with timer.stage("tracking"):
            fixed = lookups.pair("fixed")
            if fixed is not None:
                matches = self.tracker.match(old_objects, new_objects, fixed[0], fixed[1])
            else:
                matches = self.tracker.match(old_objects, new_objects)

        moving: List[MovingObject] = []
        with timer.stage("scoring"):
            for m in matches:
                mo = self._build_moving_object(m, dt, lookups)
                mo.transforms = flags
                mo.confidence = self.scorer.score(mo.seen_width, mo.old_seen_width, arg, dt, flags)
                if mo.confidence < arg.object_threshold_min_confidence:
                    self.logger.debug("Bank %s: object at %.2f rad dropped, confidence %.3f", self.name, m.new.angle_begin, mo.confidence)
                    continue
                if mo.speed < arg.object_threshold_min_speed:
                    continue
                moving.append(mo)

        self.last_stages_ms = dict(timer.stages_ms, total=timer.total_ms())
        self.last_lookups = lookups
        return moving

    def _build_moving_object(self, m: TrackMatch, dt: float, lookups: FrameLookups) -> MovingObject:
        old_pt = m.old.closest_point
        new_pt = m.new.closest_point

        positions = {"sensor": new_pt.copy()}
        for key in FRAME_KEYS:
            tf = lookups.new.get(key)
            positions[key] = tf.apply(new_pt) if tf is not None else None

        frame = self.arg.velocity_frame
        pair = lookups.pair(frame) if frame != "sensor" else None
        if pair is None:
            frame = "sensor"
            old_pos, new_pos = old_pt, new_pt
        else:
            old_pos, new_pos = pair[0].apply(old_pt), pair[1].apply(new_pt)

        delta = new_pos - old_pos
        velocity = delta / dt
        velocity_sensor = pair[1].inverse().rotate(velocity) if pair is not None else velocity
        return MovingObject(
            old=m.old,
            new=m.new,
            stamp_old=m.old.stamp,
            stamp_new=m.new.stamp,
            dt=dt,
            velocity_frame=frame,
            position=new_pos,
            old_position=old_pos,
            delta_position=delta,
            velocity=velocity,
            velocity_sensor_frame=velocity_sensor,
            positions=positions,
        )
