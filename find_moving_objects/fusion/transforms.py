"""
Planar rigid transforms and a thread-safe transform history.

The history is a frame tree: every child frame has exactly one parent. Static
edges hold at any time; dynamic edges are interpolated between the two samples
bracketing the requested stamp and fail outside the recorded interval.
"""
from __future__ import annotations

import bisect
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Protocol

import numpy as np

from find_moving_objects.utils.logger import get_logger

STAMP_EPS = 1e-9


def normalize_angle(a: float) -> float:
    return math.atan2(math.sin(a), math.cos(a))


@dataclass(frozen=True)
class RigidTransform:
    """p_parent = R(yaw) @ p_child + (x, y)"""

    x: float = 0.0
    y: float = 0.0
    yaw: float = 0.0

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls()

    def compose(self, other: "RigidTransform") -> "RigidTransform":
        """self ∘ other: apply ``other`` first, then ``self``."""
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        return RigidTransform(
            x=self.x + c * other.x - s * other.y,
            y=self.y + s * other.x + c * other.y,
            yaw=normalize_angle(self.yaw + other.yaw),
        )

    def inverse(self) -> "RigidTransform":
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        return RigidTransform(
            x=-(c * self.x + s * self.y),
            y=-(-s * self.x + c * self.y),
            yaw=normalize_angle(-self.yaw),
        )

    def rotation(self) -> np.ndarray:
        c, s = math.cos(self.yaw), math.sin(self.yaw)
        return np.array([[c, -s], [s, c]])

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Transform a 2-vector or an (N, 2) array of points."""
        pts = np.asarray(points, dtype=float)
        out = pts @ self.rotation().T + np.array([self.x, self.y])
        return out

    def rotate(self, vectors: np.ndarray) -> np.ndarray:
        """Rotate free vectors (velocities); translation does not apply."""
        return np.asarray(vectors, dtype=float) @ self.rotation().T

    @staticmethod
    def interpolate(a: "RigidTransform", b: "RigidTransform", ratio: float) -> "RigidTransform":
        dyaw = normalize_angle(b.yaw - a.yaw)
        return RigidTransform(
            x=a.x + (b.x - a.x) * ratio,
            y=a.y + (b.y - a.y) * ratio,
            yaw=normalize_angle(a.yaw + dyaw * ratio),
        )


@dataclass(frozen=True)
class StampedTransform:
    parent: str
    child: str
    stamp: float
    transform: RigidTransform

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StampedTransform":
        return cls(
            parent=str(d["parent"]),
            child=str(d["child"]),
            stamp=float(d.get("stamp", 0.0)),
            transform=RigidTransform(float(d.get("x", 0.0)), float(d.get("y", 0.0)), float(d.get("yaw", 0.0))),
        )

    def to_dict(self, static: bool = False) -> Dict[str, Any]:
        return {
            "parent": self.parent,
            "child": self.child,
            "stamp": self.stamp,
            "x": self.transform.x,
            "y": self.transform.y,
            "yaw": self.transform.yaw,
            "static": static,
        }


class TransformProvider(Protocol):
    def lookup(self, target: str, source: str, stamp: float, timeout: float = 0.0) -> Optional[RigidTransform]:
        ...


class TransformBuffer:
    """In-memory transform history; safe for concurrent lookups from several banks."""

    def __init__(self, cache_time: float = 10.0):
        self.cache_time = float(cache_time)
        self.logger = get_logger(__name__)
        self._parents: Dict[str, str] = {}
        self._static: Dict[str, RigidTransform] = {}
        self._history: Dict[str, Deque[StampedTransform]] = {}
        self._cond = threading.Condition(threading.RLock())

    def set_transform(self, st: StampedTransform, static: bool = False) -> None:
        if st.parent == st.child:
            raise ValueError(f"Frame {st.child!r} cannot be its own parent")
        with self._cond:
            known_parent = self._parents.get(st.child)
            if known_parent is not None and known_parent != st.parent:
                raise ValueError(f"Frame {st.child!r} already has parent {known_parent!r}, refusing {st.parent!r}")
            self._parents[st.child] = st.parent
            if static:
                self._static[st.child] = st.transform
            else:
                hist = self._history.setdefault(st.child, deque())
                if hist and st.stamp < hist[-1].stamp:
                    self.logger.debug("Late transform %s->%s at %.3f", st.parent, st.child, st.stamp)
                    items = list(hist)
                    idx = bisect.bisect_left([h.stamp for h in items], st.stamp)
                    items.insert(idx, st)
                    hist = deque(items)
                    self._history[st.child] = hist
                else:
                    hist.append(st)
                newest = hist[-1].stamp
                while len(hist) > 1 and hist[0].stamp < newest - self.cache_time:
                    hist.popleft()
            self._cond.notify_all()

    def set_static(self, parent: str, child: str, transform: RigidTransform) -> None:
        self.set_transform(StampedTransform(parent, child, 0.0, transform), static=True)

    def frames(self) -> List[str]:
        with self._cond:
            return sorted(set(self._parents) | set(self._parents.values()))

    def can_transform(self, target: str, source: str, stamp: float) -> bool:
        return self.lookup(target, source, stamp) is not None

    def lookup(self, target: str, source: str, stamp: float, timeout: float = 0.0) -> Optional[RigidTransform]:
        """
        Transform taking points in ``source`` to ``target`` at ``stamp``.

        Returns None when the frames are not connected or the stamp is outside
        the recorded history. With ``timeout`` > 0 the call waits at most that
        long for new samples before giving up.
        """
        deadline = time.monotonic() + max(0.0, timeout)
        with self._cond:
            while True:
                tf = self._lookup_locked(target, source, stamp)
                if tf is not None:
                    return tf
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)

    def _chain(self, frame: str) -> List[str]:
        chain = [frame]
        seen = {frame}
        while chain[-1] in self._parents:
            parent = self._parents[chain[-1]]
            if parent in seen:
                break
            chain.append(parent)
            seen.add(parent)
        return chain

    def _edge_at(self, child: str, stamp: float) -> Optional[RigidTransform]:
        if child in self._static:
            return self._static[child]
        hist = self._history.get(child)
        if not hist:
            return None
        if stamp < hist[0].stamp - STAMP_EPS or stamp > hist[-1].stamp + STAMP_EPS:
            return None
        stamps = [h.stamp for h in hist]
        idx = bisect.bisect_left(stamps, stamp)
        if idx < len(hist) and abs(stamps[idx] - stamp) <= STAMP_EPS:
            return hist[idx].transform
        if idx == 0:
            return hist[0].transform
        if idx >= len(hist):
            return hist[-1].transform
        before, after = hist[idx - 1], hist[idx]
        span = after.stamp - before.stamp
        ratio = 0.0 if span <= 0 else (stamp - before.stamp) / span
        return RigidTransform.interpolate(before.transform, after.transform, ratio)

    def _to_ancestor(self, frame: str, ancestor: str, stamp: float) -> Optional[RigidTransform]:
        tf = RigidTransform.identity()
        cur = frame
        while cur != ancestor:
            edge = self._edge_at(cur, stamp)
            if edge is None:
                return None
            tf = edge.compose(tf)
            cur = self._parents[cur]
        return tf

    def _lookup_locked(self, target: str, source: str, stamp: float) -> Optional[RigidTransform]:
        if target == source:
            return RigidTransform.identity()
        source_chain = self._chain(source)
        target_set = set(self._chain(target))
        common = next((f for f in source_chain if f in target_set), None)
        if common is None:
            return None
        source_tf = self._to_ancestor(source, common, stamp)
        if source_tf is None:
            return None
        target_tf = self._to_ancestor(target, common, stamp)
        if target_tf is None:
            return None
        return target_tf.inverse().compose(source_tf)
