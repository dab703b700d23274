"""
Marker messages for moving objects.

Markers are plain dicts keyed by the bank argument's pass-through topics, so
array deployments fan out to the suffixed topics without extra handling.
"""
from __future__ import annotations

from typing import Any, Dict, List, Sequence

import numpy as np

from find_moving_objects.utils.types import BankArgument, MovingObject


def _xy(v: np.ndarray) -> List[float]:
    return [float(v[0]), float(v[1])]


def arrow_shade(confidence: float, arg: BankArgument) -> float:
    """Grey level in [0, 1] for a velocity arrow; brighter means more confident."""
    if arg.velocity_arrows_use_full_gray_scale:
        lo = arg.object_threshold_min_confidence
        span = 1.0 - lo
        shade = (confidence - lo) / span if span > 0 else 1.0
    else:
        shade = confidence
    return float(np.clip(shade, 0.0, 1.0))


def _frame_of(mo: MovingObject, arg: BankArgument) -> str:
    return arg.frame_name(mo.velocity_frame, sensor_frame=mo.new.frame_id)


def closest_point_markers(objects: Sequence[MovingObject], arg: BankArgument) -> List[Dict[str, Any]]:
    return [
        {
            "type": "points",
            "ns": "closest_points",
            "id": i,
            "frame_id": _frame_of(mo, arg),
            "stamp": mo.stamp_new,
            "points": [_xy(mo.position)],
            "color": [1.0, 0.0, 0.0, 1.0],
        }
        for i, mo in enumerate(objects)
    ]


def velocity_arrows(objects: Sequence[MovingObject], arg: BankArgument) -> List[Dict[str, Any]]:
    markers = []
    for i, mo in enumerate(objects):
        g = arrow_shade(mo.confidence, arg)
        markers.append(
            {
                "type": "arrow",
                "ns": arg.velocity_arrow_ns,
                "id": i,
                "frame_id": _frame_of(mo, arg),
                "stamp": mo.stamp_new,
                "start": _xy(mo.position),
                "end": _xy(mo.position + mo.velocity),
                "color": [g, g, g, 1.0],
            }
        )
    return markers


def delta_position_lines(objects: Sequence[MovingObject], arg: BankArgument) -> List[Dict[str, Any]]:
    return [
        {
            "type": "line",
            "ns": arg.delta_position_line_ns,
            "id": i,
            "frame_id": _frame_of(mo, arg),
            "stamp": mo.stamp_new,
            "start": _xy(mo.old_position),
            "end": _xy(mo.position),
            "color": [0.0, 0.0, 1.0, 1.0],
        }
        for i, mo in enumerate(objects)
    ]


def width_lines(objects: Sequence[MovingObject], arg: BankArgument) -> List[Dict[str, Any]]:
    # First to last point of the newest observation, in the scan's own frame.
    return [
        {
            "type": "line",
            "ns": arg.width_line_ns,
            "id": i,
            "frame_id": mo.new.frame_id,
            "stamp": mo.stamp_new,
            "start": _xy(mo.new.points[0]),
            "end": _xy(mo.new.points[-1]),
            "color": [0.0, 1.0, 0.0, 1.0],
        }
        for i, mo in enumerate(objects)
    ]


def build_markers(objects: Sequence[MovingObject], arg: BankArgument) -> Dict[str, Any]:
    """Everything the publish flags enable for one cycle, keyed by topic."""
    out: Dict[str, Any] = {}
    if arg.publish_objects:
        out[arg.topic_objects] = [mo.to_dict() for mo in objects]
    if arg.publish_objects_closest_point_markers:
        out[arg.topic_objects_closest_point_markers] = closest_point_markers(objects, arg)
    if arg.publish_objects_velocity_arrows:
        out[arg.topic_objects_velocity_arrows] = velocity_arrows(objects, arg)
    if arg.publish_objects_delta_position_lines:
        out[arg.topic_objects_delta_position_lines] = delta_position_lines(objects, arg)
    if arg.publish_objects_width_lines:
        out[arg.topic_objects_width_lines] = width_lines(objects, arg)
    return out
