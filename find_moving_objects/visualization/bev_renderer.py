from __future__ import annotations

from typing import Optional, Sequence

import cv2
import numpy as np

from find_moving_objects.utils.types import MovingObject, ScanRecord


class BEVRenderer:
    """
    Bird's-eye view of one scan and its moving objects, in the sensor frame.

    Coordinate frame:
      - +X (sensor forward) is up on the canvas
      - +Y (sensor left) is left on the canvas
      - Sensor sits at the canvas center
    """

    def __init__(self, size: int = 600, pixels_per_meter: float = 40.0, ring_step_m: float = 1.0):
        self.size = size
        self.ppm = pixels_per_meter
        self.origin = (size // 2, size // 2)
        self.ring_step_m = ring_step_m

    def world_to_bev(self, x_m: float, y_m: float) -> tuple[int, int]:
        """Map sensor-frame (x, y) meters into pixel coordinates on the canvas."""
        px = int(round(self.origin[0] - y_m * self.ppm))
        py = int(round(self.origin[1] - x_m * self.ppm))
        return px, py

    def render(self, scan: Optional[ScanRecord], objects: Sequence[MovingObject] = (), max_distance: Optional[float] = None) -> np.ndarray:
        canvas = np.zeros((self.size, self.size, 3), dtype=np.uint8)
        self._draw_rings(canvas, max_distance)
        self._draw_sensor(canvas)
        if scan is not None:
            self._draw_scan(canvas, scan)
        self._draw_objects(canvas, objects)
        self._draw_hud(canvas, scan, objects)
        return canvas

    # ------------------------------------------------------------------ #
    # Draw helpers
    # ------------------------------------------------------------------ #
    def _draw_rings(self, canvas: np.ndarray, max_distance: Optional[float]) -> None:
        max_r = self.size / (2.0 * self.ppm)
        r = self.ring_step_m
        while r <= max_r:
            cv2.circle(canvas, self.origin, int(r * self.ppm), (50, 50, 50), 1)
            cv2.putText(canvas, f"{r:g}m", self.world_to_bev(r, 0.0), cv2.FONT_HERSHEY_SIMPLEX, 0.35, (160, 160, 160), 1)
            r += self.ring_step_m
        if max_distance is not None and max_distance <= max_r:
            cv2.circle(canvas, self.origin, int(max_distance * self.ppm), (0, 90, 160), 1)

    def _draw_sensor(self, canvas: np.ndarray) -> None:
        x, y = self.origin
        pts = np.array([(x, y - 10), (x - 6, y + 6), (x + 6, y + 6)], dtype=np.int32)
        cv2.fillPoly(canvas, [pts], (255, 255, 255))

    def _draw_scan(self, canvas: np.ndarray, scan: ScanRecord) -> None:
        pts = scan.points()[scan.valid_mask()]
        for x_m, y_m in pts:
            px, py = self.world_to_bev(x_m, y_m)
            if 0 <= px < self.size and 0 <= py < self.size:
                canvas[py, px] = (180, 180, 180)

    def _draw_objects(self, canvas: np.ndarray, objects: Sequence[MovingObject]) -> None:
        for mo in objects:
            # Confidence drives the green channel.
            g = int(np.clip(mo.confidence, 0.0, 1.0) * 255)
            color = (0, g, 255 - g)

            first, last = mo.new.points[0], mo.new.points[-1]
            cv2.line(canvas, self.world_to_bev(*first), self.world_to_bev(*last), (0, 200, 0), 2)

            x_m, y_m = mo.new.closest_point
            p0 = self.world_to_bev(x_m, y_m)
            cv2.circle(canvas, p0, 5, color, -1)

            vx, vy = mo.velocity_sensor_frame
            p1 = self.world_to_bev(x_m + vx, y_m + vy)
            cv2.arrowedLine(canvas, p0, p1, color, 2, tipLength=0.3)

            cv2.putText(
                canvas,
                f"{mo.speed:.2f}m/s c{mo.confidence:.2f}",
                (p0[0] + 6, p0[1] - 6),
                cv2.FONT_HERSHEY_SIMPLEX,
                0.35,
                (255, 255, 255),
                1,
            )

    def _draw_hud(self, canvas: np.ndarray, scan: Optional[ScanRecord], objects: Sequence[MovingObject]) -> None:
        text = f"objects: {len(objects)}"
        if scan is not None:
            text = f"t={scan.stamp:.2f}s  {scan.frame_id}  " + text
        cv2.putText(canvas, text, (8, 18), cv2.FONT_HERSHEY_SIMPLEX, 0.45, (255, 255, 255), 1)
