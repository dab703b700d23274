from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, List, Optional, Tuple

from find_moving_objects.fusion.transforms import StampedTransform
from find_moving_objects.inputs.base_input import BaseInput
from find_moving_objects.utils.logger import get_logger
from find_moving_objects.utils.types import ScanPacket, ScanRecord


@dataclass
class ReplayMeta:
    packets: int
    streams: int
    first_stamp: float
    last_stamp: float

    @property
    def duration_s(self) -> float:
        return max(0.0, self.last_stamp - self.first_stamp)


def packet_from_dict(d: Dict[str, Any]) -> ScanPacket:
    """
    Accepts either a packet ``{"stamp", "scans": [...], "transforms": [...]}``
    or a bare scan dict (anything carrying ``ranges``).
    """
    if "ranges" in d:
        scan = ScanRecord.from_dict(d)
        return ScanPacket(timestamp=scan.stamp, scans=[scan])
    scans = [ScanRecord.from_dict(s) for s in d.get("scans", [])]
    dynamic: List[StampedTransform] = []
    static: List[StampedTransform] = []
    for t in d.get("transforms", []):
        (static if t.get("static", False) else dynamic).append(StampedTransform.from_dict(t))
    stamp = d.get("stamp")
    if stamp is None:
        stamp = scans[0].stamp if scans else 0.0
    return ScanPacket(timestamp=float(stamp), scans=scans, transforms=dynamic, static_transforms=static)


def packet_to_dict(packet: ScanPacket) -> Dict[str, Any]:
    return {
        "stamp": packet.timestamp,
        "scans": [s.to_dict() for s in packet.scans],
        "transforms": [t.to_dict() for t in packet.transforms] + [t.to_dict(static=True) for t in packet.static_transforms],
    }


def dump_packets(path: str | Path, packets: Iterable[ScanPacket]) -> int:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with path.open("w", encoding="utf-8") as f:
        for packet in packets:
            f.write(json.dumps(packet_to_dict(packet)) + "\n")
            n += 1
    return n


class ReplayInput(BaseInput):
    """Replays scan packets recorded as JSON lines."""

    def __init__(self, path: str | Path, allow_missing: bool = False):
        self.path = Path(path)
        self.logger = get_logger(__name__)
        self.allow_missing = allow_missing
        self.meta: Optional[ReplayMeta] = None

        if not self.path.exists():
            if allow_missing:
                self.logger.warning("Replay %s not found; proceeding inert for testing.", self.path)
                return
            raise FileNotFoundError(f"Replay not found: {self.path}")

        self.meta = self._probe()
        self.logger.info(
            "Replay opened: %s packets=%d streams=%d duration=%.2fs",
            self.path,
            self.meta.packets,
            self.meta.streams,
            self.meta.duration_s,
        )

    def _probe(self) -> ReplayMeta:
        packets, streams = 0, 0
        first, last = 0.0, 0.0
        for _, packet in self._read():
            if packets == 0:
                first = packet.timestamp
            last = packet.timestamp
            streams = max(streams, len(packet.scans))
            packets += 1
        return ReplayMeta(packets=packets, streams=streams, first_stamp=first, last_stamp=last)

    def _read(self) -> Generator[Tuple[int, ScanPacket], None, None]:
        with self.path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    packet = packet_from_dict(json.loads(line))
                except (ValueError, KeyError, TypeError) as exc:
                    raise ValueError(f"{self.path}:{lineno}: bad replay record: {exc}") from exc
                yield lineno, packet

    def start(self) -> None:
        return

    def frames(self) -> Generator[Tuple[int, ScanPacket], None, None]:
        if self.meta is None:
            return
        idx = 0
        for _, packet in self._read():
            idx += 1
            yield idx, packet

    def stop(self) -> None:
        if self.meta is not None:
            self.logger.info("Closed replay %s", self.path)
