from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import cv2
from rich.console import Console
from tqdm import tqdm

from find_moving_objects.fusion.transforms import TransformBuffer
from find_moving_objects.inputs.base_input import BaseInput
from find_moving_objects.inputs.replay_input import ReplayInput, dump_packets
from find_moving_objects.inputs.synthetic_input import SyntheticConfig, SyntheticInput
from find_moving_objects.runtime.interpreter import (
    InterpreterConfig,
    LaserScanArrayInterpreter,
    LaserScanInterpreter,
)
from find_moving_objects.runtime.report_logger import ReportLogger
from find_moving_objects.utils.config import DEFAULT_CONFIG_PATH, apply_overrides, get, load_yaml
from find_moving_objects.utils.logger import setup_logger
from find_moving_objects.utils.timing import RateMeter
from find_moving_objects.utils.types import BankArgument, MovingObject, ScanPacket
from find_moving_objects.visualization.bev_renderer import BEVRenderer
from find_moving_objects.visualization.markers import build_markers


def make_run_dir(base_dir: str | Path) -> Path:
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = Path(base_dir) / f"run_{ts}"
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


def build_source(cfg: Dict[str, Any], input_path: Optional[str] = None) -> BaseInput:
    path = input_path or get(cfg, "input.path")
    if path:
        return ReplayInput(path, allow_missing=bool(get(cfg, "input.allow_missing", False)))
    return SyntheticInput(SyntheticConfig.from_config(get(cfg, "synthetic", {})))


def _total_packets(source: BaseInput) -> Optional[int]:
    if isinstance(source, ReplayInput):
        return source.meta.packets if source.meta else None
    if isinstance(source, SyntheticInput):
        return source.cfg.nr_packets
    return None


def run(cfg: Dict[str, Any], source: BaseInput, run_dir: Path, show_progress: bool = True) -> Dict[str, Any]:
    """Feed every packet of ``source`` through the interpreter and write the run artifacts."""
    logger = setup_logger(log_dir=run_dir, level=get(cfg, "runtime.log_level", "INFO"))
    arg = BankArgument.from_config(get(cfg, "bank", {}))
    icfg = InterpreterConfig.from_config(get(cfg, "interpreter", {}))
    buffer = TransformBuffer(cache_time=float(get(cfg, "transforms.cache_time", 10.0)))
    array_mode = bool(get(cfg, "input.array", False))

    if array_mode:
        interpreter = LaserScanArrayInterpreter(arg, icfg, transforms=buffer, name="scan_array")
    else:
        interpreter = LaserScanInterpreter(arg, icfg, transforms=buffer, name="scan")
    report = ReportLogger(run_dir, skip_empty=bool(get(cfg, "runtime.skip_empty_topics", False)))
    rate = RateMeter()

    save_metrics = bool(get(cfg, "runtime.save_metrics", True))
    snapshot_every = int(get(cfg, "runtime.bev_snapshot_every", 0) or 0)
    bev = BEVRenderer(
        size=int(get(cfg, "runtime.bev_size", 600)),
        pixels_per_meter=float(get(cfg, "runtime.bev_pixels_per_meter", 40.0)),
    )
    bev_writer = None
    if bool(get(cfg, "runtime.save_bev_video", False)):
        fps = float(get(cfg, "runtime.bev_video_fps", 10.0))
        bev_writer = cv2.VideoWriter(str(run_dir / "bev.mp4"), cv2.VideoWriter_fourcc(*"mp4v"), fps, (bev.size, bev.size))
        if not bev_writer.isOpened():
            raise RuntimeError("Could not open VideoWriter (mp4v). Try a different codec/container.")

    metrics: Dict[str, Any] = {
        "project": cfg.get("project", {}),
        "input": {"type": type(source).__name__, "array": array_mode},
        "cycles": [],
        "summary": {"packets": 0, "cycles": 0, "objects_total": 0, "max_objects": 0},
    }
    record_path = get(cfg, "runtime.record")
    recorded: List[ScanPacket] = []

    source.start()
    try:
        for idx, packet in tqdm(source.frames(), total=_total_packets(source), desc="Scans", disable=not show_progress):
            for st in packet.static_transforms:
                buffer.set_transform(st, static=True)
            for st in packet.transforms:
                buffer.set_transform(st)
            if record_path:
                recorded.append(packet)
            if not packet.scans:
                continue
            hz = rate.tick(packet.timestamp)
            metrics["summary"]["packets"] += 1

            if array_mode:
                per_stream = interpreter.on_scans(packet.scans, now=packet.timestamp)
                banks = interpreter.banks
                arguments = interpreter.arguments
            else:
                per_stream = [interpreter.on_scan(packet.scan, now=packet.timestamp)]
                banks = [interpreter.bank] if interpreter.bank is not None else []
                arguments = [interpreter.arg]

            for i, objects in enumerate(per_stream):
                if i >= len(banks) or not banks[i].initialized:
                    continue
                _publish(report, banks[i], arguments[i], objects, packet.timestamp)
                _record_cycle(metrics, idx, i, packet.timestamp, hz, banks[i].last_stages_ms, objects)

            if snapshot_every or bev_writer is not None:
                objects = per_stream[0] if per_stream else []
                img = bev.render(packet.scan, objects, max_distance=arg.object_threshold_max_distance)
                if bev_writer is not None:
                    bev_writer.write(img)
                if snapshot_every and idx % snapshot_every == 0:
                    cv2.imwrite(str(run_dir / f"bev_{idx:05d}.png"), img)
    finally:
        source.stop()
        if bev_writer is not None:
            bev_writer.release()
        if array_mode:
            interpreter.close()

    metrics["summary"]["state"] = interpreter.state.value
    metrics["summary"]["calibration"] = _calibration(interpreter)
    metrics["summary"]["health"] = _health(interpreter)
    metrics["summary"]["topics"] = dict(report.counts)
    metrics["summary"]["faulted_streams"] = sorted(getattr(interpreter, "faulted", ()))
    if save_metrics:
        metrics_path = run_dir / "metrics.json"
        metrics_path.write_text(json.dumps(metrics, indent=2), encoding="utf-8")
        logger.info("Saved metrics: %s", metrics_path)
    if record_path:
        n = dump_packets(record_path, recorded)
        logger.info("Recorded %d packets to %s", n, record_path)
    return metrics


def _publish(report: ReportLogger, bank, arg: BankArgument, objects: List[MovingObject], stamp: float) -> None:
    messages = build_markers(objects, arg)
    if arg.publish_ema:
        ema = bank.ema_scan()
        if ema is not None:
            messages[arg.topic_ema] = ema.to_dict()
    report.publish(messages, stamp)


def _record_cycle(metrics: Dict[str, Any], idx: int, stream: int, stamp: float, hz: float, stages_ms, objects) -> None:
    n = len(objects)
    summary = metrics["summary"]
    summary["cycles"] += 1
    summary["objects_total"] += n
    summary["max_objects"] = max(summary["max_objects"], n)
    metrics["cycles"].append(
        {
            "packet": idx,
            "stream": stream,
            "stamp": stamp,
            "rate_hz": hz,
            "stages_ms": dict(stages_ms),
            "objects": n,
            "speeds": [round(mo.speed, 4) for mo in objects],
            "confidences": [round(mo.confidence, 4) for mo in objects],
        }
    )


def _calibration(interpreter) -> Optional[Dict[str, Any]]:
    calibrator = interpreter.calibrator
    if calibrator is None or calibrator.result is None:
        return None
    r = calibrator.result
    return {"hz": r.hz, "messages": r.messages, "elapsed_s": r.elapsed_s, "nr_scans_in_bank": r.nr_scans_in_bank}


def _health(interpreter) -> Dict[str, Any]:
    return {
        "cycles": sum(m.cycles for m in interpreter.monitors),
        "missed": sum(m.missed for m in interpreter.monitors),
    }


def main():
    parser = argparse.ArgumentParser(description="find-moving-objects: moving object detection on planar laser scans")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Path to YAML config")
    parser.add_argument("--input", default=None, help="Replay file (JSON lines); synthetic scene when omitted")
    parser.add_argument("--record", default=None, help="Write the consumed packets to this JSON lines file")
    parser.add_argument("--set", dest="overrides", action="append", default=[], metavar="KEY=VALUE", help="Override a config value, e.g. bank.ema_alpha=0.5")
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    args = parser.parse_args()

    cfg: Dict[str, Any] = apply_overrides(load_yaml(args.config), args.overrides)
    if args.record:
        cfg.setdefault("runtime", {})["record"] = args.record

    run_dir = make_run_dir(get(cfg, "runtime.output_dir", "results"))
    console = Console()
    console.print(f"[bold]find-moving-objects[/bold] run dir: {run_dir}")

    source = build_source(cfg, args.input)
    metrics = run(cfg, source, run_dir, show_progress=not args.no_progress)

    s = metrics["summary"]
    console.print(
        f"packets={s['packets']} cycles={s['cycles']} objects={s['objects_total']} "
        f"(max {s['max_objects']}/cycle) state={s['state']}"
    )


if __name__ == "__main__":
    main()
