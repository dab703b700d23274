#!/usr/bin/env python3
import json
import sys
from pathlib import Path
from statistics import mean, median


def safe_mean(xs):
    xs = [x for x in xs if x is not None]
    return mean(xs) if xs else None


def pct(n, d):
    return (100.0 * n / d) if d else 0.0


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/summarize_run.py results/run_YYYYMMDD_HHMMSS")
        sys.exit(1)

    run_dir = Path(sys.argv[1])
    metrics_path = run_dir / "metrics.json"
    if not metrics_path.exists():
        raise FileNotFoundError(f"Missing: {metrics_path}")

    m = json.loads(metrics_path.read_text())
    cycles = m.get("cycles", [])
    summary = m.get("summary", {})
    n = len(cycles)
    if n == 0:
        print("No detection cycles found in metrics.json")
        return

    rates = [c.get("rate_hz") for c in cycles if c.get("rate_hz")]
    with_objects = sum(1 for c in cycles if c.get("objects", 0) > 0)
    speeds = [s for c in cycles for s in c.get("speeds", [])]
    confidences = [x for c in cycles for x in c.get("confidences", [])]
    streams = sorted({c.get("stream", 0) for c in cycles})

    print("\n============ MOVING OBJECTS RUN SUMMARY ============")
    print(f"Run dir: {run_dir}")
    print(f"Packets: {summary.get('packets', '?')}  cycles: {n}  streams: {len(streams)}  state: {summary.get('state', '?')}")
    if rates:
        print(f"Scan rate (Hz)  avg={mean(rates):.2f}  med={median(rates):.2f}  min={min(rates):.2f}  max={max(rates):.2f}")
    else:
        print("Scan rate: (missing)")

    calibration = summary.get("calibration")
    if calibration:
        print(
            f"Calibrated bank size: {calibration['nr_scans_in_bank']} "
            f"({calibration['hz']:.2f} Hz over {calibration['messages']} msgs)"
        )

    print("\nLatency (ms) (avg):")
    for stage in ("segmentation", "transforms", "tracking", "scoring", "total"):
        sm = safe_mean([c.get("stages_ms", {}).get(stage) for c in cycles])
        print(f"  {stage + ':':14s} {sm:.3f}" if sm is not None else f"  {stage + ':':14s} (missing)")

    health = summary.get("health") or {}
    if health:
        print(f"  over budget:   {health.get('missed', 0)}/{health.get('cycles', 0)}")

    print("\nDetections:")
    print(f"  cycles with objects: {with_objects}/{n} ({pct(with_objects, n):.1f}%)")
    print(f"  objects total:       {summary.get('objects_total', len(speeds))}  max per cycle: {summary.get('max_objects', '?')}")
    if speeds:
        print(f"  speed (m/s):  avg={mean(speeds):.2f}  min={min(speeds):.2f}  max={max(speeds):.2f}")
    if confidences:
        print(f"  confidence:   avg={mean(confidences):.3f}  min={min(confidences):.3f}  max={max(confidences):.3f}")

    topics = summary.get("topics") or {}
    if topics:
        print("\nPublished messages per topic:")
        for topic, count in sorted(topics.items()):
            print(f"  {topic:36s} {count:5d}")
    print("====================================================\n")


if __name__ == "__main__":
    main()
