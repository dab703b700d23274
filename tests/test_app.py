import json
from pathlib import Path

from find_moving_objects.app import build_source, make_run_dir, run
from find_moving_objects.inputs.replay_input import ReplayInput
from find_moving_objects.inputs.synthetic_input import SyntheticInput
from find_moving_objects.utils.config import apply_overrides, load_yaml

SYSTEM_YAML = Path(__file__).resolve().parents[1] / "configs" / "system.yaml"


def _cfg(*overrides):
    return apply_overrides(load_yaml(SYSTEM_YAML), ["runtime.bev_snapshot_every=10", *overrides])


def test_synthetic_run_detects_the_moving_obstacle(tmp_path):
    cfg = _cfg()
    run_dir = make_run_dir(tmp_path)
    metrics = run(cfg, build_source(cfg), run_dir, show_progress=False)

    summary = metrics["summary"]
    assert summary["packets"] == 40
    assert summary["state"] == "STEADY"
    assert summary["objects_total"] > 0
    speeds = [s for c in metrics["cycles"] for s in c["speeds"]]
    assert all(0.6 < s < 1.4 for s in speeds)

    saved = json.loads((run_dir / "metrics.json").read_text())
    assert saved["summary"]["cycles"] == summary["cycles"]
    assert (run_dir / "topics" / "moving_objects.jsonl").exists()
    assert (run_dir / "bev_00010.png").exists()


def test_calibrated_array_run_records_and_replays(tmp_path):
    record = tmp_path / "scans.jsonl"
    calibrated = ("input.array=true", "interpreter.optimize_nr_scans_in_bank=0.5", "interpreter.max_messages=5")
    cfg = _cfg(*calibrated, f"runtime.record={record}")
    metrics = run(cfg, build_source(cfg), make_run_dir(tmp_path / "first"), show_progress=False)
    calibration = metrics["summary"]["calibration"]
    assert calibration["nr_scans_in_bank"] == 6
    assert set(metrics["summary"]["topics"]) >= {"moving_objects", "objects_velocity_arrows_0"}

    replay_cfg = _cfg(*calibrated)
    source = build_source(replay_cfg, str(record))
    assert isinstance(source, ReplayInput)
    replayed = run(replay_cfg, source, make_run_dir(tmp_path / "second"), show_progress=False)
    assert replayed["summary"]["objects_total"] == metrics["summary"]["objects_total"]


def test_build_source_defaults_to_synthetic():
    assert isinstance(build_source({}), SyntheticInput)
