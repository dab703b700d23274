import json

import numpy as np
import pytest

from find_moving_objects.runtime.bank import Bank
from find_moving_objects.runtime.report_logger import ReportLogger
from find_moving_objects.utils.types import BankArgument
from find_moving_objects.visualization.bev_renderer import BEVRenderer
from find_moving_objects.visualization.markers import arrow_shade, build_markers


@pytest.fixture
def detected(approaching_scans, static_tree, bank_arg):
    bank = Bank(static_tree)
    bank.init(bank_arg, approaching_scans[0])
    for s in approaching_scans[1:]:
        bank.add_scan(s)
    objects = bank.find_moving_objects()
    assert len(objects) == 1
    return objects


def test_default_flags_select_topics(detected, bank_arg):
    markers = build_markers(detected, bank_arg)
    assert set(markers) == {"moving_objects", "objects_closest_point_markers", "objects_velocity_arrows"}
    arrow = markers["objects_velocity_arrows"][0]
    assert arrow["frame_id"] == "odom"
    assert arrow["ns"] == "velocity_arrow_ns"
    assert np.linalg.norm(np.subtract(arrow["end"], arrow["start"])) == pytest.approx(4.0)
    assert markers["moving_objects"][0]["speed"] == pytest.approx(4.0)


def test_all_markers_on_suffixed_topics(detected):
    arg = BankArgument(
        nr_scans_in_bank=3,
        publish_objects_delta_position_lines=True,
        publish_objects_width_lines=True,
    ).with_suffix("_1")
    markers = build_markers(detected, arg)
    assert "objects_delta_position_lines_1" in markers
    width = markers["objects_width_lines_1"][0]
    assert width["ns"] == "width_line_ns_1"
    assert width["frame_id"] == "laser"
    line = markers["objects_delta_position_lines_1"][0]
    assert np.linalg.norm(np.subtract(line["end"], line["start"])) == pytest.approx(2.0)


def test_arrow_shade():
    arg = BankArgument()
    assert arrow_shade(0.875, arg) == pytest.approx(0.875)
    assert arrow_shade(1.7, arg) == 1.0
    full = BankArgument(velocity_arrows_use_full_gray_scale=True)
    assert arrow_shade(full.object_threshold_min_confidence, full) == 0.0
    assert arrow_shade(1.0, full) == 1.0


def test_disabled_flags_publish_nothing(detected):
    arg = BankArgument(
        publish_objects=False,
        publish_objects_closest_point_markers=False,
        publish_objects_velocity_arrows=False,
    )
    assert build_markers(detected, arg) == {}


def test_report_logger_appends_per_topic(tmp_path, detected, bank_arg):
    report = ReportLogger(tmp_path)
    report.publish(build_markers(detected, bank_arg), stamp=0.5)
    report.publish(build_markers([], bank_arg), stamp=0.75)
    lines = report.path_for("moving_objects").read_text().splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["stamp"] == 0.5 and len(first["data"]) == 1
    assert report.counts["objects_velocity_arrows"] == 2


def test_report_logger_can_skip_empty(tmp_path, bank_arg):
    report = ReportLogger(tmp_path, skip_empty=True)
    report.publish(build_markers([], bank_arg), stamp=0.0)
    assert report.counts == {}


def test_bev_renderer_draws_scan_and_objects(detected, approaching_scans):
    bev = BEVRenderer(size=300, pixels_per_meter=40.0)
    empty = bev.render(None)
    img = bev.render(approaching_scans[-1], detected, max_distance=6.5)
    assert img.shape == (300, 300, 3)
    assert img.dtype == np.uint8
    assert int(img.sum()) > int(empty.sum())
    assert bev.world_to_bev(1.0, 0.0) == (150, 110)
