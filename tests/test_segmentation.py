import numpy as np

from conftest import object_ranges
from find_moving_objects.perception.segmentation.range_segmenter import RangeJumpSegmenter, SegmenterConfig


def test_short_runs_produce_no_candidates(make_scan):
    scan = make_scan(object_ranges([(10, 11, 2.0), (40, 44, 2.0)]))
    objects = RangeJumpSegmenter(SegmenterConfig(min_nr_points=3)).segment(scan)
    assert [(o.first_index, o.last_index) for o in objects] == [(40, 44)]


def test_range_jump_splits_objects(make_scan):
    ranges = object_ranges([(10, 20, 2.0), (21, 30, 2.5)])
    objects = RangeJumpSegmenter().segment(make_scan(ranges))
    assert [(o.first_index, o.last_index) for o in objects] == [(10, 20), (21, 30)]


def test_small_steps_stay_one_object(make_scan):
    ranges = object_ranges([(10, 30, 2.0)])
    ranges[10:31] += np.arange(21) * 0.1
    objects = RangeJumpSegmenter().segment(make_scan(ranges))
    assert len(objects) == 1
    assert objects[0].closest_index == 10
    assert objects[0].closest_distance == 2.0


def test_readings_beyond_max_distance_are_ignored(make_scan):
    scan = make_scan(object_ranges([(10, 20, 7.0), (50, 60, 3.0)]))
    objects = RangeJumpSegmenter(SegmenterConfig(max_distance=6.5)).segment(scan)
    assert [o.first_index for o in objects] == [50]


def test_out_of_bounds_readings_break_runs(make_scan):
    ranges = object_ranges([(10, 30, 2.0)])
    ranges[20] = 0.01  # below range_min
    objects = RangeJumpSegmenter().segment(make_scan(ranges))
    assert [(o.first_index, o.last_index) for o in objects] == [(10, 19), (21, 30)]


def test_segmentation_is_deterministic(make_scan):
    rng = np.random.default_rng(3)
    scan = make_scan(rng.uniform(1.0, 3.0, size=100))
    seg = RangeJumpSegmenter()
    first = seg.segment(scan)
    second = seg.segment(scan)
    assert [(o.first_index, o.last_index) for o in first] == [(o.first_index, o.last_index) for o in second]
    for a, b in zip(first, second):
        np.testing.assert_array_equal(a.points, b.points)


def test_candidate_geometry(make_scan):
    obj = RangeJumpSegmenter().segment(make_scan(object_ranges([(10, 20, 2.0)])))[0]
    assert obj.nr_points == 11
    assert np.isclose(obj.seen_width, 10 * 0.01)
    assert np.isclose(obj.angle_begin, 0.1) and np.isclose(obj.angle_end, 0.2)
    np.testing.assert_allclose(obj.closest_point, [2.0 * np.cos(0.1), 2.0 * np.sin(0.1)])
    assert obj.width_m > 0


def test_scan_point_accessors(make_scan):
    scan = make_scan(object_ranges([(10, 20, 2.0)]))
    assert scan.is_valid(10)
    assert not scan.is_valid(5)
    np.testing.assert_allclose(scan.point_at(10), [2.0 * np.cos(0.1), 2.0 * np.sin(0.1)])
    np.testing.assert_allclose(scan.points()[15], scan.point_at(15))
