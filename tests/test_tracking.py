from conftest import object_ranges
from find_moving_objects.fusion.transforms import RigidTransform
from find_moving_objects.perception.segmentation.range_segmenter import RangeJumpSegmenter
from find_moving_objects.perception.tracking.bank_tracker import BankTracker, TrackerConfig


def _objects(make_scan, spans, stamp=0.0):
    return RangeJumpSegmenter().segment(make_scan(object_ranges(spans), stamp=stamp))


def test_matches_nearest_object(make_scan):
    old = _objects(make_scan, [(10, 20, 3.0), (60, 70, 3.0)])
    new = _objects(make_scan, [(12, 22, 3.0), (60, 70, 2.5)], stamp=0.5)
    matches = BankTracker().match(old, new)
    assert [(m.old.first_index, m.new.first_index) for m in matches] == [(10, 12), (60, 60)]


def test_matching_is_one_to_one(make_scan):
    old = _objects(make_scan, [(30, 40, 3.0)])
    new = _objects(make_scan, [(28, 38, 3.0), (41, 51, 3.3)], stamp=0.5)
    matches = BankTracker().match(old, new)
    assert len(matches) == 1
    assert len({id(m.old) for m in matches}) == len(matches)


def test_distance_gate(make_scan):
    old = _objects(make_scan, [(10, 20, 5.0)])
    new = _objects(make_scan, [(10, 20, 1.0)], stamp=0.5)
    assert BankTracker(TrackerConfig(max_delta_distance=2.5)).match(old, new) == []
    assert len(BankTracker(TrackerConfig(max_delta_distance=5.0)).match(old, new)) == 1


def test_width_gate(make_scan):
    old = _objects(make_scan, [(10, 14, 3.0)])
    new = _objects(make_scan, [(10, 40, 3.0)], stamp=0.5)
    assert BankTracker(TrackerConfig(max_delta_width_in_points=15)).match(old, new) == []


def test_common_frame_compensates_sensor_motion(make_scan):
    # Same world point, seen after the sensor moved 2 m towards it.
    old = _objects(make_scan, [(0, 10, 4.0)])
    new = _objects(make_scan, [(0, 10, 2.0)], stamp=0.5)
    tracker = BankTracker(TrackerConfig(max_delta_distance=0.5))
    assert tracker.match(old, new) == []
    matches = tracker.match(old, new, RigidTransform(0.0, 0.0, 0.0), RigidTransform(2.0, 0.0, 0.0))
    assert len(matches) == 1
    assert matches[0].distance < 1e-9


def test_empty_inputs():
    assert BankTracker().match([], []) == []
