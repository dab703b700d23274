import math
import threading
import time

import numpy as np
import pytest

from find_moving_objects.fusion.transforms import RigidTransform, StampedTransform, TransformBuffer


def test_compose_and_inverse():
    a = RigidTransform(1.0, 2.0, math.pi / 2)
    b = RigidTransform(0.5, 0.0, 0.0)
    np.testing.assert_allclose(a.compose(b).apply([0.0, 0.0]), a.apply(b.apply([0.0, 0.0])))
    ident = a.compose(a.inverse())
    assert ident.x == pytest.approx(0.0, abs=1e-12)
    assert ident.y == pytest.approx(0.0, abs=1e-12)
    assert ident.yaw == pytest.approx(0.0, abs=1e-12)


def test_rotate_ignores_translation():
    tf = RigidTransform(5.0, 5.0, math.pi)
    np.testing.assert_allclose(tf.rotate([1.0, 0.0]), [-1.0, 0.0], atol=1e-12)


def test_dynamic_edge_is_interpolated():
    buf = TransformBuffer()
    buf.set_transform(StampedTransform("odom", "base_link", 0.0, RigidTransform(0.0, 0.0, 0.0)))
    buf.set_transform(StampedTransform("odom", "base_link", 1.0, RigidTransform(2.0, 0.0, 0.0)))
    tf = buf.lookup("odom", "base_link", 0.25)
    assert tf.x == pytest.approx(0.5)


def test_lookup_outside_history_fails():
    buf = TransformBuffer()
    buf.set_transform(StampedTransform("odom", "base_link", 1.0, RigidTransform()))
    buf.set_transform(StampedTransform("odom", "base_link", 2.0, RigidTransform()))
    assert buf.lookup("odom", "base_link", 0.5) is None
    assert buf.lookup("odom", "base_link", 2.5) is None
    assert buf.can_transform("odom", "base_link", 1.5)


def test_chain_through_common_ancestor():
    buf = TransformBuffer()
    buf.set_static("map", "odom", RigidTransform(10.0, 0.0, 0.0))
    buf.set_transform(StampedTransform("odom", "base_link", 0.0, RigidTransform(1.0, 0.0, 0.0)))
    buf.set_static("base_link", "laser", RigidTransform(0.2, 0.0, 0.0))
    buf.set_static("odom", "beacon", RigidTransform(0.0, 3.0, 0.0))

    np.testing.assert_allclose(buf.lookup("map", "laser", 0.0).apply([0.0, 0.0]), [11.2, 0.0])
    np.testing.assert_allclose(buf.lookup("beacon", "laser", 0.0).apply([0.0, 0.0]), [1.2, -3.0])
    assert buf.lookup("laser", "laser", 123.0) == RigidTransform.identity()


def test_unknown_frames_fail():
    buf = TransformBuffer()
    buf.set_static("map", "odom", RigidTransform())
    assert buf.lookup("map", "nowhere", 0.0) is None


def test_reparenting_is_rejected():
    buf = TransformBuffer()
    buf.set_static("odom", "base_link", RigidTransform())
    with pytest.raises(ValueError):
        buf.set_static("map", "base_link", RigidTransform())
    with pytest.raises(ValueError):
        buf.set_static("odom", "odom", RigidTransform())


def test_history_is_bounded_by_cache_time():
    buf = TransformBuffer(cache_time=1.0)
    for i in range(30):
        buf.set_transform(StampedTransform("odom", "base_link", i * 0.1, RigidTransform(i * 0.1, 0.0, 0.0)))
    assert buf.lookup("odom", "base_link", 0.5) is None
    assert buf.lookup("odom", "base_link", 2.5) is not None


def test_late_samples_are_inserted_in_order():
    buf = TransformBuffer()
    buf.set_transform(StampedTransform("odom", "base_link", 0.0, RigidTransform(0.0, 0.0, 0.0)))
    buf.set_transform(StampedTransform("odom", "base_link", 2.0, RigidTransform(2.0, 0.0, 0.0)))
    buf.set_transform(StampedTransform("odom", "base_link", 1.0, RigidTransform(5.0, 0.0, 0.0)))
    assert buf.lookup("odom", "base_link", 1.0).x == pytest.approx(5.0)


def test_lookup_waits_for_late_transform():
    buf = TransformBuffer()
    buf.set_static("map", "odom", RigidTransform())

    def publish():
        time.sleep(0.05)
        buf.set_transform(StampedTransform("odom", "base_link", 1.0, RigidTransform(1.0, 0.0, 0.0)))

    t = threading.Thread(target=publish)
    t.start()
    tf = buf.lookup("map", "base_link", 1.0, timeout=2.0)
    t.join()
    assert tf is not None and tf.x == pytest.approx(1.0)


def test_stamped_transform_dict_roundtrip():
    st = StampedTransform("odom", "base_link", 1.5, RigidTransform(1.0, -2.0, 0.3))
    d = st.to_dict(static=True)
    assert d["static"] is True
    assert StampedTransform.from_dict(d) == st
