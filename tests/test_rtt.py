from datetime import timedelta

import pytest

from mieru.rtt import RTTStats


def ms(n):
    return timedelta(milliseconds=n)


def test_update_rtt():
    s = RTTStats()

    s.update_rtt(ms(300))
    assert s.min_rtt == ms(300)
    assert s.latest_rtt == ms(300)
    assert s.smoothed_rtt == ms(300)
    assert s.mean_deviation == ms(150)

    s.update_rtt(ms(200))
    assert s.min_rtt == ms(200)
    assert s.latest_rtt == ms(200)
    assert s.smoothed_rtt == timedelta(microseconds=287500)
    assert s.mean_deviation == timedelta(microseconds=137500)


def test_rto():
    s = RTTStats()
    s.max_ack_delay = timedelta(seconds=2)

    s.update_rtt(ms(300))
    assert s.rto() == ms(2900)

    s.reset()
    assert s.rto() == ms(1000)


def test_non_positive_sample_is_ignored():
    s = RTTStats()
    s.update_rtt(timedelta(0))
    s.update_rtt(ms(-5))
    assert s.min_rtt == timedelta(0)
    assert s.latest_rtt == timedelta(0)
    assert s.has_measurement is False


def test_infinite_sample_is_ignored():
    s = RTTStats()
    s.update_rtt(timedelta.max)
    assert s.smoothed_rtt == timedelta(0)


def test_set_initial_rtt_before_measurement():
    s = RTTStats()
    s.set_initial_rtt(ms(300))
    assert s.smoothed_rtt == ms(300)
    assert s.latest_rtt == ms(300)


def test_set_initial_rtt_after_measurement_raises():
    s = RTTStats()
    s.update_rtt(ms(300))
    with pytest.raises(RuntimeError):
        s.set_initial_rtt(ms(300))


def test_expire_smoothed_metrics_invariants():
    s = RTTStats()
    s.update_rtt(ms(300))
    s.update_rtt(ms(200))
    s.update_rtt(ms(900))
    old_smoothed = s.smoothed_rtt
    old_dev = s.mean_deviation
    s.expire_smoothed_metrics()
    assert s.smoothed_rtt >= s.latest_rtt
    assert s.smoothed_rtt >= old_smoothed
    assert s.mean_deviation >= old_dev
    assert s.mean_deviation >= abs(old_smoothed - s.latest_rtt)


def test_min_rtt_tracks_smallest():
    s = RTTStats()
    for v in (400, 100, 250):
        s.update_rtt(ms(v))
    assert s.min_rtt == ms(100)
    assert s.latest_rtt == ms(250)