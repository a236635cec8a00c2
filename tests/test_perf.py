import time
from unittest import mock

from r2net.perf import Perf


def test_no_measurement_yet():
    p = Perf("perf")
    assert p.count() == 0
    assert p.average() == 0


def test_single_measurement_average_is_elapsed():
    p = Perf("perf")
    with mock.patch("time.perf_counter_ns", side_effect=[100, 160]):
        p.start()
        p.stop()
    assert p.count() == 1
    assert p.average() == 160 - 100


def test_two_measurements_average():
    p = Perf("perf")
    with mock.patch("time.perf_counter_ns", side_effect=[100, 160, 200, 300]):
        p.start()
        p.stop()
        first = p.average()
        p.start()
        p.stop()
    assert p.count() == 2
    assert p.average() == ((160 - 100) + (300 - 200)) // 2
    assert p.average() > first


def test_real_clock_measures_sleep():
    p = Perf("perf")
    p.start()
    time.sleep(0.001)
    p.stop()
    assert p.count() == 1
    assert p.average() >= 1_000_000
    p.start()
    time.sleep(0.001)
    p.stop()
    assert p.count() == 2
    assert p.average() >= 1_000_000


def test_context_manager_counts_hits():
    p = Perf("ctx")
    for _ in range(3):
        with p:
            pass
    assert p.count() == 3
    assert p.average() >= 0