import threading
import time

import pytest

from mqtt_feature_probe.probe.latch import SignalLatch, WaitInterrupted


def test_signal_counts_down_then_counts_extra():
    latch = SignalLatch(2)

    assert latch.signal() is True
    assert latch.count == 1
    assert latch.signal() is True
    assert latch.count == 0
    # Late signals are not errors, they are reported as duplicates
    assert latch.signal() is False
    assert latch.signal() is False
    assert latch.extra == 2


def test_wait_returns_true_when_signalled_from_another_thread():
    """A callback thread opening the latch wakes the waiting probe thread."""
    latch = SignalLatch(3)

    def callbacks():
        for _ in range(3):
            latch.signal()

    timer = threading.Timer(0.05, callbacks)
    timer.start()
    try:
        assert latch.wait(2.0) is True
    finally:
        timer.join()
    assert latch.count == 0


def test_wait_times_out():
    latch = SignalLatch(1)

    started = time.monotonic()
    assert latch.wait(0.05) is False
    assert time.monotonic() - started >= 0.04
    assert latch.count == 1


def test_zero_count_is_already_open():
    assert SignalLatch(0).wait(0) is True


def test_negative_count_rejected():
    with pytest.raises(ValueError):
        SignalLatch(-1)


def test_interrupt_wakes_waiter():
    latch = SignalLatch(1)
    timer = threading.Timer(0.05, latch.interrupt)
    timer.start()

    started = time.monotonic()
    with pytest.raises(WaitInterrupted):
        latch.wait(5.0)
    timer.join()

    assert time.monotonic() - started < 4.0
    assert latch.interrupted is True


def test_open_latch_wins_over_interrupt():
    """If the latch opened before the waiter checks, the wait succeeded."""
    latch = SignalLatch(1)
    latch.signal()
    latch.interrupt()

    assert latch.wait(1.0) is True


def test_pause_sleeps_for_the_duration():
    latch = SignalLatch(1)

    started = time.monotonic()
    latch.pause(0.05)
    assert time.monotonic() - started >= 0.04


def test_pause_interrupted():
    latch = SignalLatch(1)
    latch.interrupt()

    with pytest.raises(WaitInterrupted):
        latch.pause(5.0)
