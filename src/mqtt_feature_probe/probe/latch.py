"""
Countdown Latch for Callback/Probe Synchronisation.

This module contains the `SignalLatch`, the one primitive the probes use to
hand over from the paho network thread (which runs the delivery callbacks)
to the probing thread (which waits for them with a bound).
"""
import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class WaitInterrupted(Exception):
    """The waiting thread was interrupted before the latch opened."""


class SignalLatch:
    _count: int
    _extra: int
    _interrupted: bool
    _cond: threading.Condition

    """
    A countable one-shot gate.

    `signal()` may be called from any thread. Signals that arrive after the
    count already reached zero do not fail; they are counted in `extra` and
    `signal()` returns False for them, so callers can tell a first delivery
    from a duplicate one.
    """
    def __init__(self, count: int = 1):
        if count < 0:
            raise ValueError(f"Latch count must not be negative, got {count}")
        self._count = count
        self._extra = 0
        self._interrupted = False
        self._cond = threading.Condition()

    @property
    def count(self) -> int:
        with self._cond:
            return self._count

    @property
    def extra(self) -> int:
        with self._cond:
            return self._extra

    @property
    def interrupted(self) -> bool:
        with self._cond:
            return self._interrupted

    def signal(self) -> bool:
        """
        Counts the latch down by one.
        Returns True if this call decremented the count, False if it was already zero.
        """
        with self._cond:
            if self._count == 0:
                self._extra += 1
                return False
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()
            return True

    def wait(self, timeout: Optional[float]) -> bool:
        """
        Blocks until the count reaches zero or `timeout` seconds pass.

        Returns whether the latch opened in time. Raises `WaitInterrupted`
        if `interrupt()` was called before it opened.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._count == 0 or self._interrupted, timeout=timeout)
            if self._count == 0:
                return True
            if self._interrupted:
                raise WaitInterrupted(f"Interrupted with {self._count} signal(s) outstanding")
            return False

    def pause(self, seconds: float):
        """Sleeps for `seconds` unless the latch gets interrupted first."""
        with self._cond:
            if self._cond.wait_for(lambda: self._interrupted, timeout=max(seconds, 0.0)):
                raise WaitInterrupted(f"Interrupted during a {seconds:.3f}s pause")

    def interrupt(self):
        """Wakes every waiting thread with `WaitInterrupted`."""
        with self._cond:
            self._interrupted = True
            self._cond.notify_all()
        logger.debug("Latch interrupted.")
