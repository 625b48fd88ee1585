"""
Periodic task scheduling with cooperative cancellation.

Every relay loop (directional watchers, finalizers, the scheduled backlog
pass) runs as a PeriodicTask on its own thread. Shutdown sets a shared
``threading.Event``: no new tick starts, the in-flight tick runs to
completion, and every sleep is an ``Event.wait`` so it returns immediately.
"""
import logging
import random
import threading
import time
from typing import Callable, Optional, TypeVar

from .exceptions import ErrorKind, wrap_error

logger = logging.getLogger(__name__)

T = TypeVar('T')


def backoff_delay(attempt: int, base: float = 0.5, cap: float = 60.0, jitter: float = 0.1) -> float:
    """
    Exponential backoff with up to ``jitter`` (fraction) extra random delay.

    Args:
        attempt: 1-based attempt number
        base: Delay for the first attempt, in seconds
        cap: Upper bound before jitter, in seconds
        jitter: Maximum extra delay as a fraction of the delay

    Returns:
        Delay in seconds
    """
    delay = min(cap, base * (2 ** max(attempt - 1, 0)))
    return delay + delay * random.uniform(0, jitter)


def sleep(seconds: float, stop_event: Optional[threading.Event] = None) -> bool:
    """
    Sleep, returning early if ``stop_event`` is set.

    Returns:
        True if the stop event was set during (or before) the sleep
    """
    if stop_event is None:
        time.sleep(seconds)
        return False
    return stop_event.wait(seconds)


def retry_transient(
    fn: Callable[[], T],
    description: str,
    attempts: int = 3,
    base_delay: float = 0.5,
    stop_event: Optional[threading.Event] = None,
) -> T:
    """
    Call ``fn``, retrying transient network failures with backoff.

    Any other failure is converted to its ChainError class and raised
    immediately.

    Args:
        fn: Zero-argument callable
        description: Operation name used in log lines and error messages
        attempts: Total number of attempts
        base_delay: Base delay for exponential backoff in seconds
        stop_event: Optional shutdown event that aborts the wait

    Returns:
        The value returned by ``fn``

    Raises:
        ChainError: The classified failure after retries are exhausted
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as e:
            error = wrap_error(e, description)
            if error.kind != ErrorKind.TRANSIENT_NETWORK or attempt >= attempts:
                if error is e:
                    raise
                raise error from e
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"{description} failed (attempt {attempt}/{attempts}), retrying in {delay:.2f}s: {e}"
            )
            if sleep(delay, stop_event):
                raise error from e


class PeriodicTask:
    """
    Runs ``fn`` every ``interval`` seconds until stopped.

    A tick that raises is logged and the next tick is delayed with jittered
    exponential backoff, capped at ``max_backoff``; the first successful tick
    resets the delay to ``interval``.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[], object],
        interval: float,
        stop_event: Optional[threading.Event] = None,
        max_backoff: float = 300.0,
        jitter: float = 0.1,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self.fn = fn
        self.interval = interval
        self.stop_event = stop_event or threading.Event()
        self.max_backoff = max(max_backoff, interval)
        self.jitter = jitter
        self.consecutive_failures = 0
        self.ticks = 0
        self._thread: Optional[threading.Thread] = None

    def next_delay(self) -> float:
        if self.consecutive_failures == 0:
            return self.interval
        delay = min(self.max_backoff, self.interval * (2 ** (self.consecutive_failures - 1)))
        return delay + delay * random.uniform(0, self.jitter)

    def tick(self) -> float:
        """
        Run one tick.

        Returns:
            Delay in seconds before the next tick
        """
        self.ticks += 1
        try:
            self.fn()
        except Exception:
            self.consecutive_failures += 1
            delay = self.next_delay()
            logger.exception(
                f"[{self.name}] tick failed ({self.consecutive_failures} in a row), "
                f"next attempt in {delay:.1f}s"
            )
            return delay
        if self.consecutive_failures:
            logger.info(f"[{self.name}] recovered after {self.consecutive_failures} failed ticks")
        self.consecutive_failures = 0
        return self.interval

    def run(self) -> None:
        logger.info(f"[{self.name}] started (interval {self.interval}s)")
        while not self.stop_event.is_set():
            delay = self.tick()
            if self.stop_event.wait(delay):
                break
        logger.info(f"[{self.name}] stopped")

    def start(self) -> threading.Thread:
        """Run the task on a new thread"""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError(f"Task {self.name} is already running")
        self._thread = threading.Thread(target=self.run, name=self.name)
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self.stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
