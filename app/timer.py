"""Fixed-interval background timer.

Usage:
    from app.timer import IntervalTimer

    def on_tick():
        scheduler.run_cycle()

    timer = IntervalTimer(on_tick, interval=60.0, name="poll")
    timer.start()
"""

import threading
from typing import Callable, Optional

from config import get_logger

logger = get_logger(__name__)


class IntervalTimer:
    """Calls a function every ``interval`` seconds on its own thread.

    Ticks are scheduled against a fixed cadence, not "interval after the
    previous tick finished". If a callback is still running when the next
    tick is due, that tick is skipped and logged, so slow cycles never
    stack up.

    Attributes:
        interval: Time between timer ticks in seconds.
        skipped: Number of ticks dropped because the previous one overran.

    Example:
        >>> timer = IntervalTimer(callback, interval=1.0, name="realtime")
        >>> timer.start()
        >>> # Later...
        >>> timer.stop()
    """

    def __init__(self, callback: Callable[[], None], interval: float,
                 name: str = "timer", initial_delay: float = 0.0):
        """Initialize the timer.

        Args:
            callback: Function to call on each tick.
            interval: Time between ticks in seconds.
            name: Thread name, also used in log lines.
            initial_delay: Seconds to wait before the first tick.
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._callback = callback
        self._interval = interval
        self._name = name
        self._initial_delay = initial_delay
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._busy = threading.Lock()
        self._lock = threading.Lock()
        self.skipped = 0

    @property
    def interval(self) -> float:
        """Get the current interval."""
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        """Update interval; takes effect after the current wait."""
        with self._lock:
            self._interval = value

    @property
    def running(self) -> bool:
        return self._thread is not None and not self._stop_event.is_set()

    def _run_callback(self) -> None:
        try:
            self._callback()
        except Exception as e:
            logger.error(f"{self._name} tick failed: {e}", exc_info=True)
        finally:
            self._busy.release()

    def tick(self) -> bool:
        """Run one tick now unless the previous one is still busy.

        The callback runs on a short-lived worker thread so the cadence
        thread never waits on it.

        Returns:
            True if a tick was started, False if it was skipped.
        """
        if not self._busy.acquire(blocking=False):
            self.skipped += 1
            logger.warning(f"{self._name} tick skipped: previous run still in progress")
            return False
        threading.Thread(
            target=self._run_callback, daemon=True, name=f"{self._name}-tick"
        ).start()
        return True

    def _timer_loop(self) -> None:
        if self._stop_event.wait(self._initial_delay):
            return
        while not self._stop_event.is_set():
            self.tick()
            with self._lock:
                interval = self._interval
            if self._stop_event.wait(interval):
                break

    def start(self) -> None:
        """Start the timer in a background thread."""
        if self.running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._timer_loop, daemon=True, name=self._name)
        self._thread.start()
        logger.debug(f"IntervalTimer {self._name} started with interval {self._interval}s")

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the timer. A tick already running is allowed to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.debug(f"IntervalTimer {self._name} stopped")
