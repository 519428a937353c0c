import math
import threading
import time
from typing import Callable, Dict, Iterator, Optional, Tuple

from arena import socketio


def remaining_seconds(end_time: float, now: float) -> int:
    """Whole seconds left before end_time, never negative."""
    return max(0, int(math.floor(end_time - now)))


def countdown(end_time: float, clock: Callable[[], float] = time.time,
              sleep: Callable[[float], None] = time.sleep, interval: float = 1.0) -> Iterator[int]:
    """Yield the remaining seconds once per tick; the last value yielded is 0.

    Each value is derived from the absolute deadline, so a late or throttled
    tick skips ahead instead of drifting.
    """
    while True:
        remaining = remaining_seconds(end_time, clock())
        yield remaining
        if remaining <= 0:
            return
        sleep(interval)


class Countdown:
    """Ticks one participant's deadline and fires expiry exactly once."""

    def __init__(self, key: Tuple[str, int], end_time: float,
                 on_tick: Callable[[int], None], on_expire: Callable[[], None],
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep,
                 interval: float = 1.0, heartbeat: int = 0, logger=None):
        self.key = key
        self.end_time = end_time
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._clock = clock
        self._sleep = sleep
        self._interval = interval
        self._heartbeat = heartbeat
        self._logger = logger
        self._lock = threading.Lock()
        self._cancelled = False
        self._fired = False
        self.last_remaining: Optional[int] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    def cancel(self) -> None:
        self._cancelled = True

    def run(self) -> None:
        ticks = 0
        for remaining in countdown(self.end_time, self._clock, self._sleep, self._interval):
            if self._cancelled:
                return
            self.last_remaining = remaining
            self._on_tick(remaining)
            ticks += 1
            if self._heartbeat and self._logger and ticks % self._heartbeat == 0:
                self._logger.info(f"[timer-heartbeat] session={self.key} remaining={remaining}s")
        if not self._cancelled:
            self.fire()

    def fire(self) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
        self._cancelled = True
        self._on_expire()
        return True


class CountdownRegistry:
    """Keeps a single live countdown per (lan_id, competition_id)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._countdowns: Dict[Tuple[str, int], Countdown] = {}

    def get(self, key) -> Optional[Countdown]:
        return self._countdowns.get(key)

    def start(self, app, countdown_obj: Countdown) -> Countdown:
        """Start countdown_obj unless one is already ticking for its key.

        No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set.
        """
        with self._lock:
            existing = self._countdowns.get(countdown_obj.key)
            if existing is not None and not existing.cancelled:
                app.logger.info(f"[timer-skip] session={countdown_obj.key} already ticking")
                return existing
            self._countdowns[countdown_obj.key] = countdown_obj

        app.logger.info(f"[timer-set] session={countdown_obj.key} deadline={countdown_obj.end_time}")
        if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
            return countdown_obj

        def _worker(cd: Countdown):
            try:
                cd.run()
            finally:
                self.discard(cd)

        socketio.start_background_task(_worker, countdown_obj)
        return countdown_obj

    def cancel(self, key) -> None:
        with self._lock:
            cd = self._countdowns.pop(key, None)
        if cd is not None:
            cd.cancel()

    def discard(self, cd: Countdown) -> None:
        with self._lock:
            if self._countdowns.get(cd.key) is cd:
                self._countdowns.pop(cd.key, None)
