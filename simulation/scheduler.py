#Purpose: Explicit fixed-interval driver for ticks.
#Calls on_tick(delta_seconds) every interval_seconds until told to stop.
#One loop, one thread: a tick finishes before the next one is scheduled, so
#the callback is the single writer of its run's state.
#Clock and sleep are injectable so tests can run without waiting.

import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class TickScheduler:
    def __init__(
        self,
        on_tick: Callable[[float], Any],
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        use_wall_clock: bool = True,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.on_tick = on_tick
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._sleep = sleep
        # False: every tick advances exactly interval_seconds regardless of lag
        self.use_wall_clock = use_wall_clock
        self._stopped = False
        self.ticks = 0

    def stop(self) -> None:
        self._stopped = True

    def run(self, should_continue: Callable[[], bool] = lambda: True, max_ticks: Optional[int] = None) -> int:
        """
        Tick until should_continue() is False, stop() is called or max_ticks
        is reached. Returns the number of ticks executed by this call.
        """
        self._stopped = False
        executed = 0
        last = self._clock()
        next_deadline = last + self.interval_seconds

        while not self._stopped and should_continue():
            if max_ticks is not None and executed >= max_ticks:
                break

            wait = next_deadline - self._clock()
            if wait > 0:
                self._sleep(wait)

            now = self._clock()
            delta = (now - last) if self.use_wall_clock else self.interval_seconds
            last = now
            next_deadline = max(next_deadline + self.interval_seconds, now)

            self.on_tick(delta)
            executed += 1
            self.ticks += 1

        logger.debug(f"Scheduler stopped after {executed} ticks")
        return executed
