from __future__ import annotations
import threading
import time
from typing import Callable, Optional


class CountdownClock:
    """
    The one countdown source of a session. Ticks once per `interval` seconds on a
    daemon thread and hands each tick the epoch it was started under.

    start() always stops the previous run first, and both start() and stop() bump
    the epoch, so a consumer that compares epochs can drop ticks that were already
    in flight when the clock was restarted or stopped.
    """
    def __init__(self, interval: float = 1.0):
        self.interval = interval
        self._epoch = 0
        self._halt: Optional[threading.Event] = None
        self._lock = threading.Lock()

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def running(self) -> bool:
        return self._halt is not None and not self._halt.is_set()

    def start(self, on_tick: Callable[[int], None]) -> int:
        with self._lock:
            self._stop_locked()
            self._epoch += 1
            epoch = self._epoch
            halt = threading.Event()
            self._halt = halt
            worker = threading.Thread(target=self._run, args=(epoch, halt, on_tick), daemon=True)
            worker.start()
            return epoch

    def stop(self):
        with self._lock:
            self._stop_locked()

    def _stop_locked(self):
        if self._halt is not None:
            self._halt.set()
            self._halt = None
            self._epoch += 1

    def _run(self, epoch: int, halt: threading.Event, on_tick: Callable[[int], None]):
        # schedule against the monotonic clock so ticks don't drift
        deadline = time.monotonic() + self.interval
        while not halt.wait(max(0.0, deadline - time.monotonic())):
            on_tick(epoch)
            deadline += self.interval
