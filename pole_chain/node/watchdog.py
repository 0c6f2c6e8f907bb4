"""
Software Watchdog for the node scan loop.

The loop checks in once per iteration. A monitor thread watches the time
since the last check-in; if it exceeds the timeout (a hung network call, a
stuck driver) the reset callback runs from the monitor thread. The callback
is expected to put the node back into its boot state (relays OFF).
"""

import logging
import threading
import time
from typing import Callable

logger = logging.getLogger("Watchdog")


class Watchdog:
    def __init__(self, timeout_s: float, on_expire: Callable[[], None],
                 clock: Callable[[], float] = time.monotonic):
        if timeout_s <= 0:
            raise ValueError("Watchdog timeout must be positive")
        self.timeout_s = timeout_s
        self.on_expire = on_expire
        self.clock = clock
        self.resets = 0
        self._last_fed = clock()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = None

    def feed(self) -> None:
        with self._lock:
            self._last_fed = self.clock()

    def starved_for(self) -> float:
        with self._lock:
            return self.clock() - self._last_fed

    def check(self) -> bool:
        """
        One monitor pass. Returns True if the watchdog fired.
        """
        elapsed = self.starved_for()
        if elapsed <= self.timeout_s:
            return False

        self.resets += 1
        logger.critical(f"🚨 STARVATION DETECTED! Loop silent for {elapsed:.1f}s - forcing node reset")
        try:
            self.on_expire()
        except Exception:
            logger.critical("Watchdog reset handler failed", exc_info=True)
        # Give the freshly reset loop a full period
        self.feed()
        return True

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self.feed()
        self._thread = threading.Thread(target=self._monitor, name="node-watchdog", daemon=True)
        self._thread.start()
        logger.info(f"[INIT] Watchdog - timeout: {self.timeout_s}s")

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2.0)
        self._thread = None

    def _monitor(self) -> None:
        interval = min(1.0, self.timeout_s / 4)
        while not self._stop.wait(interval):
            self.check()
