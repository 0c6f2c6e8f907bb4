import logging
import threading
from typing import Dict, List, Optional

from pole_chain.backend.coordination.hub import CoordinationHub
from pole_chain.backend.coordination.models import ContextKind

logger = logging.getLogger("StalenessSweeper")


class StalenessSweeper:
    """
    Expires silent poles in every context on a fixed period.
    Raw telemetry readings go stale on the same timeout.

    A pole silent for longer than timeout_s reads back OFFLINE from then on.
    When the last reporting pole of a context goes silent, the whole context
    collapses to its baseline (WAITING / SIM_IDLE).
    """
    def __init__(self, hub: CoordinationHub, interval_s: float = 5.0, timeout_s: float = 15.0):
        self.hub = hub
        self.interval_s = interval_s
        self.timeout_s = timeout_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self, now: Optional[float] = None) -> Dict[ContextKind, List[str]]:
        """One pass over both contexts. Returns the poles expired per context."""
        now = self.hub.clock() if now is None else now
        result: Dict[ContextKind, List[str]] = {}
        self.hub.expire_readings(now, self.timeout_s)

        for kind, store in self.hub.contexts.items():
            reset_summary = None
            with store.lock:
                expired, any_active = store.expire_stale(now, self.timeout_s)
                if expired and not any_active:
                    logger.warning(f"[{kind.value}] All data sources inactive - resetting to {kind.baseline.value}")
                    store.reset()
                    reset_summary = store.summary()
            if reset_summary is not None:
                self.hub.announce_reset(kind, reset_summary)
            result[kind] = expired
            if not expired:
                continue

            for pole_id in expired:
                self.hub.mirror.remove(self.hub.mirror_path(kind, "poles", pole_id))
            if any_active:
                self.hub.emit(kind, "systemStateUpdate", store.summary())

            for pole_id in self.hub.topology.poles:
                self.hub.emit(kind, "poleStateUpdate", {
                    "pole_id": pole_id,
                    "state": self.hub.poll_peer(pole_id, kind.is_simulation),
                })
        return result

    # --- Background thread ---

    def _run(self):
        logger.info(f"Staleness sweeper started (every {self.interval_s}s, timeout {self.timeout_s}s)")
        while not self._stop.wait(self.interval_s):
            try:
                self.sweep()
            except Exception:
                logger.exception("Staleness sweep failed")
        logger.info("Staleness sweeper stopped")

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="staleness-sweeper", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
