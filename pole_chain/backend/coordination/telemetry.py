"""
Pole Telemetry

Raw voltage/current readings posted by pole hardware (or the simulator),
kept apart from the coordination snapshots. Every reading is classified
against the overvoltage / overcurrent thresholds and kept in a bounded
per-pole history.

CRITICAL RULES:
- voltage and current must be real numbers (no strings, no NaN/inf)
- status is "normal" or "alert" as reported by the pole
- History is bounded; the oldest reading is dropped first
"""

import logging
import threading
from collections import deque
from typing import Any, Deque, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, StrictStr

from pole_chain.backend.coordination.models import ContextKind, utc_iso
from pole_chain.topology import ChainTopology

logger = logging.getLogger("Telemetry")

HISTORY_SIZE = 100
SERVED_READINGS = 50

OFFLINE_READING = {"status": "offline", "message": "No data received yet"}


class PoleReading(BaseModel):
    """One reading as posted by a pole."""
    pole_id: StrictStr
    voltage: float = Field(strict=True, allow_inf_nan=False)
    current: float = Field(strict=True, allow_inf_nan=False)
    status: Literal["normal", "alert"]
    timestamp: Optional[str] = None


class TelemetryRecord(BaseModel):
    pole_id: str
    voltage: float
    current: float
    status: str
    timestamp: str
    received_at: str
    alert: bool


def classify(reading: PoleReading, overvoltage_v: float, overcurrent_a: float) -> TelemetryRecord:
    received_at = utc_iso()
    return TelemetryRecord(
        pole_id=reading.pole_id,
        voltage=round(reading.voltage, 2),
        current=round(reading.current, 2),
        status=reading.status,
        timestamp=reading.timestamp or received_at,
        received_at=received_at,
        alert=reading.voltage > overvoltage_v or reading.current > overcurrent_a,
    )


class TelemetryStore:
    """Latest reading + bounded history per pole, for one context."""
    def __init__(self, kind: ContextKind, topology: ChainTopology, history_size: int = HISTORY_SIZE):
        self.kind = kind
        self.topology = topology
        self.history_size = history_size
        self.lock = threading.Lock()
        self._history: Dict[str, Deque[TelemetryRecord]] = {}
        self._latest: Dict[str, Optional[TelemetryRecord]] = {}
        self.last_seen: Dict[str, float] = {}
        self.reset()

    def record(self, record: TelemetryRecord, now: float) -> None:
        with self.lock:
            self._history[record.pole_id].append(record)
            self._latest[record.pole_id] = record
            self.last_seen[record.pole_id] = now

    def latest(self) -> Dict[str, Dict[str, Any]]:
        with self.lock:
            return {
                pole_id: (record.model_dump() if record else dict(OFFLINE_READING))
                for pole_id, record in self._latest.items()
            }

    def history(self, pole_id: str, limit: int = SERVED_READINGS) -> Dict[str, Any]:
        with self.lock:
            readings = list(self._history[pole_id])
            latest = self._latest[pole_id]
        return {
            "pole_id": pole_id,
            "latest": latest.model_dump() if latest else None,
            "readings": [r.model_dump() for r in readings[-limit:]] if limit > 0 else [],
            "count": len(readings),
        }

    def expire_stale(self, now: float, timeout_s: float) -> List[str]:
        """Clear the latest reading of every pole silent for longer than timeout_s. History is kept."""
        expired = []
        with self.lock:
            for pole_id in self.topology.poles:
                seen = self.last_seen[pole_id]
                if seen > 0 and now - seen > timeout_s and self._latest[pole_id] is not None:
                    self._latest[pole_id] = None
                    self.last_seen[pole_id] = 0.0
                    expired.append(pole_id)
        for pole_id in expired:
            logger.info(f"[{self.kind.value}] {pole_id} sensor data stale - clearing")
        return expired

    def reset(self) -> None:
        with self.lock:
            for pole_id in self.topology.poles:
                self._history[pole_id] = deque(maxlen=self.history_size)
                self._latest[pole_id] = None
                self.last_seen[pole_id] = 0.0
