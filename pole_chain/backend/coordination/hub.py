"""
Coordination Hub

The arbiter service object. Owns both coordination contexts, the operating
mode, the broadcaster and the persistent mirror; every HTTP route and the
in-process node client go through it.

Per request:
Validate (mode, pole, payload) -> Store + FaultEngine (under the context lock)
-> Mirror + Broadcast (after the lock is released)
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from pole_chain.backend.coordination.errors import InvalidPayloadError, UnknownPoleError
from pole_chain.backend.coordination.fault_engine import RECOVERY_STABLE_S, run_fault_engine
from pole_chain.backend.coordination.mirror import IMirror, MemoryMirror
from pole_chain.backend.coordination.mode import ModeGateway
from pole_chain.backend.coordination.models import (
    ContextKind,
    OperatingMode,
    PoleSnapshot,
    utc_iso,
)
from pole_chain.backend.coordination.store import CoordinationStore
from pole_chain.backend.coordination.telemetry import (
    SERVED_READINGS,
    PoleReading,
    TelemetryStore,
    classify,
)
from pole_chain.backend.middleware.bridge import EventBroadcaster
from pole_chain.field_map import decode_payload
from pole_chain.node.node_state import CommandAction
from pole_chain.topology import ChainTopology

logger = logging.getLogger("Coordination")

Event = Tuple[str, Dict[str, Any]]


class CoordinationHub:
    def __init__(self, topology: Optional[ChainTopology] = None,
                 mode: Optional[ModeGateway] = None,
                 broadcaster: Optional[EventBroadcaster] = None,
                 mirror: Optional[IMirror] = None,
                 clock: Callable[[], float] = time.time,
                 recovery_stable_s: float = RECOVERY_STABLE_S,
                 overvoltage_v: float = 260.0,
                 overcurrent_a: float = 15.0):
        self.topology = topology or ChainTopology()
        self.mode = mode or ModeGateway()
        self.broadcaster = broadcaster or EventBroadcaster()
        self.mirror = mirror or MemoryMirror()
        self.clock = clock
        self.recovery_stable_s = recovery_stable_s
        self.contexts: Dict[ContextKind, CoordinationStore] = {
            kind: CoordinationStore(kind, self.topology) for kind in ContextKind
        }
        self.overvoltage_v = overvoltage_v
        self.overcurrent_a = overcurrent_a
        self.telemetry: Dict[ContextKind, TelemetryStore] = {
            kind: TelemetryStore(kind, self.topology) for kind in ContextKind
        }
        self.mode.on_change(self._on_mode_change)

    # ============================================================
    # HELPERS
    # ============================================================

    def context(self, is_simulation: bool) -> CoordinationStore:
        return self.contexts[ContextKind.from_flag(is_simulation)]

    def _require_pole(self, pole_id: Any) -> str:
        if not pole_id:
            raise InvalidPayloadError("Missing pole_id")
        if not isinstance(pole_id, str):
            raise InvalidPayloadError(f"pole_id must be a string, got {type(pole_id).__name__}")
        if pole_id not in self.topology:
            raise UnknownPoleError(f"Invalid pole_id: {pole_id}")
        return pole_id

    def emit(self, kind: ContextKind, name: str, payload: Dict[str, Any]) -> None:
        self.broadcaster.emit(kind.event(name), payload)

    def mirror_path(self, kind: ContextKind, *parts: str) -> str:
        return "/".join((kind.mirror_prefix,) + parts)

    def _record_event(self, kind: ContextKind, name: str, payload: Dict[str, Any]) -> None:
        """Fault lifecycle events also land in the mirror under faults/<segment>."""
        if name == "faultDetected":
            self.mirror.write(self.mirror_path(kind, "faults", payload["segment"]), {
                "status": "ACTIVE",
                "detected_at": payload["timestamp"],
                "upstream": payload["upstream"],
                "downstream": payload["downstream"],
            })
        elif name == "faultCleared":
            self.mirror.write(self.mirror_path(kind, "faults", payload["segment"]), {
                "status": "CLEARED",
                "cleared_at": payload["timestamp"],
            })
        self.emit(kind, name, payload)

    # ============================================================
    # NODE-FACING OPERATIONS
    # ============================================================

    def publish(self, pole_id: Optional[str], payload: Dict[str, Any], is_simulation: bool) -> Dict[str, Any]:
        """
        Store a node's snapshot and run the fault sweep.
        Raises ModeMismatchError / UnknownPoleError / InvalidPayloadError; nothing is applied then.
        """
        kind = ContextKind.from_flag(is_simulation)
        self.mode.check(kind)
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Payload must be a JSON object")
        pole_id = self._require_pole(pole_id or payload.get("pole_id") or payload.get("poleId"))

        fields = decode_payload(pole_id, payload)
        fields.pop("is_simulation", None)
        fields["pole_id"] = pole_id
        try:
            snapshot = PoleSnapshot(**fields)
        except ValidationError as e:
            raise InvalidPayloadError(f"Malformed snapshot for {pole_id}: {e.errors()[0]['msg']}") from None

        store = self.contexts[kind]
        events: List[Event] = []
        now = self.clock()
        with store.lock:
            stored = store.publish(pole_id, snapshot, now)
            changed = run_fault_engine(
                store,
                store.queue_command,
                emit=lambda name, data: events.append((name, data)),
                now=now,
                recovery_stable_s=self.recovery_stable_s,
            )
            summary = store.summary()

        state = stored.model_dump(mode="json")
        self.mirror.write(self.mirror_path(kind, "poles", pole_id), state)
        self.mirror.write(self.mirror_path(kind, "system"), summary)
        for name, data in events:
            self._record_event(kind, name, data)
        if changed:
            self.emit(kind, "systemStateUpdate", summary)
        self.emit(kind, "poleStateUpdate", {"pole_id": pole_id, "state": state})
        return state

    def poll_peer(self, pole_id: str, is_simulation: bool) -> Dict[str, Any]:
        pole_id = self._require_pole(pole_id)
        snapshot = self.context(is_simulation).read(pole_id)
        if snapshot is None:
            return {"pole_id": pole_id, "node_state": "OFFLINE"}
        return snapshot.model_dump(mode="json")

    def poll_commands(self, pole_id: str, is_simulation: bool) -> Dict[str, Any]:
        pole_id = self._require_pole(pole_id)
        commands = self.context(is_simulation).drain_commands(pole_id)
        if commands:
            logger.info(f"{pole_id} collected {len(commands)} command(s)")
        return {"pole_id": pole_id, "commands": [c.model_dump(mode="json") for c in commands]}

    # ============================================================
    # ADMIN OPERATIONS
    # ============================================================

    def admin_command(self, pole_id: str, action: Any, reason: Optional[str], is_simulation: bool) -> Dict[str, Any]:
        """Queue a command directly, bypassing the fault engine."""
        kind = ContextKind.from_flag(is_simulation)
        self.mode.check(kind)
        pole_id = self._require_pole(pole_id)
        try:
            action = CommandAction(action)
        except ValueError:
            raise InvalidPayloadError(f"Unknown action: {action!r}") from None

        reason = reason or "Manual command"
        command = self.contexts[kind].queue_command(pole_id, action, reason)
        logger.info(f"[{kind.value}] admin command {action.value} -> {pole_id}: {reason}")
        self.emit(kind, "commandSent", {
            "pole_id": pole_id,
            "action": action.value,
            "reason": reason,
            "timestamp": command.created_at,
        })
        return command.model_dump(mode="json")

    def reset(self, is_simulation: bool) -> Dict[str, Any]:
        kind = ContextKind.from_flag(is_simulation)
        store = self.contexts[kind]
        with store.lock:
            store.reset()
            summary = store.summary()
        self.announce_reset(kind, summary)
        return summary

    def announce_reset(self, kind: ContextKind, summary: Dict[str, Any]) -> None:
        """Mirror + broadcast for a context already reset under its lock."""
        logger.info(f"[{kind.value}] context reset to {kind.baseline.value}")
        self.mirror.write(self.mirror_path(kind, "system"), summary)
        self.emit(kind, "systemNormal", {"message": "System reset", "timestamp": utc_iso()})
        self.emit(kind, "systemStateUpdate", summary)

    def summary(self, is_simulation: bool) -> Dict[str, Any]:
        return self.context(is_simulation).summary()

    # ============================================================
    # TELEMETRY
    # ============================================================

    def record_reading(self, payload: Dict[str, Any], is_simulation: bool) -> Dict[str, Any]:
        """
        Store one raw voltage/current reading and classify it against the thresholds.
        Mode-gated like publish(); never touches the coordination state.
        """
        kind = ContextKind.from_flag(is_simulation)
        self.mode.check(kind)
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Payload must be a JSON object")
        pole_id = self._require_pole(payload.get("pole_id") or payload.get("poleId"))

        fields = decode_payload(pole_id, payload)
        fields["pole_id"] = pole_id
        try:
            reading = PoleReading(**fields)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"])
            raise InvalidPayloadError(f"Invalid reading for {pole_id}: {field}: {error['msg']}") from None

        record = classify(reading, self.overvoltage_v, self.overcurrent_a)
        self.telemetry[kind].record(record, self.clock())
        data = record.model_dump()

        if record.alert:
            logger.warning(f"[{kind.value}] ALERT on {pole_id}: V={record.voltage}V, I={record.current}A")
        else:
            logger.debug(f"[{kind.value}] {pole_id}: V={record.voltage}V, I={record.current}A [{record.status}]")

        self.mirror.write(f"{kind.telemetry_prefix}/{pole_id}/latest", data)
        self.broadcaster.emit(kind.reading_event, {"pole_id": pole_id, "data": data})
        if record.alert:
            self.emit(kind, "poleAlert", {
                "pole_id": pole_id,
                "data": data,
                "message": f"Alert on {pole_id}: V={record.voltage}V, I={record.current}A",
            })
        return data

    def latest_readings(self, is_simulation: bool) -> Dict[str, Dict[str, Any]]:
        return self.telemetry[ContextKind.from_flag(is_simulation)].latest()

    def reading_history(self, pole_id: str, is_simulation: bool, limit: int = SERVED_READINGS) -> Dict[str, Any]:
        pole_id = self._require_pole(pole_id)
        return self.telemetry[ContextKind.from_flag(is_simulation)].history(pole_id, limit)

    def expire_readings(self, now: float, timeout_s: float) -> Dict[ContextKind, List[str]]:
        """Clear stale latest readings in both contexts and tell listeners the pole went quiet."""
        result = {}
        for kind, store in self.telemetry.items():
            expired = store.expire_stale(now, timeout_s)
            for pole_id in expired:
                self.mirror.remove(f"{kind.telemetry_prefix}/{pole_id}/latest")
                self.broadcaster.emit(kind.reading_event, {"pole_id": pole_id, "data": None})
            result[kind] = expired
        return result

    def mirror_check(self) -> Dict[str, Any]:
        status = self.mirror.check()
        status["current_mode"] = self.get_mode().value
        return status

    # ============================================================
    # MODE
    # ============================================================

    def get_mode(self) -> OperatingMode:
        return self.mode.mode

    def set_mode(self, value: Any) -> OperatingMode:
        _, new_mode = self.mode.set_mode(value)
        return new_mode

    def _on_mode_change(self, old: OperatingMode, new: OperatingMode) -> None:
        if old == OperatingMode.SIM and new != OperatingMode.SIM:
            logger.info("Leaving SIM mode, wiping simulation mirror")
            self.mirror.remove("simulation")
