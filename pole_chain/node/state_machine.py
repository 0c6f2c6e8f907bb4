"""
Pole Node State Machine

The autonomous decision core of one pole. Runs once per scan with the time
elapsed since the previous scan, the fresh SensorReading, the cached
upstream peer view and any commands drained from the arbiter.

CRITICAL RULES:
- No internal threads, no wall-clock reads (timers advance by scan_time_ms)
- At most one NodeState transition per scan
- The overvoltage/overcurrent interlock trips immediately, in any state
- Only the outgoing relay is ever opened by a command
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Tuple

from pole_chain.node.hardware import RelayActuator, SensorReading
from pole_chain.node.node_state import CommandAction, CurrentLevel, NodeState, RelayPosition
from pole_chain.topology import NodeIdentity

logger = logging.getLogger("NodeStateMachine")

Transition = Tuple[NodeState, NodeState]


class NodeStateMachine:
    """
    Per-node fault state machine.

    Debounce and stability timers accumulate scan time while their condition
    holds and drop back to zero the moment it breaks (no partial credit).
    """

    def __init__(self, identity: NodeIdentity, actuator: RelayActuator,
                 overvoltage_v: float = 260.0, overcurrent_a: float = 15.0,
                 debounce_ms: float = 500, recovery_stable_ms: float = 3000):
        self.identity = identity
        self.actuator = actuator
        self.overvoltage_v = overvoltage_v
        self.overcurrent_a = overcurrent_a
        self.debounce_ms = debounce_ms
        self.recovery_stable_ms = recovery_stable_ms

        self.state = NodeState.NORMAL
        self.fault_flag = False
        self.tripped = False          # Latched safety interlock
        self._energized = False       # Relays closed once after boot

        # Timers (ms)
        self._supply_loss_ms = 0.0
        self._mismatch_ms = 0.0
        self._stable_ms = 0.0

        self.last_reading: Optional[SensorReading] = None

    # ============================================================
    # CYCLIC EXECUTION (Called every scan)
    # ============================================================

    def update(self, scan_time_ms: float, reading: SensorReading,
               upstream_outgoing: Optional[str] = None,
               commands: Iterable[Any] = ()) -> Optional[Transition]:
        """
        Execute one scan.

        :param scan_time_ms: time elapsed since the previous scan
        :param reading: this scan's sensor reading
        :param upstream_outgoing: upstream peer's outgoing current level, or None
                                  when no fresh peer data is available
        :param commands: commands drained from the arbiter since the last scan
        :return: (from_state, to_state) if the state changed, else None
        """
        self.last_reading = reading
        start = self.state

        self._check_interlock(reading)
        self._apply_commands(commands)

        # Commands take precedence; local rules only run when they did not move us
        if self.state == start:
            self._evaluate_rules(scan_time_ms, reading, upstream_outgoing)

        self._energize(reading)

        if self.state != start:
            logger.info(f"{self.identity.pole_id}: {start.value} -> {self.state.value}")
            return (start, self.state)
        return None

    def _enter(self, state: NodeState) -> None:
        self.state = state
        self._supply_loss_ms = 0.0
        self._mismatch_ms = 0.0
        self._stable_ms = 0.0

    # ============================================================
    # SAFETY INTERLOCK
    # ============================================================

    def _check_interlock(self, reading: SensorReading) -> None:
        over_v = reading.measured_voltage > self.overvoltage_v
        over_i = reading.measured_current > self.overcurrent_a
        if not (over_v or over_i) or self.tripped:
            return

        self.tripped = True
        self.fault_flag = True
        self.actuator.set_incoming(False)
        self.actuator.set_outgoing(False)
        self.actuator.set_alarm(True)
        cause = "OVERVOLTAGE" if over_v else "OVERCURRENT"
        logger.critical(
            f"{self.identity.pole_id}: {cause} TRIP "
            f"(V={reading.measured_voltage:.1f}, I={reading.measured_current:.2f}) - relays opened")

    def reset_trip(self) -> None:
        """Manual reset of a latched interlock trip."""
        if not self.tripped:
            return
        self.tripped = False
        self.actuator.set_alarm(False)
        if self.state == NodeState.NORMAL:
            self.fault_flag = False
        self._energized = False  # Re-close on the next healthy scan
        logger.info(f"{self.identity.pole_id}: interlock trip reset")

    # ============================================================
    # COMMAND HANDLERS
    # ============================================================

    def _apply_commands(self, commands: Iterable[Any]) -> None:
        for command in commands or ():
            action = command.get("action") if isinstance(command, dict) else command
            try:
                action = CommandAction(action)
            except ValueError:
                logger.warning(f"{self.identity.pole_id}: ignoring unknown command {action!r}")
                continue

            if self.identity.is_terminal:
                logger.warning(f"{self.identity.pole_id}: terminal pole has no outgoing relay, "
                               f"ignoring {action.value}")
                continue

            if action == CommandAction.DISABLE_OUTGOING_RELAY:
                self.handle_disable_outgoing()
            elif action == CommandAction.ENABLE_OUTGOING_RELAY:
                self.handle_enable_outgoing()

    def handle_disable_outgoing(self) -> None:
        """Arbiter isolated our downstream segment: any state → FAULT_DOWNSTREAM."""
        self.actuator.set_outgoing(False)
        self.fault_flag = True
        self._enter(NodeState.FAULT_DOWNSTREAM)

    def handle_enable_outgoing(self) -> None:
        """Arbiter lifted the isolation: FAULT_DOWNSTREAM → RECOVERY."""
        if self.state == NodeState.FAULT_DOWNSTREAM:
            self._enter(NodeState.RECOVERY)
        else:
            logger.debug(f"{self.identity.pole_id}: ENABLE_OUTGOING_RELAY in {self.state.value}, no-op")

    # ============================================================
    # LOCAL RULES
    # ============================================================

    def _evaluate_rules(self, dt: float, reading: SensorReading,
                        upstream_outgoing: Optional[str]) -> None:
        incoming = reading.incoming_current_high

        if self.state == NodeState.NORMAL:
            if self.identity.is_first:
                self._supply_loss_ms = self._supply_loss_ms + dt if not incoming else 0.0
                if self._supply_loss_ms >= self.debounce_ms:
                    self._enter(NodeState.GRID_DOWN)
            else:
                mismatch = not incoming and upstream_outgoing == CurrentLevel.HIGH
                self._mismatch_ms = self._mismatch_ms + dt if mismatch else 0.0
                if self._mismatch_ms >= self.debounce_ms:
                    self._enter(NodeState.FAULT_UPSTREAM)

        elif self.state in (NodeState.GRID_DOWN, NodeState.FAULT_UPSTREAM):
            if incoming:
                self._enter(NodeState.NORMAL)

        elif self.state == NodeState.FAULT_DOWNSTREAM:
            if reading.outgoing_current_high:
                self._enter(NodeState.RECOVERY)

        elif self.state == NodeState.RECOVERY:
            stable = incoming and (bool(reading.outgoing_current_high)
                                   or not self.actuator.relay_out_enabled)
            if not stable:
                self._enter(NodeState.FAULT_DOWNSTREAM)
                return
            self._stable_ms += dt
            if self._stable_ms >= self.recovery_stable_ms:
                self._close_outgoing()
                if not self.tripped:
                    self.fault_flag = False
                self._enter(NodeState.NORMAL)

    def _close_outgoing(self) -> None:
        if self.tripped:
            logger.warning(f"{self.identity.pole_id}: interlock tripped, outgoing relay stays open")
            return
        self.actuator.set_outgoing(True)

    def _energize(self, reading: SensorReading) -> None:
        """Close the relays once after boot, when supply is present and nothing is wrong."""
        if self._energized or self.tripped or self.state != NodeState.NORMAL:
            return
        if not reading.incoming_current_high:
            return
        self.actuator.set_incoming(True)
        self.actuator.set_outgoing(True)
        self._energized = True
        logger.info(f"{self.identity.pole_id}: supply present, relays closed")

    # ============================================================
    # STATE REPORT
    # ============================================================

    def snapshot(self) -> Dict[str, Any]:
        """Canonical outbound state report for this node."""
        reading = self.last_reading
        if reading is None:
            incoming = CurrentLevel.UNKNOWN
            outgoing = CurrentLevel.NOT_APPLICABLE if self.identity.is_terminal else CurrentLevel.UNKNOWN
            voltage = current = 0.0
        else:
            incoming = CurrentLevel.from_flag(reading.incoming_current_high)
            outgoing = CurrentLevel.from_flag(reading.outgoing_current_high)
            voltage = round(reading.measured_voltage, 2)
            current = round(reading.measured_current, 2)

        return {
            "pole_id": self.identity.pole_id,
            "incoming_current": incoming.value,
            "outgoing_current": outgoing.value,
            "relay_in": RelayPosition.from_flag(self.actuator.relay_in_enabled).value,
            "relay_out": RelayPosition.from_flag(self.actuator.relay_out_enabled).value,
            "node_state": self.state.value,
            "fault_flag": self.fault_flag,
            "voltage": voltage,
            "current": current,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
