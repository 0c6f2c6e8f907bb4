"""
Fault Engine

Authoritative chain-wide fault localization, run over one context after
every publish. The store lock must be held by the caller.

Sweep order:
1. Grid check (first pole incoming LOW) short-circuits everything else
2. Grid restore clears all isolations
3. Baseline (WAITING / SIM_IDLE) becomes NORMAL once the first pole is fed
4. Adjacent pairs, upstream-most first: mismatch isolates, stable supply un-isolates.
   A downstream LOW only counts once the downstream pole has published after
   the upstream pole started reporting outgoing HIGH.

CRITICAL RULES:
- Idempotent: a second sweep over an unchanged store changes nothing
- A segment is isolated (and its DISABLE queued) at most once per fault
- One recovery timer per context (recovery_start_time)
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from pole_chain.backend.coordination.models import FaultType, SystemStatus, utc_iso
from pole_chain.backend.coordination.store import CoordinationStore
from pole_chain.node.node_state import CommandAction, CurrentLevel
from pole_chain.topology import segment_id

logger = logging.getLogger("FaultEngine")

QueueCommand = Callable[[str, CommandAction, str], Any]
Emit = Callable[[str, Dict[str, Any]], None]

RECOVERY_STABLE_S = 3.0


def run_fault_engine(store: CoordinationStore, queue_command: QueueCommand,
                     emit: Optional[Emit] = None, now: Optional[float] = None,
                     recovery_stable_s: float = RECOVERY_STABLE_S) -> bool:
    """
    Single deterministic pass. Returns True when SystemState changed in a
    way worth persisting and broadcasting (starting the recovery timer alone
    does not count).
    """
    now = time.time() if now is None else now
    ts = utc_iso(now)
    system = store.system
    tag = store.kind.value
    changed = False

    def _emit(name: str, payload: Dict[str, Any]) -> None:
        if emit is not None:
            emit(name, payload)

    # --- Grid status (first pole incoming) ---
    first = store.read(store.topology.first)
    if first is not None and first.incoming_current == CurrentLevel.LOW:
        if system.status != SystemStatus.GRID_DOWN:
            system.status = SystemStatus.GRID_DOWN
            system.fault_type = FaultType.GRID_DOWN
            system.fault_location = "Grid"
            system.last_fault_time = ts
            system.recovery_start_time = None
            changed = True
            logger.warning(f"[{tag}] GRID_DOWN detected by {store.topology.first}")
            _emit("gridDown", {"message": "Grid shutdown detected", "timestamp": ts})
        return changed

    first_fed = first is not None and first.incoming_current == CurrentLevel.HIGH

    if first_fed and system.status == SystemStatus.GRID_DOWN:
        system.status = SystemStatus.NORMAL
        system.fault_type = None
        system.fault_location = None
        system.last_recovery_time = ts
        system.isolated_segments = set()
        system.recovery_start_time = None
        logger.info(f"[{tag}] Grid restored")
        _emit("systemNormal", {"message": "Grid restored", "timestamp": ts})
        return True

    if first_fed and system.status == store.kind.baseline:
        system.status = SystemStatus.NORMAL
        changed = True
        logger.info(f"[{tag}] {store.topology.first} fed, leaving {store.kind.baseline.value}")

    # --- Segment mismatches ---
    recovering = False
    for upstream_id, downstream_id in store.topology.pairs():
        upstream = store.read(upstream_id)
        downstream = store.read(downstream_id)
        if upstream is None or downstream is None:
            continue

        segment = segment_id(upstream_id, downstream_id)
        upstream_feeding = upstream.outgoing_current == CurrentLevel.HIGH

        # FAULT: upstream claims to feed, downstream (reported since then) receives nothing
        if (downstream.incoming_current == CurrentLevel.LOW and upstream_feeding
                and segment not in system.isolated_segments
                and store.reported_since_feed(downstream_id, upstream_id)):
            system.isolated_segments.add(segment)
            system.status = SystemStatus.FAULT
            system.fault_type = FaultType.WIRE_CUT
            system.fault_location = segment
            system.last_fault_time = ts
            system.recovery_start_time = None
            changed = True

            queue_command(upstream_id, CommandAction.DISABLE_OUTGOING_RELAY,
                          f"Fault detected between {upstream_id} and {downstream_id}")
            logger.warning(f"[{tag}] FAULT detected: {segment}")
            _emit("faultDetected", {
                "segment": segment,
                "upstream": upstream_id,
                "downstream": downstream_id,
                "message": f"Line fault between {upstream_id} and {downstream_id}",
                "timestamp": ts,
            })

        # RECOVERY: supply flows across an isolated segment again
        elif (downstream.incoming_current == CurrentLevel.HIGH and upstream_feeding
                and segment in system.isolated_segments):
            recovering = True
            if system.recovery_start_time is None:
                system.recovery_start_time = now
                logger.info(f"[{tag}] {segment} stable, recovery timer started")

            if now - system.recovery_start_time >= recovery_stable_s:
                system.isolated_segments.discard(segment)
                if not system.isolated_segments:
                    system.status = SystemStatus.NORMAL
                    system.fault_type = None
                    system.fault_location = None
                system.last_recovery_time = ts
                system.recovery_start_time = None
                changed = True

                queue_command(upstream_id, CommandAction.ENABLE_OUTGOING_RELAY,
                              f"Fault cleared between {upstream_id} and {downstream_id}")
                logger.info(f"[{tag}] FAULT CLEARED: {segment}")
                _emit("faultCleared", {
                    "segment": segment,
                    "message": f"Fault cleared between {upstream_id} and {downstream_id}",
                    "timestamp": ts,
                })

    # Stability must be continuous: no pair recovering means the timer restarts
    if not recovering and system.recovery_start_time is not None:
        system.recovery_start_time = None
        logger.info(f"[{tag}] recovery interrupted, timer cleared")

    return changed
