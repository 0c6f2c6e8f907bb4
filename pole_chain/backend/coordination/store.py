import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from pole_chain.backend.coordination.models import (
    Command,
    ContextKind,
    PoleSnapshot,
    SystemState,
)
from pole_chain.node.node_state import CommandAction, CurrentLevel
from pole_chain.topology import ChainTopology

logger = logging.getLogger("CoordinationStore")


class CoordinationStore:
    """
    Single Source of Truth for one coordination context (real or sim).

    Last-write-wins snapshot per pole, last-seen times, per-pole command
    queues and the derived SystemState. Callers that read-modify-write (a
    publish followed by the fault sweep, the staleness sweep) hold `lock`
    for the whole sequence.

    Every publish gets a sequence number. `feeding_since` holds the sequence
    of the publish where a pole's outgoing current turned HIGH (0 while it
    is not HIGH), so a downstream report can be checked for being newer than
    the upstream feed it is compared against.
    """

    def __init__(self, kind: ContextKind, topology: ChainTopology):
        self.kind = kind
        self.topology = topology
        self.lock = threading.RLock()
        self._snapshots: Dict[str, Optional[PoleSnapshot]] = {}
        self._queues: Dict[str, List[Command]] = {}
        self.last_seen: Dict[str, float] = {}
        self.published_seq: Dict[str, int] = {}
        self.feeding_since: Dict[str, int] = {}
        self._seq = 0
        self.system = SystemState(status=kind.baseline)
        self.reset()

    def publish(self, pole_id: str, snapshot: PoleSnapshot, now: float) -> PoleSnapshot:
        """Overwrite the pole's snapshot unconditionally and mark it seen."""
        if pole_id == self.topology.terminal:
            snapshot = snapshot.as_terminal()
        with self.lock:
            self._seq += 1
            previous = self._snapshots.get(pole_id)
            if snapshot.outgoing_current != CurrentLevel.HIGH:
                self.feeding_since[pole_id] = 0
            elif previous is None or previous.outgoing_current != CurrentLevel.HIGH:
                self.feeding_since[pole_id] = self._seq
            self._snapshots[pole_id] = snapshot
            self.last_seen[pole_id] = now
            self.published_seq[pole_id] = self._seq
        return snapshot

    def reported_since_feed(self, downstream_id: str, upstream_id: str) -> bool:
        """True when downstream published after upstream's outgoing current turned HIGH."""
        with self.lock:
            since = self.feeding_since.get(upstream_id, 0)
            return since > 0 and self.published_seq.get(downstream_id, 0) > since

    def read(self, pole_id: str) -> Optional[PoleSnapshot]:
        with self.lock:
            return self._snapshots.get(pole_id)

    def snapshots(self) -> Dict[str, Optional[PoleSnapshot]]:
        with self.lock:
            return dict(self._snapshots)

    def summary(self) -> Dict[str, Any]:
        with self.lock:
            state = self.system.to_dict()
            poles = {}
            for pole_id in self.topology.poles:
                snap = self._snapshots.get(pole_id)
                poles[pole_id] = snap.summary_view() if snap else {"node_state": "OFFLINE"}
        return {
            "status": state["status"],
            "fault_location": state["fault_location"],
            "fault_type": state["fault_type"],
            "last_fault_time": state["last_fault_time"],
            "last_recovery_time": state["last_recovery_time"],
            "isolated_segments": state["isolated_segments"],
            "poles": poles,
        }

    # --- Commands (at-most-once) ---

    def queue_command(self, pole_id: str, action: CommandAction, reason: str = "") -> Command:
        command = Command(action=action, reason=reason)
        with self.lock:
            self._queues[pole_id].append(command)
        logger.info(f"[{self.kind.value}] queued {action.value} for {pole_id} ({command.id})")
        return command

    def drain_commands(self, pole_id: str) -> List[Command]:
        with self.lock:
            commands, self._queues[pole_id] = self._queues[pole_id], []
        return commands

    def pending(self, pole_id: str) -> List[Command]:
        with self.lock:
            return list(self._queues[pole_id])

    # --- Liveness ---

    def expire_stale(self, now: float, timeout_s: float) -> Tuple[List[str], bool]:
        """
        Null every pole silent for longer than timeout_s.
        Returns (poles expired now, whether any reporting pole is still active).
        """
        expired: List[str] = []
        any_active = False
        with self.lock:
            for pole_id in self.topology.poles:
                seen = self.last_seen[pole_id]
                if seen <= 0:
                    continue
                if now - seen > timeout_s:
                    if self._snapshots[pole_id] is not None:
                        logger.warning(f"[{self.kind.value}] {pole_id} stale ({now - seen:.0f}s) - clearing state")
                        self._snapshots[pole_id] = None
                        self.last_seen[pole_id] = 0.0
                        self.feeding_since[pole_id] = 0
                        expired.append(pole_id)
                else:
                    any_active = True
        return expired, any_active

    def reset(self) -> None:
        """Back to baseline: no snapshots, empty queues, fresh SystemState."""
        with self.lock:
            for pole_id in self.topology.poles:
                self._snapshots[pole_id] = None
                self._queues[pole_id] = []
                self.last_seen[pole_id] = 0.0
                self.published_seq[pole_id] = 0
                self.feeding_since[pole_id] = 0
            self.system = SystemState(status=self.kind.baseline)
