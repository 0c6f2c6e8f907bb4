"""
Coordination Data Model

Everything the arbiter stores or returns. Enum values are the strings that
travel on the wire; models are dumped with mode="json" at the boundary.
"""

import math
import secrets
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

from pydantic import BaseModel, Field, field_validator, model_validator

from pole_chain.node.node_state import CommandAction, CurrentLevel, NodeState, RelayPosition


def utc_iso(ts: Optional[float] = None) -> str:
    if ts is None:
        return datetime.now(timezone.utc).isoformat()
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def new_command_id() -> str:
    return f"cmd_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class SystemStatus(str, Enum):
    NORMAL = "NORMAL"
    GRID_DOWN = "GRID_DOWN"
    FAULT = "FAULT"
    WAITING = "WAITING"      # Real context baseline, no first-pole supply seen yet
    SIM_IDLE = "SIM_IDLE"    # Simulation context baseline


class FaultType(str, Enum):
    WIRE_CUT = "WIRE_CUT"
    GRID_DOWN = "GRID_DOWN"


class OperatingMode(str, Enum):
    IDLE = "IDLE"
    REAL = "REAL"
    SIM = "SIM"


class ContextKind(str, Enum):
    """The two independent coordination contexts."""
    REAL = "real"
    SIM = "sim"

    @classmethod
    def from_flag(cls, is_simulation: bool) -> "ContextKind":
        return cls.SIM if is_simulation else cls.REAL

    @property
    def is_simulation(self) -> bool:
        return self is ContextKind.SIM

    @property
    def baseline(self) -> SystemStatus:
        return SystemStatus.SIM_IDLE if self.is_simulation else SystemStatus.WAITING

    @property
    def mirror_prefix(self) -> str:
        return "simulation/coordination" if self.is_simulation else "coordination"

    @property
    def telemetry_prefix(self) -> str:
        return "simulation/poles" if self.is_simulation else "poles"

    @property
    def reading_event(self) -> str:
        return "simPoleData" if self.is_simulation else "newPoleData"

    @property
    def accepted_mode(self) -> OperatingMode:
        return OperatingMode.SIM if self.is_simulation else OperatingMode.REAL

    def event(self, name: str) -> str:
        """Broadcast event name for this context (faultDetected -> simFaultDetected)."""
        if not self.is_simulation:
            return name
        return "sim" + name[0].upper() + name[1:]


def _coerce_number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


class PoleSnapshot(BaseModel):
    """Last reported state of one pole. Missing fields take the defaults below."""
    pole_id: str
    incoming_current: CurrentLevel = CurrentLevel.UNKNOWN
    outgoing_current: CurrentLevel = CurrentLevel.UNKNOWN
    relay_in: RelayPosition = RelayPosition.OFF
    relay_out: RelayPosition = RelayPosition.OFF
    node_state: NodeState = NodeState.NORMAL
    fault_flag: bool = False
    voltage: float = 0.0
    current: float = 0.0
    timestamp: str = Field(default_factory=utc_iso)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # null means "not reported": fall back to the default
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None and v != ""}
        return data

    @field_validator("incoming_current", "outgoing_current", "relay_in", "relay_out", "node_state",
                     mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("incoming_current")
    @classmethod
    def _incoming_is_measured(cls, value: CurrentLevel) -> CurrentLevel:
        if value is CurrentLevel.NOT_APPLICABLE:
            raise ValueError("incoming_current cannot be N/A")
        return value

    @field_validator("voltage", "current", mode="before")
    @classmethod
    def _numeric(cls, value: Any) -> float:
        return _coerce_number(value)

    def as_terminal(self) -> "PoleSnapshot":
        """Terminal pole has no outgoing side and reports no relays."""
        return self.model_copy(update={
            "outgoing_current": CurrentLevel.NOT_APPLICABLE,
            "relay_in": RelayPosition.NOT_APPLICABLE,
            "relay_out": RelayPosition.NOT_APPLICABLE,
        })

    def summary_view(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        return {
            "node_state": data["node_state"],
            "incoming_current": data["incoming_current"],
            "outgoing_current": data["outgoing_current"],
            "relay_in": data["relay_in"],
            "relay_out": data["relay_out"],
            "voltage": data["voltage"],
            "current": data["current"],
            "fault_flag": data["fault_flag"],
            "last_update": data["timestamp"],
        }


class Command(BaseModel):
    action: CommandAction
    reason: str = ""
    id: str = Field(default_factory=new_command_id)
    created_at: str = Field(default_factory=utc_iso)
    status: str = "PENDING"


class SystemState(BaseModel):
    """Derived chain-wide view. Mutated only by the fault engine and resets."""
    status: SystemStatus = SystemStatus.WAITING
    fault_location: Optional[str] = None
    fault_type: Optional[FaultType] = None
    isolated_segments: Set[str] = Field(default_factory=set)
    recovery_start_time: Optional[float] = None
    last_fault_time: Optional[str] = None
    last_recovery_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["isolated_segments"] = sorted(self.isolated_segments)
        return data
