"""
Pole Node State Vocabulary

Node state machine:
NORMAL → GRID_DOWN → NORMAL                      (first pole only)
NORMAL → FAULT_UPSTREAM → NORMAL                 (non-first poles)
* → FAULT_DOWNSTREAM → RECOVERY → NORMAL         (non-terminal poles, command driven)

Also the value sets a node reports about its sensors and relays, and the
commands the arbiter can send it.
"""

from enum import Enum


class NodeState(str, Enum):
    """
    Pole Node State Machine

    Exactly one state is active per node at a time.
    """
    NORMAL = "NORMAL"                      # Supply present, relays as commanded
    GRID_DOWN = "GRID_DOWN"                # First pole lost grid supply (not a wire fault)
    FAULT_UPSTREAM = "FAULT_UPSTREAM"      # Upstream claims to feed us but nothing arrives
    FAULT_DOWNSTREAM = "FAULT_DOWNSTREAM"  # Arbiter opened our outgoing relay
    RECOVERY = "RECOVERY"                  # Waiting for stable supply before re-closing


class CurrentLevel(str, Enum):
    HIGH = "HIGH"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"
    NOT_APPLICABLE = "N/A"   # Terminal pole has no outgoing side

    @classmethod
    def from_flag(cls, flag):
        if flag is None:
            return cls.NOT_APPLICABLE
        return cls.HIGH if flag else cls.LOW


class RelayPosition(str, Enum):
    ON = "ON"
    OFF = "OFF"
    NOT_APPLICABLE = "N/A"

    @classmethod
    def from_flag(cls, flag):
        if flag is None:
            return cls.NOT_APPLICABLE
        return cls.ON if flag else cls.OFF


class CommandAction(str, Enum):
    DISABLE_OUTGOING_RELAY = "DISABLE_OUTGOING_RELAY"
    ENABLE_OUTGOING_RELAY = "ENABLE_OUTGOING_RELAY"
