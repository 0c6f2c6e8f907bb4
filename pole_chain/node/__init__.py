"""
Pole Node

Everything that runs on one pole. The scan loop lives in node.engine.

NO:
- Chain-wide fault localization (the arbiter owns that)
- Direct links to other poles
"""

from .node_state import CommandAction, CurrentLevel, NodeState, RelayPosition
from .hardware import RelayActuator, RelayFault, SensorFrontend, SensorReading
from .state_machine import NodeStateMachine
from .watchdog import Watchdog

__all__ = [
    'CommandAction',
    'CurrentLevel',
    'NodeState',
    'RelayPosition',
    'RelayActuator',
    'RelayFault',
    'SensorFrontend',
    'SensorReading',
    'NodeStateMachine',
    'Watchdog'
]
