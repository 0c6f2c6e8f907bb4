"""
Coordination Arbiter Core

Responsibilities:
- Hold the last snapshot of every pole, per context (real / sim)
- Localize faults by upstream/downstream mismatch
- Queue isolation and recovery commands
- Expire silent poles
- Keep raw pole telemetry (latest reading + bounded history)

NO:
- HTTP / WebSocket handling (backend.main)
- Relay control (poles act on commands themselves)
"""

from .errors import (
    CoordinationError,
    InvalidModeError,
    InvalidPayloadError,
    ModeMismatchError,
    UnknownPoleError,
)
from .models import ContextKind, OperatingMode, PoleSnapshot, SystemState, SystemStatus
from .store import CoordinationStore
from .fault_engine import run_fault_engine
from .mode import ModeGateway
from .mirror import JsonFileMirror, MemoryMirror
from .hub import CoordinationHub
from .telemetry import PoleReading, TelemetryRecord, TelemetryStore
from .staleness import StalenessSweeper

__all__ = [
    'CoordinationError',
    'InvalidModeError',
    'InvalidPayloadError',
    'ModeMismatchError',
    'UnknownPoleError',
    'ContextKind',
    'OperatingMode',
    'PoleSnapshot',
    'SystemState',
    'SystemStatus',
    'CoordinationStore',
    'run_fault_engine',
    'ModeGateway',
    'JsonFileMirror',
    'MemoryMirror',
    'CoordinationHub',
    'PoleReading',
    'TelemetryRecord',
    'TelemetryStore',
    'StalenessSweeper'
]
