import logging
import threading
from typing import Callable, List, Optional, Tuple

from pole_chain.backend.coordination.errors import InvalidModeError, ModeMismatchError
from pole_chain.backend.coordination.models import ContextKind, OperatingMode

logger = logging.getLogger("ModeGateway")

ModeListener = Callable[[OperatingMode, OperatingMode], None]


class ModeGateway:
    """
    Process-wide operating mode. IDLE accepts nothing, REAL only the real
    context, SIM only the simulation context.
    """
    def __init__(self, initial: OperatingMode = OperatingMode.IDLE):
        self._mode = initial
        self._lock = threading.Lock()
        self._listeners: List[ModeListener] = []

    @property
    def mode(self) -> OperatingMode:
        return self._mode

    def on_change(self, listener: ModeListener) -> None:
        self._listeners.append(listener)

    def set_mode(self, value) -> Tuple[OperatingMode, OperatingMode]:
        try:
            new_mode = OperatingMode(str(value).strip().upper())
        except ValueError:
            raise InvalidModeError(f"Invalid mode {value!r}, expected one of "
                                   f"{[m.value for m in OperatingMode]}") from None

        with self._lock:
            old_mode, self._mode = self._mode, new_mode

        if old_mode != new_mode:
            logger.info(f"Mode {old_mode.value} -> {new_mode.value}")
            for listener in self._listeners:
                listener(old_mode, new_mode)
        return old_mode, new_mode

    def check(self, kind: ContextKind, mode: Optional[OperatingMode] = None) -> None:
        """Raise ModeMismatchError unless `kind` may be touched in the current mode."""
        mode = mode or self._mode
        if mode == OperatingMode.IDLE:
            raise ModeMismatchError("System is IDLE")
        if mode != kind.accepted_mode:
            raise ModeMismatchError(f"{mode.value} mode active, {kind.value} context rejected")
