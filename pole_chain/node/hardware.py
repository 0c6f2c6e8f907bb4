"""
Node Hardware Layer

SensorFrontend turns raw analog samples into the per-tick SensorReading the
state machine consumes. RelayActuator owns the relay and alarm outputs.

CRITICAL RULES:
- Every output is OFF when the actuator is constructed (boot / watchdog reset)
- Unreadable samples (NaN, inf, read errors) count as zero; signed AC samples pass through to the RMS
- No current on the incoming side forces voltage and current to zero
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger("NodeHardware")


class RelayFault(RuntimeError):
    """An output driver failed; all outputs have been forced OFF."""


# ============================================================
# CHANNEL INTERFACES
# ============================================================

class AnalogChannel(ABC):
    """One calibrated analog line (volts or amps, instantaneous value)."""

    @abstractmethod
    def read(self) -> float:
        pass


class DigitalOutput(ABC):
    """One relay coil or alarm driver."""

    @abstractmethod
    def set(self, on: bool) -> None:
        pass


class BenchAnalogChannel(AnalogChannel):
    """
    Channel fed by a fixed value or a waveform function of the sample index.
    Used for bench runs and tests where no ADC is attached.
    """
    def __init__(self, value: float = 0.0, waveform: Callable[[int], float] = None):
        self.value = value
        self.waveform = waveform
        self._index = 0

    def read(self) -> float:
        if self.waveform is not None:
            sample = self.waveform(self._index)
            self._index += 1
            return sample
        return self.value


class BenchDigitalOutput(DigitalOutput):
    """Output that only remembers its last state."""
    def __init__(self, name: str = ""):
        self.name = name
        self.state = False
        self.writes = 0

    def set(self, on: bool) -> None:
        self.state = bool(on)
        self.writes += 1


# ============================================================
# SENSOR FRONTEND
# ============================================================

@dataclass
class SensorReading:
    """Local sensor state for one control tick."""
    incoming_current_high: bool
    outgoing_current_high: Optional[bool]   # None on the terminal pole
    measured_voltage: float
    measured_current: float


def coerce_sample(value) -> float:
    """Sensor read failures become 0.0, which reads as "no current"."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


def rms(samples: List[float]) -> float:
    if not samples:
        return 0.0
    return math.sqrt(sum(s * s for s in samples) / len(samples))


class SensorFrontend:
    """
    Samples the node's analog lines and derives HIGH/LOW current flags.

    :param voltage: line voltage channel
    :param current_in: incoming-side current channel
    :param current_out: outgoing-side current channel (None on the terminal)
    :param window: samples per RMS computation
    :param current_high_a: RMS current at or above which a side counts as HIGH
    """
    def __init__(self, voltage: AnalogChannel, current_in: AnalogChannel,
                 current_out: Optional[AnalogChannel] = None,
                 window: int = 64, current_high_a: float = 0.1):
        if window < 1:
            raise ValueError("RMS window must be at least one sample")
        self.voltage = voltage
        self.current_in = current_in
        self.current_out = current_out
        self.window = window
        self.current_high_a = current_high_a

    def _rms_of(self, channel: AnalogChannel) -> float:
        samples = []
        for _ in range(self.window):
            try:
                raw = channel.read()
            except Exception as e:
                logger.warning(f"Sample read failed ({e}), treating as zero")
                raw = 0.0
            samples.append(coerce_sample(raw))
        return rms(samples)

    def sample(self) -> SensorReading:
        v_rms = self._rms_of(self.voltage)
        i_in = self._rms_of(self.current_in)
        incoming_high = i_in >= self.current_high_a

        outgoing_high = None
        if self.current_out is not None:
            outgoing_high = self._rms_of(self.current_out) >= self.current_high_a

        # Digital "no current" wins over a noisy analog RMS
        if not incoming_high:
            v_rms = 0.0
            i_in = 0.0

        return SensorReading(
            incoming_current_high=incoming_high,
            outgoing_current_high=outgoing_high,
            measured_voltage=v_rms,
            measured_current=i_in,
        )


# ============================================================
# RELAY ACTUATOR
# ============================================================

class RelayActuator:
    """
    Drives the incoming relay, the outgoing relay and the alarm.

    Outputs that a pole does not have are passed as None; their state reads
    back as None and driving them is a no-op.
    """
    def __init__(self, relay_in: Optional[DigitalOutput], relay_out: Optional[DigitalOutput],
                 alarm: Optional[DigitalOutput] = None):
        self._relay_in = relay_in
        self._relay_out = relay_out
        self._alarm = alarm
        self._in_enabled = False
        self._out_enabled = False
        self._alarm_on = False
        # Fail-safe defaults
        self.all_off()

    @property
    def has_incoming(self) -> bool:
        return self._relay_in is not None

    @property
    def has_outgoing(self) -> bool:
        return self._relay_out is not None

    @property
    def relay_in_enabled(self) -> Optional[bool]:
        return self._in_enabled if self.has_incoming else None

    @property
    def relay_out_enabled(self) -> Optional[bool]:
        return self._out_enabled if self.has_outgoing else None

    @property
    def alarm_on(self) -> bool:
        return self._alarm_on

    def _drive(self, output: Optional[DigitalOutput], on: bool) -> None:
        if output is None:
            return
        try:
            output.set(on)
        except Exception as e:
            logger.critical(f"Output driver failure ({e}), forcing all outputs OFF")
            self._force_off()
            raise RelayFault(str(e)) from e

    def set_incoming(self, on: bool) -> None:
        self._drive(self._relay_in, on)
        self._in_enabled = bool(on) and self.has_incoming

    def set_outgoing(self, on: bool) -> None:
        self._drive(self._relay_out, on)
        self._out_enabled = bool(on) and self.has_outgoing

    def set_alarm(self, on: bool) -> None:
        self._drive(self._alarm, on)
        self._alarm_on = bool(on) and self._alarm is not None

    def _force_off(self) -> None:
        """Best effort: try every output even if one of them keeps failing."""
        for output in (self._relay_in, self._relay_out, self._alarm):
            if output is None:
                continue
            try:
                output.set(False)
            except Exception as e:
                logger.critical(f"Could not force output OFF: {e}")
        self._in_enabled = False
        self._out_enabled = False
        self._alarm_on = False

    def all_off(self) -> None:
        self._force_off()
