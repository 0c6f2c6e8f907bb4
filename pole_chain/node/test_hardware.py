"""
Node Hardware Layer - Basic Tests
"""

import math

import pytest

from pole_chain.node.hardware import (
    AnalogChannel,
    BenchAnalogChannel,
    BenchDigitalOutput,
    DigitalOutput,
    RelayActuator,
    RelayFault,
    SensorFrontend,
    coerce_sample,
    rms,
)


class BrokenChannel(AnalogChannel):
    def read(self) -> float:
        raise IOError("ADC timeout")


class BrokenOutput(DigitalOutput):
    def __init__(self):
        self.calls = []

    def set(self, on: bool) -> None:
        self.calls.append(on)
        if on:
            raise IOError("coil open circuit")


def sine(peak, window):
    return lambda i: peak * math.sin(2 * math.pi * i / window)


def test_coerce_sample():
    assert coerce_sample(float("nan")) == 0.0
    assert coerce_sample(float("inf")) == 0.0
    assert coerce_sample("garbage") == 0.0
    assert coerce_sample(None) == 0.0
    assert coerce_sample("3.5") == 3.5
    assert coerce_sample(-325.0) == -325.0  # AC half-cycle kept as read


def test_rms_of_sine_window():
    window = 64
    samples = [sine(10.0, window)(i) for i in range(window)]
    assert rms(samples) == pytest.approx(10.0 / math.sqrt(2), rel=1e-6)
    assert rms([]) == 0.0


def test_frontend_flags_and_values():
    print("=" * 60)
    print("SENSOR FRONTEND - RMS + FLAGS")
    print("=" * 60)
    window = 32
    frontend = SensorFrontend(
        voltage=BenchAnalogChannel(waveform=sine(230.0 * math.sqrt(2), window)),
        current_in=BenchAnalogChannel(waveform=sine(5.0 * math.sqrt(2), window)),
        current_out=BenchAnalogChannel(value=0.0),
        window=window,
    )
    reading = frontend.sample()
    print(f"  V={reading.measured_voltage:.1f} I={reading.measured_current:.2f}")
    assert reading.incoming_current_high is True
    assert reading.outgoing_current_high is False
    assert reading.measured_voltage == pytest.approx(230.0, rel=1e-3)
    assert reading.measured_current == pytest.approx(5.0, rel=1e-3)


def test_no_incoming_current_forces_zero_values():
    frontend = SensorFrontend(
        voltage=BenchAnalogChannel(value=230.0),
        current_in=BenchAnalogChannel(value=0.05),
        window=8,
    )
    reading = frontend.sample()
    assert reading.incoming_current_high is False
    assert reading.outgoing_current_high is None
    assert reading.measured_voltage == 0.0
    assert reading.measured_current == 0.0


def test_failed_reads_count_as_no_current():
    frontend = SensorFrontend(
        voltage=BenchAnalogChannel(value=230.0),
        current_in=BrokenChannel(),
        current_out=BenchAnalogChannel(value=float("nan")),
        window=4,
    )
    reading = frontend.sample()
    assert reading.incoming_current_high is False
    assert reading.outgoing_current_high is False


def test_actuator_defaults_off_on_construction():
    relay_in = BenchDigitalOutput("in")
    relay_out = BenchDigitalOutput("out")
    alarm = BenchDigitalOutput("alarm")
    relay_in.state = relay_out.state = alarm.state = True  # left on by a previous run

    actuator = RelayActuator(relay_in, relay_out, alarm)
    assert (relay_in.state, relay_out.state, alarm.state) == (False, False, False)
    assert actuator.relay_in_enabled is False
    assert actuator.relay_out_enabled is False


def test_actuator_missing_outputs_read_none():
    actuator = RelayActuator(BenchDigitalOutput(), None)
    actuator.set_outgoing(True)
    assert actuator.has_outgoing is False
    assert actuator.relay_out_enabled is None


def test_driver_failure_forces_all_off():
    relay_in = BenchDigitalOutput("in")
    broken = BrokenOutput()
    actuator = RelayActuator(relay_in, broken)
    actuator.set_incoming(True)
    assert relay_in.state is True

    with pytest.raises(RelayFault):
        actuator.set_outgoing(True)
    assert relay_in.state is False
    assert actuator.relay_in_enabled is False
    assert broken.calls[-1] is False
