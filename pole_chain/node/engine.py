import argparse
import logging
import math
import sys
import time
from typing import Callable, Optional

from pole_chain.data_gateway.adapters.source_rest import RestCoordinationClient
from pole_chain.data_gateway.core.engine import PeerChannel
from pole_chain.node.hardware import (
    BenchAnalogChannel,
    BenchDigitalOutput,
    RelayActuator,
    SensorFrontend,
)
from pole_chain.node.state_machine import NodeStateMachine, Transition
from pole_chain.node.watchdog import Watchdog
from pole_chain.settings import load_config
from pole_chain.topology import ChainTopology, NodeIdentity

logger = logging.getLogger("PoleNode")


class PoleNode:
    """
    Runtime for one pole: Sample -> Decide -> Actuate -> Publish/Poll.

    Single cooperative loop, no internal parallelism except the watchdog
    monitor. boot() is the full initialization path, shared by power-up and
    watchdog resets, and always starts with every relay OFF.
    """
    def __init__(self, identity: NodeIdentity, frontend: SensorFrontend,
                 actuator_factory: Callable[[], RelayActuator], peer: PeerChannel,
                 config: dict, clock: Callable[[], float] = time.monotonic):
        self.identity = identity
        self.frontend = frontend
        self.peer = peer
        self.config = config
        self.clock = clock
        self._actuator_factory = actuator_factory
        self.scan_rate_ms = config["scan_rate_ms"]
        self.running = False
        self.boots = 0
        self._last_scan: Optional[float] = None

        self.watchdog = Watchdog(config["watchdog_timeout_s"], self.watchdog_reset, clock=clock)

        self.actuator: RelayActuator = None
        self.machine: NodeStateMachine = None
        self.boot()

    def boot(self):
        """Full initialization: fail-safe relay defaults and a fresh state machine."""
        actuator = self._actuator_factory()  # Constructing forces every output OFF
        self.machine = NodeStateMachine(
            self.identity,
            actuator,
            overvoltage_v=self.config["overvoltage_v"],
            overcurrent_a=self.config["overcurrent_a"],
            debounce_ms=self.config["debounce_ms"],
            recovery_stable_ms=self.config["recovery_stable_ms"],
        )
        self.actuator = actuator
        self._last_scan = None
        self.boots += 1
        logger.info(f"{self.identity.pole_id}: boot #{self.boots} complete, relays OFF")

    def watchdog_reset(self):
        logger.critical(f"{self.identity.pole_id}: watchdog reset")
        self.boot()

    def scan(self) -> Optional[Transition]:
        """One loop iteration."""
        now = self.clock()
        if self._last_scan is None:
            scan_time_ms = float(self.scan_rate_ms)
        else:
            scan_time_ms = (now - self._last_scan) * 1000.0
        self._last_scan = now

        # --- 1. Input Scan ---
        reading = self.frontend.sample()

        # --- 2. State Machine ---
        machine = self.machine
        transition = machine.update(
            scan_time_ms,
            reading,
            upstream_outgoing=self.peer.upstream_outgoing(now),
            commands=self.peer.take_commands(),
        )

        # --- 3. Peer Channel (blocking network calls, bounded by timeouts + watchdog) ---
        self.peer.service(now, machine.snapshot)
        return transition

    def run_scan_loop(self, max_scans: Optional[int] = None):
        """
        Fixed-rate scan loop. Blocking; stops after max_scans if given.
        """
        logger.info(f"{self.identity.pole_id}: scan loop started ({self.scan_rate_ms} ms)")
        self.running = True
        self.watchdog.start()
        scans = 0
        try:
            while self.running:
                t0 = time.perf_counter()
                try:
                    self.scan()
                except Exception:
                    logger.critical(f"{self.identity.pole_id}: scan loop crash", exc_info=True)
                    self.actuator.all_off()
                    raise
                self.watchdog.feed()

                scans += 1
                if max_scans is not None and scans >= max_scans:
                    break

                elapsed_ms = (time.perf_counter() - t0) * 1000.0
                sleep_ms = max(0, self.scan_rate_ms - elapsed_ms)
                time.sleep(sleep_ms / 1000.0)
        finally:
            self.running = False
            self.watchdog.stop()
            logger.info(f"{self.identity.pole_id}: scan loop stopped")


# --- Bench wiring (no ADC attached) ---

def _sine(rms_value: float, window: int) -> Callable[[int], float]:
    peak = rms_value * math.sqrt(2)
    return lambda i: peak * math.sin(2 * math.pi * i / window)


def build_bench_node(pole_id: str, url: str, config: dict,
                     is_simulation: bool = False, use_wire_codes: bool = False) -> PoleNode:
    topology = ChainTopology(config["poles"])
    identity = topology.identity(pole_id)
    window = config["rms_window"]

    frontend = SensorFrontend(
        voltage=BenchAnalogChannel(waveform=_sine(230.0, window)),
        current_in=BenchAnalogChannel(waveform=_sine(5.0, window)),
        current_out=None if identity.is_terminal else BenchAnalogChannel(waveform=_sine(5.0, window)),
        window=window,
        current_high_a=config["current_high_a"],
    )

    relay_in = BenchDigitalOutput(f"{pole_id}.relay_in")
    relay_out = None if identity.is_terminal else BenchDigitalOutput(f"{pole_id}.relay_out")
    alarm = BenchDigitalOutput(f"{pole_id}.alarm")

    client = RestCoordinationClient(url, is_simulation=is_simulation,
                                    timeout=config["http_timeout_s"],
                                    use_wire_codes=use_wire_codes)
    peer = PeerChannel(
        identity,
        client,
        publish_interval_s=config["publish_interval_s"],
        peer_poll_interval_s=config["peer_poll_interval_s"],
        command_poll_interval_s=config["command_poll_interval_s"],
        peer_stale_s=config["peer_stale_s"],
    )
    return PoleNode(identity, frontend, lambda: RelayActuator(relay_in, relay_out, alarm), peer, config)


def main():
    parser = argparse.ArgumentParser(description="Pole Chain Node (bench channels)")
    parser.add_argument("--pole", required=True, help="Pole id, e.g. Pole2")
    parser.add_argument("--url", default="http://localhost:3000", help="Arbiter base URL")
    parser.add_argument("--sim", action="store_true", help="Publish into the simulation context")
    parser.add_argument("--wire-codes", action="store_true", help="Publish short per-pole field codes")
    parser.add_argument("--config", default=None, help="Path to settings.json")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='[NODE] %(asctime)s | %(levelname)s | %(message)s',
                        datefmt='%H:%M:%S')
    config = load_config(args.config)

    try:
        node = build_bench_node(args.pole, args.url, config, args.sim, args.wire_codes)
    except KeyError as e:
        logger.error(str(e))
        sys.exit(2)

    try:
        node.run_scan_loop()
    except KeyboardInterrupt:
        logger.info("Node shutdown.")
    except Exception:
        logger.critical("Fatal node error", exc_info=True)
        sys.exit(1)
    finally:
        node.peer.client.disconnect()


if __name__ == "__main__":
    main()
