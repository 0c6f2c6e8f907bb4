"""
Fault Engine Tests

Direct sweeps over a CoordinationStore with explicit timestamps.
"""

from pole_chain.backend.coordination.fault_engine import run_fault_engine
from pole_chain.backend.coordination.models import ContextKind, PoleSnapshot, SystemStatus
from pole_chain.backend.coordination.store import CoordinationStore
from pole_chain.node.node_state import CommandAction
from pole_chain.topology import ChainTopology


def healthy(pole_id, **overrides):
    fields = dict(pole_id=pole_id, incoming_current="HIGH", outgoing_current="HIGH",
                  relay_in="ON", relay_out="ON")
    fields.update(overrides)
    return PoleSnapshot(**fields)


def make_store(kind=ContextKind.REAL):
    store = CoordinationStore(kind, ChainTopology())
    for pole_id in store.topology.poles:
        store.publish(pole_id, healthy(pole_id), now=0.0)
    return store


class Sweeper:
    """Runs the engine and records queued commands and emitted events."""
    def __init__(self, store):
        self.store = store
        self.events = []

    def __call__(self, now):
        return run_fault_engine(self.store, self.store.queue_command,
                                emit=lambda name, data: self.events.append(name), now=now)

    def drained(self, pole_id):
        return [c.action for c in self.store.drain_commands(pole_id)]


def test_baseline_leaves_waiting_when_first_pole_fed():
    store = make_store()
    assert store.system.status == SystemStatus.WAITING
    assert Sweeper(store)(now=1.0) is True
    assert store.system.status == SystemStatus.NORMAL


def test_sim_baseline_is_sim_idle():
    store = CoordinationStore(ContextKind.SIM, ChainTopology())
    assert store.system.status == SystemStatus.SIM_IDLE
    assert run_fault_engine(store, store.queue_command, now=0.0) is False


def test_fault_isolates_segment_once():
    print("=" * 60)
    print("FAULT ENGINE - ISOLATION + IDEMPOTENCE")
    print("=" * 60)
    store = make_store()
    sweep = Sweeper(store)
    sweep(now=1.0)

    store.publish("Pole3", healthy("Pole3", incoming_current="LOW", outgoing_current="LOW"), now=2.0)
    assert sweep(now=2.0) is True
    system = store.system
    print(f"  status={system.status.value} location={system.fault_location}")
    assert system.status == SystemStatus.FAULT
    assert system.fault_location == "Pole2-Pole3"
    assert system.fault_type.value == "WIRE_CUT"
    assert system.isolated_segments == {"Pole2-Pole3"}
    assert "faultDetected" in sweep.events

    # Second sweep over the unchanged store changes nothing
    assert sweep(now=2.5) is False
    assert store.system.isolated_segments == {"Pole2-Pole3"}
    assert sweep.drained("Pole2") == [CommandAction.DISABLE_OUTGOING_RELAY]
    assert sweep.drained("Pole1") == []


def isolate_pole2_pole3():
    store = make_store()
    sweep = Sweeper(store)
    sweep(now=0.0)
    store.publish("Pole3", healthy("Pole3", incoming_current="LOW", outgoing_current="LOW"), now=0.0)
    sweep(now=0.0)
    sweep.drained("Pole2")
    return store, sweep


def test_recovery_after_3000ms():
    store, sweep = isolate_pole2_pole3()
    store.publish("Pole3", healthy("Pole3"), now=10.0)

    assert sweep(now=10.0) is False  # starting the timer alone is not a change
    assert store.system.recovery_start_time == 10.0
    assert sweep(now=12.999) is False
    assert "Pole2-Pole3" in store.system.isolated_segments

    assert sweep(now=13.0) is True
    assert store.system.isolated_segments == set()
    assert store.system.status == SystemStatus.NORMAL
    assert store.system.fault_location is None
    assert store.system.last_recovery_time is not None
    assert sweep.drained("Pole2") == [CommandAction.ENABLE_OUTGOING_RELAY]

    assert sweep(now=20.0) is False
    assert sweep.drained("Pole2") == []


def test_recovery_interrupted_at_2999ms_stays_isolated():
    store, sweep = isolate_pole2_pole3()
    store.publish("Pole3", healthy("Pole3"), now=10.0)
    sweep(now=10.0)
    sweep(now=12.999)

    store.publish("Pole3", healthy("Pole3", incoming_current="LOW"), now=12.999)
    assert sweep(now=12.999) is False  # already isolated: no second DISABLE
    assert store.system.isolated_segments == {"Pole2-Pole3"}
    assert store.system.recovery_start_time is None
    assert sweep.drained("Pole2") == []

    # Stable again: the timer starts from zero
    store.publish("Pole3", healthy("Pole3"), now=14.0)
    sweep(now=14.0)
    assert sweep(now=16.5) is False
    assert "Pole2-Pole3" in store.system.isolated_segments
    assert sweep(now=17.0) is True


def test_grid_down_short_circuits_segment_checks():
    store = make_store()
    sweep = Sweeper(store)
    sweep(now=0.0)
    store.publish("Pole1", healthy("Pole1", incoming_current="LOW"), now=1.0)
    store.publish("Pole3", healthy("Pole3", incoming_current="LOW"), now=1.0)

    assert sweep(now=1.0) is True
    assert store.system.status == SystemStatus.GRID_DOWN
    assert store.system.fault_location == "Grid"
    assert store.system.isolated_segments == set()
    assert sweep.drained("Pole2") == []
    assert sweep.events.count("gridDown") == 1

    assert sweep(now=2.0) is False
    assert sweep.events.count("gridDown") == 1


def test_grid_restore_clears_isolations():
    store, sweep = isolate_pole2_pole3()
    store.publish("Pole1", healthy("Pole1", incoming_current="LOW"), now=1.0)
    sweep(now=1.0)
    store.publish("Pole1", healthy("Pole1"), now=2.0)

    assert sweep(now=2.0) is True
    assert store.system.status == SystemStatus.NORMAL
    assert store.system.isolated_segments == set()
    assert store.system.fault_type is None
    assert "systemNormal" in sweep.events


def test_missing_snapshots_are_skipped():
    store = CoordinationStore(ContextKind.REAL, ChainTopology())
    store.publish("Pole2", healthy("Pole2"), now=0.0)
    store.publish("Pole4", healthy("Pole4", incoming_current="LOW"), now=0.0)
    assert run_fault_engine(store, store.queue_command, now=0.0) is False
    assert store.system.status == SystemStatus.WAITING


def test_downstream_report_older_than_upstream_feed_is_not_a_fault():
    print("=" * 60)
    print("FAULT ENGINE - DOWNSTREAM ONE PUBLISH BEHIND")
    print("=" * 60)
    store = make_store()
    store.publish("Pole2", healthy("Pole2", outgoing_current="LOW", relay_out="OFF"), now=0.0)
    store.publish("Pole3", healthy("Pole3", incoming_current="LOW", outgoing_current="LOW"), now=0.0)
    sweep = Sweeper(store)
    sweep(now=0.0)
    assert store.system.isolated_segments == set()

    # Pole2 closes its relay; Pole3 still holds its pre-closure report
    store.publish("Pole2", healthy("Pole2"), now=1.0)
    assert sweep(now=1.0) is False
    assert store.system.isolated_segments == set()
    assert store.system.status == SystemStatus.NORMAL
    assert sweep.drained("Pole2") == []

    # Pole3 catches up with supply: still healthy
    store.publish("Pole3", healthy("Pole3"), now=1.5)
    assert sweep(now=1.5) is False
    assert store.system.isolated_segments == set()


def test_downstream_low_after_upstream_feed_is_a_fault():
    store = make_store()
    store.publish("Pole2", healthy("Pole2", outgoing_current="LOW"), now=0.0)
    store.publish("Pole3", healthy("Pole3", incoming_current="LOW"), now=0.0)
    sweep = Sweeper(store)
    sweep(now=0.0)

    store.publish("Pole2", healthy("Pole2"), now=1.0)
    sweep(now=1.0)
    store.publish("Pole2", healthy("Pole2"), now=2.0)  # still feeding, feed start unchanged
    assert sweep(now=2.0) is False

    store.publish("Pole3", healthy("Pole3", incoming_current="LOW"), now=3.0)
    assert sweep(now=3.0) is True
    assert store.system.isolated_segments == {"Pole2-Pole3"}
    assert sweep.drained("Pole2") == [CommandAction.DISABLE_OUTGOING_RELAY]
