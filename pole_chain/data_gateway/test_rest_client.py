"""
REST Coordination Client Tests

The arbiter app is served through FastAPI's TestClient, injected as the
client's session.
"""

import pytest
from fastapi.testclient import TestClient

from pole_chain.backend.coordination.hub import CoordinationHub
from pole_chain.backend.coordination.mirror import MemoryMirror
from pole_chain.backend.main import create_app
from pole_chain.data_gateway.adapters.source_rest import RestCoordinationClient
from pole_chain.data_gateway.core.interfaces import RejectedError, TransportError
from pole_chain.settings import DEFAULTS


@pytest.fixture
def hub():
    return CoordinationHub(mirror=MemoryMirror())


def make_client(hub, **kwargs):
    client = RestCoordinationClient("http://testserver/", **kwargs)
    client.session = TestClient(create_app(DEFAULTS, hub=hub))
    return client


def healthy(pole_id):
    return {"incoming_current": "HIGH", "outgoing_current": "HIGH",
            "relay_in": "ON", "relay_out": "ON", "node_state": "NORMAL"}


def test_publish_and_fetch(hub):
    hub.set_mode("REAL")
    client = make_client(hub)
    assert client.fetch_state("Pole1") is None  # OFFLINE

    client.publish("Pole1", healthy("Pole1"))
    state = client.fetch_state("Pole1")
    assert state["pole_id"] == "Pole1"
    assert state["outgoing_current"] == "HIGH"
    assert client.fetch_commands("Pole1") == []


def test_wire_codes_round_trip_through_arbiter(hub):
    hub.set_mode("SIM")
    client = make_client(hub, is_simulation=True, use_wire_codes=True)
    client.publish("Pole2", healthy("Pole2"))
    assert hub.poll_peer("Pole2", True)["relay_out"] == "ON"
    assert client.fetch_state("Pole2")["incoming_current"] == "HIGH"
    assert hub.poll_peer("Pole2", False)["node_state"] == "OFFLINE"


def test_rejection_carries_status(hub):
    client = make_client(hub)
    with pytest.raises(RejectedError) as exc:
        client.publish("Pole1", healthy("Pole1"))  # IDLE mode
    assert exc.value.status_code == 403
    assert isinstance(exc.value, TransportError)


def test_commands_drained(hub):
    hub.set_mode("REAL")
    hub.admin_command("Pole3", "DISABLE_OUTGOING_RELAY", "maintenance", False)
    client = make_client(hub)
    commands = client.fetch_commands("Pole3")
    assert [c["action"] for c in commands] == ["DISABLE_OUTGOING_RELAY"]
    assert client.fetch_commands("Pole3") == []


def test_unreachable_arbiter_raises_transport_error():
    client = RestCoordinationClient("http://127.0.0.1:9", timeout=0.5)
    with pytest.raises(TransportError):
        client.fetch_state("Pole1")
    client.disconnect()
    assert client.session is None
