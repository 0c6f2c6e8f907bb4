from pole_chain.field_map import decode_payload, encode_payload
from pole_chain.topology import ChainTopology, segment_id


def test_decode_short_codes():
    body = {"pole_id": "Pole2", "pbc1": "HIGH", "pbc2": "LOW", "pbr1": "ON", "pbr2": "OFF", "pbv1": "229.5"}
    decoded = decode_payload("Pole2", body)
    assert decoded["incoming_current"] == "HIGH"
    assert decoded["outgoing_current"] == "LOW"
    assert decoded["relay_in"] == "ON"
    assert decoded["relay_out"] == "OFF"
    assert decoded["voltage"] == "229.5"
    assert "pbc1" not in decoded


def test_decode_camel_case_and_precedence():
    body = {"poleId": "Pole1", "incomingCurrent": "LOW", "pac1": "HIGH", "pac2": "", "outgoingCurrent": "HIGH"}
    decoded = decode_payload("Pole1", body)
    assert decoded["pole_id"] == "Pole1"
    # Non-empty short code wins, empty one is ignored
    assert decoded["incoming_current"] == "HIGH"
    assert decoded["outgoing_current"] == "HIGH"


def test_codes_are_per_pole():
    decoded = decode_payload("Pole3", {"pbc1": "HIGH"})
    assert "incoming_current" not in decoded
    assert decoded["pbc1"] == "HIGH"


def test_encode_terminal():
    encoded = encode_payload("Pole4", {"incoming_current": "HIGH", "voltage": 230.0, "node_state": "NORMAL"})
    assert encoded == {"pdc": "HIGH", "pdv": 230.0, "node_state": "NORMAL"}


def test_topology():
    topology = ChainTopology()
    assert topology.first == "Pole1"
    assert topology.terminal == "Pole4"
    assert topology.segments() == ["Pole1-Pole2", "Pole2-Pole3", "Pole3-Pole4"]
    pole3 = topology.identity("Pole3")
    assert (pole3.ordinal, pole3.upstream_id, pole3.downstream_id) == (3, "Pole2", "Pole4")
    assert topology.identity("Pole1").is_first
    assert topology.identity("Pole4").is_terminal
    assert "Pole9" not in topology
    assert segment_id("Pole2", "Pole3") == "Pole2-Pole3"
