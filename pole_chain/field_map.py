"""
Wire Field Naming

Constrained clients publish short per-pole field codes (e.g. Pole2 sends
"pbc1" for its incoming current). The mapping is applied at the boundary
only: everything past decode_payload() uses canonical snake_case names.
"""

from typing import Any, Dict, Optional

# Canonical field -> short code, per pole
WIRE_CODES: Dict[str, Dict[str, str]] = {
    "Pole1": {
        "relay_in": "par1",
        "relay_out": "par2",
        "incoming_current": "pac1",
        "outgoing_current": "pac2",
        "voltage": "pav1",
    },
    "Pole2": {
        "relay_in": "pbr1",
        "relay_out": "pbr2",
        "incoming_current": "pbc1",
        "outgoing_current": "pbc2",
        "voltage": "pbv1",
    },
    "Pole3": {
        "relay_in": "pcr1",
        "relay_out": "pcr2",
        "incoming_current": "pcc1",
        "outgoing_current": "pcc2",
        "voltage": "pcv1",
    },
    # Terminal pole: no relays, no outgoing side
    "Pole4": {
        "incoming_current": "pdc",
        "voltage": "pdv",
    },
}

# camelCase names used by dashboard-era clients
CAMEL_ALIASES = {
    "poleId": "pole_id",
    "incomingCurrent": "incoming_current",
    "outgoingCurrent": "outgoing_current",
    "relayIn": "relay_in",
    "relayOut": "relay_out",
    "nodeState": "node_state",
    "faultFlag": "fault_flag",
    "isSimulation": "is_simulation",
}


def codes_for(pole_id: str) -> Dict[str, str]:
    return WIRE_CODES.get(pole_id, {})


def decode_payload(pole_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of body with camelCase and short-code keys renamed to
    canonical names. A short code wins over the canonical key when both are
    present and the short code carries a value.
    """
    decoded: Dict[str, Any] = {}
    for key, value in body.items():
        decoded[CAMEL_ALIASES.get(key, key)] = value

    for canonical, code in codes_for(pole_id).items():
        if code in decoded:
            value = decoded.pop(code)
            if value is not None and value != "":
                decoded[canonical] = value
    return decoded


def encode_payload(pole_id: str, snapshot: Dict[str, Any],
                   extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Rename canonical fields to the pole's short codes (fields without a code pass through)."""
    codes = codes_for(pole_id)
    encoded = {codes.get(key, key): value for key, value in snapshot.items()}
    if extra:
        encoded.update(extra)
    return encoded
