import logging
from typing import Any, Dict, List, Optional

import requests

from pole_chain.data_gateway.core.interfaces import (
    IAdapter,
    ICoordinationClient,
    RejectedError,
    TransportError,
)
from pole_chain.field_map import encode_payload

logger = logging.getLogger("RestCoordinationClient")


class RestCoordinationClient(ICoordinationClient, IAdapter):
    """
    Talks to the arbiter's HTTP API (e.g. http://arbiter:3000).
    Every call is bounded by an explicit timeout; failures surface as TransportError.
    """
    def __init__(self, base_url: str, is_simulation: bool = False,
                 timeout: float = 2.0, use_wire_codes: bool = False):
        self.base_url = base_url.rstrip("/")
        self.is_simulation = is_simulation
        self.timeout = timeout
        self.use_wire_codes = use_wire_codes
        self.session: Optional[requests.Session] = None

    def connect(self):
        if self.session is None:
            self.session = requests.Session()

    def disconnect(self):
        if self.session is not None:
            self.session.close()
            self.session = None

    def _request(self, method: str, path: str, **kwargs) -> Any:
        self.connect()
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise RejectedError(response.status_code, str(detail))

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {url} returned non-JSON body") from e

    @property
    def _sim_param(self) -> Dict[str, str]:
        return {"sim": "true" if self.is_simulation else "false"}

    def publish(self, pole_id: str, snapshot: Dict[str, Any]) -> None:
        body = dict(snapshot)
        body["pole_id"] = pole_id
        if self.use_wire_codes:
            body = encode_payload(pole_id, body)
        body["is_simulation"] = self.is_simulation
        self._request("POST", "/api/coordination/state", json=body)

    def fetch_state(self, pole_id: str) -> Optional[Dict[str, Any]]:
        data = self._request("GET", f"/api/coordination/state/{pole_id}", params=self._sim_param)
        if not isinstance(data, dict) or data.get("node_state") == "OFFLINE":
            return None
        return data

    def fetch_commands(self, pole_id: str) -> List[Dict[str, Any]]:
        data = self._request("GET", f"/api/coordination/commands/{pole_id}", params=self._sim_param)
        if not isinstance(data, dict):
            raise TransportError("Malformed command poll response")
        return list(data.get("commands") or [])
