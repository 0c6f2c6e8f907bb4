from typing import Any, Dict, List, Optional

from pole_chain.backend.coordination.errors import CoordinationError
from pole_chain.backend.coordination.hub import CoordinationHub
from pole_chain.data_gateway.core.interfaces import IAdapter, ICoordinationClient, RejectedError


class LocalCoordinationClient(ICoordinationClient, IAdapter):
    """
    In-process transport: calls a CoordinationHub directly.
    Used for bench runs and end-to-end tests without an HTTP server.
    """
    def __init__(self, hub: CoordinationHub, is_simulation: bool = False):
        self.hub = hub
        self.is_simulation = is_simulation

    def connect(self):
        pass

    def disconnect(self):
        pass

    def publish(self, pole_id: str, snapshot: Dict[str, Any]) -> None:
        try:
            self.hub.publish(pole_id, dict(snapshot), self.is_simulation)
        except CoordinationError as e:
            raise RejectedError(e.status_code, e.detail) from e

    def fetch_state(self, pole_id: str) -> Optional[Dict[str, Any]]:
        try:
            state = self.hub.poll_peer(pole_id, self.is_simulation)
        except CoordinationError as e:
            raise RejectedError(e.status_code, e.detail) from e
        if state.get("node_state") == "OFFLINE":
            return None
        return state

    def fetch_commands(self, pole_id: str) -> List[Dict[str, Any]]:
        try:
            return self.hub.poll_commands(pole_id, self.is_simulation)["commands"]
        except CoordinationError as e:
            raise RejectedError(e.status_code, e.detail) from e
