from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class TransportError(Exception):
    """The arbiter could not be reached or answered with an unusable response."""


class RejectedError(TransportError):
    """The arbiter answered, but refused the request (4xx)."""
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class ICoordinationClient(ABC):
    """
    Interface a node uses to reach the coordination arbiter (REST, in-process).
    Implementations raise TransportError on any failure.
    """
    @abstractmethod
    def publish(self, pole_id: str, snapshot: Dict[str, Any]) -> None:
        """Publish this node's full state snapshot."""
        pass

    @abstractmethod
    def fetch_state(self, pole_id: str) -> Optional[Dict[str, Any]]:
        """
        Last snapshot the arbiter holds for pole_id.
        Returns None when the pole is OFFLINE.
        """
        pass

    @abstractmethod
    def fetch_commands(self, pole_id: str) -> List[Dict[str, Any]]:
        """Drain and return the commands queued for pole_id."""
        pass


class IAdapter(ABC):
    @abstractmethod
    def connect(self):
        pass

    @abstractmethod
    def disconnect(self):
        pass
