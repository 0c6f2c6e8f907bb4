"""
Chain Topology

A single linear chain: the first pole is fed by the grid, the last pole is
the terminal (no outgoing relay or sensor). Segments are the spans between
adjacent poles and are the unit of isolation.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

DEFAULT_POLES = ("Pole1", "Pole2", "Pole3", "Pole4")


@dataclass(frozen=True)
class NodeIdentity:
    """Position of one pole in the chain. Immutable for the node's lifetime."""
    pole_id: str
    ordinal: int                    # 1..N
    upstream_id: Optional[str]      # None for the first pole
    downstream_id: Optional[str]    # None for the terminal pole

    @property
    def is_first(self) -> bool:
        return self.upstream_id is None

    @property
    def is_terminal(self) -> bool:
        return self.downstream_id is None


def segment_id(upstream_id: str, downstream_id: str) -> str:
    return f"{upstream_id}-{downstream_id}"


class ChainTopology:
    """Ordered pole list plus the derived identities and segments."""

    def __init__(self, poles: Sequence[str] = DEFAULT_POLES):
        if len(poles) < 2:
            raise ValueError("A chain needs at least two poles")
        if len(set(poles)) != len(poles):
            raise ValueError(f"Duplicate pole ids in chain: {list(poles)}")
        self.poles: List[str] = list(poles)
        self._identities: Dict[str, NodeIdentity] = {}
        for i, pole_id in enumerate(self.poles):
            self._identities[pole_id] = NodeIdentity(
                pole_id=pole_id,
                ordinal=i + 1,
                upstream_id=self.poles[i - 1] if i > 0 else None,
                downstream_id=self.poles[i + 1] if i < len(self.poles) - 1 else None,
            )

    @property
    def first(self) -> str:
        return self.poles[0]

    @property
    def terminal(self) -> str:
        return self.poles[-1]

    def __contains__(self, pole_id: str) -> bool:
        return pole_id in self._identities

    def identity(self, pole_id: str) -> NodeIdentity:
        try:
            return self._identities[pole_id]
        except KeyError:
            raise KeyError(f"Unknown pole id: {pole_id}") from None

    def pairs(self) -> List[Tuple[str, str]]:
        """Adjacent (upstream, downstream) pairs, upstream-most first."""
        return list(zip(self.poles[:-1], self.poles[1:]))

    def segments(self) -> List[str]:
        return [segment_id(up, down) for up, down in self.pairs()]
