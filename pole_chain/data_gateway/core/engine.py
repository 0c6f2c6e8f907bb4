import logging
from typing import Any, Callable, Dict, List, Optional

from pole_chain.data_gateway.core.interfaces import ICoordinationClient, TransportError
from pole_chain.topology import NodeIdentity

logger = logging.getLogger("PeerChannel")


class PeerChannel:
    """
    Node-side link to the arbiter: Publish -> Poll Peer -> Poll Commands.

    Three independent fixed-period timers, all driven by service(now). Every
    response is treated as a full snapshot, so a missed cycle only costs one
    cycle of staleness. Transport failures never propagate: the channel
    flips to degraded and retries on the next period.
    """
    def __init__(self, identity: NodeIdentity, client: ICoordinationClient,
                 publish_interval_s: float = 5.0,
                 peer_poll_interval_s: float = 2.0,
                 command_poll_interval_s: float = 3.0,
                 peer_stale_s: float = 6.0):
        self.identity = identity
        self.client = client
        self.publish_interval_s = publish_interval_s
        self.peer_poll_interval_s = peer_poll_interval_s
        self.command_poll_interval_s = command_poll_interval_s
        self.peer_stale_s = peer_stale_s

        # None = due on the first service() call
        self._next_publish: Optional[float] = None
        self._next_peer_poll: Optional[float] = None
        self._next_command_poll: Optional[float] = None

        self._upstream_outgoing: Optional[str] = None
        self._upstream_fetched_at: Optional[float] = None
        self._inbox: List[Dict[str, Any]] = []

        self.degraded = False
        self.last_error: Optional[str] = None

    # ---- Public API ----

    def service(self, now: float, snapshot_provider: Callable[[], Dict[str, Any]]) -> None:
        """Run whichever of the three timers are due at `now`."""
        if self._next_publish is None or now >= self._next_publish:
            self._next_publish = now + self.publish_interval_s
            self.publish(snapshot_provider())

        if not self.identity.is_first:
            if self._next_peer_poll is None or now >= self._next_peer_poll:
                self._next_peer_poll = now + self.peer_poll_interval_s
                self.poll_peer(now)

        if self._next_command_poll is None or now >= self._next_command_poll:
            self._next_command_poll = now + self.command_poll_interval_s
            self.poll_commands()

    def publish(self, snapshot: Dict[str, Any]) -> bool:
        return self._call("publish", lambda: self.client.publish(self.identity.pole_id, snapshot))

    def poll_peer(self, now: float) -> bool:
        upstream_id = self.identity.upstream_id
        if upstream_id is None:
            return True

        result = {}

        def fetch():
            result["state"] = self.client.fetch_state(upstream_id)

        if not self._call("peer poll", fetch):
            return False

        state = result["state"]
        if state is None:
            # Upstream is OFFLINE at the arbiter: nothing to corroborate against
            self._upstream_outgoing = None
            self._upstream_fetched_at = None
        else:
            self._upstream_outgoing = state.get("outgoing_current")
            self._upstream_fetched_at = now
        return True

    def poll_commands(self) -> bool:
        result = {}

        def fetch():
            result["commands"] = self.client.fetch_commands(self.identity.pole_id)

        if not self._call("command poll", fetch):
            return False
        commands = result["commands"]
        if commands:
            logger.info(f"{self.identity.pole_id}: received {len(commands)} command(s): "
                        f"{[c.get('action') for c in commands]}")
            self._inbox.extend(commands)
        return True

    def upstream_outgoing(self, now: float) -> Optional[str]:
        """Cached upstream outgoing level, or None when absent or older than peer_stale_s."""
        if self._upstream_fetched_at is None:
            return None
        if now - self._upstream_fetched_at > self.peer_stale_s:
            return None
        return self._upstream_outgoing

    def take_commands(self) -> List[Dict[str, Any]]:
        """Hand over received commands exactly once."""
        commands, self._inbox = self._inbox, []
        return commands

    # ---- Internals ----

    def _call(self, label: str, fn: Callable[[], None]) -> bool:
        try:
            fn()
        except TransportError as e:
            if not self.degraded:
                logger.warning(f"{self.identity.pole_id}: arbiter unreachable during {label} ({e}) "
                               f"- entering degraded mode")
            else:
                logger.debug(f"{self.identity.pole_id}: {label} still failing: {e}")
            self.degraded = True
            self.last_error = str(e)
            return False

        if self.degraded:
            logger.info(f"{self.identity.pole_id}: arbiter reachable again ({label}) - leaving degraded mode")
        self.degraded = False
        self.last_error = None
        return True
