"""Turns successive socket samples into bound/unbound transitions.

The differ owns the set of port keys currently believed bound. Two passes
mutate it:

* ``observe`` (continuous pass) only reports new bindings.
* ``reconcile`` (full pass) reports new bindings and removals.

A port that is unbound and rebound between two passes is never reported.
Poll-based detection cannot see it.
"""

from collections.abc import Iterable

from ..common.logging import get_logger
from ..events import ListeningSocket, PortAction, PortEvent, PortKey

logger = get_logger(__name__)


class LifecycleDiffer:
    """Compares samples against the tracked port set."""

    def __init__(self) -> None:
        self._tracked: set[PortKey] = set()

    @property
    def tracked(self) -> frozenset[PortKey]:
        """Port keys currently considered bound."""
        return frozenset(self._tracked)

    def observe(self, sockets: Iterable[ListeningSocket]) -> list[PortEvent]:
        """Continuous pass: emit ``bound`` for keys not yet tracked."""
        return self._bind_new([socket.key for socket in sockets])

    def reconcile(self, sockets: Iterable[ListeningSocket]) -> list[PortEvent]:
        """Full pass: emit ``bound`` for new keys and ``unbound`` for vanished ones."""
        current = [socket.key for socket in sockets]
        events = self._bind_new(current)

        seen = set(current)
        for key in sorted(self._tracked - seen, key=lambda k: (k.protocol.value, k.port)):
            self._tracked.discard(key)
            events.append(PortEvent.for_key(PortAction.UNBOUND, key))
            logger.debug("Port unbound", key=str(key))
        return events

    def _bind_new(self, keys: list[PortKey]) -> list[PortEvent]:
        events = []
        for key in keys:
            if key in self._tracked:
                continue
            self._tracked.add(key)
            events.append(PortEvent.for_key(PortAction.BOUND, key))
            logger.debug("Port bound", key=str(key))
        return events
