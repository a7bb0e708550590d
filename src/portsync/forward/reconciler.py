"""Converges running tunnels against the stream of port events."""

from enum import Enum

from ..common.exceptions import RecordStoreError, TunnelStartError, TunnelStopError
from ..common.logging import get_logger
from ..events import ErrorEvent, PortAction, PortEvent, PortKey, Protocol
from .records import ForwardRecord, RecordStore
from .supervisor import StopResult, TunnelSupervisor

logger = get_logger(__name__)


class ForwardState(str, Enum):
    """Forwarding state of a port key."""

    UNKNOWN = "unknown"
    FORWARDING = "forwarding"
    STOPPED = "stopped"


class ForwardingReconciler:
    """Maintains the port -> tunnel mapping.

    The record store is authoritative. ``forwarded_ports`` is a cache of it
    that is refreshed after every step and never consulted on its own.
    Events are handled one at a time; every start and stop blocks until the
    supervisor is done.
    """

    def __init__(
        self,
        store: RecordStore,
        supervisor: TunnelSupervisor,
        reserved_ports: set[int] | frozenset[int] = frozenset(),
    ):
        self.store = store
        self.supervisor = supervisor
        self.reserved_ports = frozenset(reserved_ports)
        self._states: dict[PortKey, ForwardState] = {}
        self._forwarded: set[int] = set()

    @property
    def forwarded_ports(self) -> frozenset[int]:
        return frozenset(self._forwarded)

    def state_of(self, key: PortKey) -> ForwardState:
        return self._states.get(key, ForwardState.UNKNOWN)

    def handle(self, event: PortEvent | ErrorEvent) -> None:
        """Apply one event. Per-port failures are logged, never raised."""
        if isinstance(event, ErrorEvent):
            logger.warning("Monitor reported", message=event.message)
            return

        try:
            if event.action == PortAction.BOUND:
                self.on_bound(event.key)
            else:
                self.on_unbound(event.key)
        except RecordStoreError as e:
            logger.error("Record store failure", key=str(event.key), error=str(e))
        finally:
            self._sync_cache()

    def on_bound(self, key: PortKey) -> None:
        if key.protocol != Protocol.TCP:
            logger.info("Detected non-TCP port, not forwarding", key=str(key))
            return
        if key.port in self.reserved_ports:
            logger.info("Port is reserved locally, not forwarding", key=str(key))
            return

        record = self.store.get(key.port)
        if record is not None:
            if self.supervisor.is_alive(record.pid, record.port):
                logger.debug("Port already forwarded", key=str(key), pid=record.pid)
                self._states[key] = ForwardState.FORWARDING
                return
            logger.info("Dropping stale record", port=record.port, pid=record.pid)
            self.store.remove(record.port)

        logger.info("Port bound, starting tunnel", key=str(key))
        try:
            handle = self.supervisor.start(key.port)
        except TunnelStartError as e:
            self._states[key] = ForwardState.STOPPED
            logger.error("Failed to forward port", key=str(key), error=str(e))
            return

        try:
            self.store.add(ForwardRecord(port=key.port, pid=handle.pid))
        except RecordStoreError:
            # An unrecorded tunnel would escape cleanup
            self._states[key] = ForwardState.STOPPED
            try:
                self.supervisor.stop(key.port, handle.pid)
            except TunnelStopError as e:
                logger.warning("Unrecorded tunnel refused to stop", error=str(e))
            raise
        self._states[key] = ForwardState.FORWARDING
        logger.info("Forwarding port", key=str(key), pid=handle.pid)

    def on_unbound(self, key: PortKey) -> None:
        if key.protocol != Protocol.TCP:
            return

        record = self.store.get(key.port)
        if record is None:
            logger.debug("No tunnel for unbound port", key=str(key))
            return

        logger.info("Port unbound, stopping tunnel", key=str(key), pid=record.pid)
        if not self._stop_record(record):
            return
        self._states[key] = ForwardState.STOPPED

    def _stop_record(self, record: ForwardRecord) -> bool:
        """Stop a recorded tunnel and drop its record.

        Returns:
            False if the process refused to stop; its record is kept
        """
        if self.supervisor.is_alive(record.pid, record.port):
            try:
                result = self.supervisor.stop(record.port, record.pid)
            except TunnelStopError as e:
                logger.warning(
                    "Tunnel refused to stop; leaving it running",
                    port=record.port,
                    pid=record.pid,
                    error=str(e),
                )
                return False
        else:
            result = StopResult.ALREADY_DEAD

        self.store.remove(record.port)
        logger.info("Stopped forwarding port", port=record.port, result=result.value)
        return True

    def reconcile_stale(self) -> list[int]:
        """Remove records whose tunnel process is no longer alive.

        Returns:
            Ports whose records were removed
        """
        removed = []
        try:
            for record in self.store.load():
                if self.supervisor.is_alive(record.pid, record.port):
                    continue
                logger.info("Removing stale record", port=record.port, pid=record.pid)
                self.store.remove(record.port)
                self._states[PortKey(protocol=record.protocol, port=record.port)] = (
                    ForwardState.STOPPED
                )
                removed.append(record.port)
        except RecordStoreError as e:
            logger.error("Stale record pass failed", error=str(e))
        finally:
            self._sync_cache()
        return removed

    def stop_all(self) -> list[int]:
        """Attempt a graceful stop of every recorded tunnel.

        Returns:
            Ports whose tunnels could not be stopped
        """
        failed = []
        try:
            records = self.store.load()
        except RecordStoreError as e:
            logger.error("Cannot read record store during shutdown", error=str(e))
            return failed

        for record in records:
            try:
                if self._stop_record(record):
                    key = PortKey(protocol=record.protocol, port=record.port)
                    self._states[key] = ForwardState.STOPPED
                else:
                    failed.append(record.port)
            except RecordStoreError as e:
                logger.error("Record store failure", port=record.port, error=str(e))
                failed.append(record.port)

        self._sync_cache()
        return failed

    def _sync_cache(self) -> None:
        try:
            self._forwarded = self.store.ports()
        except RecordStoreError as e:
            logger.error("Cannot refresh forwarded port cache", error=str(e))
