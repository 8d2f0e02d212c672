"""Bidirectional synchronization between the KNX bus and the object store.

Bus -> store: value changes of bound datapoints are written as acknowledged
states. Store -> bus: unacknowledged state changes below ``ga.`` are turned
into write (or read) jobs on the rate limited TX queue.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..exceptions import BindingFailure
from ..models import MappingRecord, State
from ..storage.object_store import ObjectStore
from ..utils.address_codec import coerce_to_bus_value
from .mapping_store import GA_PREFIX, RuntimeMappingStore
from .transport import (
    BusConnection, ConnectionFactory, ConnectionHandlers, ConnectionSettings, Datapoint,
)
from .tx_queue import TxQueue

logger = logging.getLogger(__name__)

GA_PATTERN = GA_PREFIX + '*'
CONNECTION_STATE_ID = 'info.connection'


class LinkState(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'


@dataclass
class DatapointBinding:
    """A mapping record bound to a live datapoint."""
    record: MappingRecord
    datapoint: Datapoint
    unsubscribe: Callable[[], None]

    def release(self):
        self.unsubscribe()


def to_store_value(value: Any) -> Any:
    """Values the store cannot hold natively (dates) become ISO strings."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


class SyncEngine:
    """Owns the bus connection, the datapoint bindings and the TX queue"""

    def __init__(self, store: ObjectStore, mapping: RuntimeMappingStore,
                 connection_factory: ConnectionFactory, config: Dict[str, Any],
                 lock: Optional[threading.RLock] = None):
        """
        Initialize sync engine.

        Args:
            store: Object store holding the group address states
            mapping: Runtime mapping, rebuilt by the caller
            connection_factory: Creates the bus connection from settings
            config: Bridge configuration (``read_on_start``, ``ack_on_write``,
                    ``minimum_delay_ms`` and the gateway settings)
            lock: Lock taken by every transport and store callback; shared with
                  the owner when other threads touch the store or mapping
        """
        self.store = store
        self.mapping = mapping
        self.connection_factory = connection_factory
        self.config = config
        self.settings = ConnectionSettings.from_config(config)

        self.connection: Optional[BusConnection] = None
        self.link_state = LinkState.DISCONNECTED
        self.bindings: Dict[str, DatapointBinding] = {}
        self.tx_queue = TxQueue(config.get('minimum_delay_ms'), is_active=lambda: self.connected)
        self._unsubscribe_store: Optional[Callable[[], None]] = None
        self._stopped = False
        self.lock = lock or threading.RLock()

    @property
    def connected(self) -> bool:
        return self.link_state is LinkState.CONNECTED

    # -------------------------
    # lifecycle
    # -------------------------

    def start(self) -> bool:
        """Subscribe to store changes and connect to the gateway."""
        self._stopped = False
        if self._unsubscribe_store is None:
            self._unsubscribe_store = self.store.subscribe_states(GA_PATTERN, self.on_state_change)
        return self.connect()

    def connect(self) -> bool:
        if not self.settings.gateway_ip:
            logger.error("No KNX/IP gateway IP configured.")
            return False

        logger.info(f"Connecting to KNX/IP {self.settings.gateway_ip}:{self.settings.gateway_port} ...")
        self.link_state = LinkState.CONNECTING
        try:
            self.connection = self.connection_factory(self.settings)
            self.connection.connect(ConnectionHandlers(
                connected=self.on_connected,
                disconnected=self.on_disconnected,
                error=self.on_error,
            ))
        except Exception as e:
            logger.error(f"KNX connection init failed: {e}")
            self.connection = None
            self.link_state = LinkState.DISCONNECTED
            return False
        return True

    def stop(self) -> Any:
        """
        Tear down: stop the timer and release all subscriptions before the
        transport is disconnected. Transport notifications arriving later are
        ignored.

        Returns:
            Whatever the transport's ``disconnect`` returns (may be awaitable)
        """
        with self.lock:
            self._stopped = True
            self.tx_queue.stop()
            if self._unsubscribe_store is not None:
                self._unsubscribe_store()
                self._unsubscribe_store = None
            self.release_bindings()
            was_connected = self.link_state is not LinkState.DISCONNECTED
            self.link_state = LinkState.DISCONNECTED
            if was_connected:
                self._set_connection_state(False)
            connection, self.connection = self.connection, None

        if connection is None:
            return None
        logger.info('Disconnecting KNX...')
        return connection.disconnect()

    def on_connected(self):
        with self.lock:
            if self._stopped:
                logger.debug("KNX connected after stop, ignored")
                return
            self.link_state = LinkState.CONNECTED
            self._set_connection_state(True)
            logger.info('KNX connected')

            self.create_datapoints()
            self.tx_queue.start()

            if self.config.get('read_on_start'):
                self.enqueue_initial_reads()

    def on_disconnected(self):
        with self.lock:
            if self._stopped:
                return
            self._set_disconnected()
        logger.warning('KNX disconnected')

    def on_error(self, err: Any):
        logger.warning(f"KNX error: {err}")
        with self.lock:
            if self._stopped:
                return
            self._set_disconnected()

    def _set_disconnected(self):
        was_connected = self.link_state is not LinkState.DISCONNECTED
        self.link_state = LinkState.DISCONNECTED
        self.release_bindings()
        if was_connected:
            self._set_connection_state(False)

    def _set_connection_state(self, value: bool):
        try:
            self.store.set_state(CONNECTION_STATE_ID, value, True)
        except Exception as e:
            logger.warning(f"Failed to setState {CONNECTION_STATE_ID}: {e}")

    # -------------------------
    # datapoints
    # -------------------------

    def release_bindings(self):
        for binding in self.bindings.values():
            try:
                binding.release()
            except Exception as e:
                logger.debug(f"Releasing datapoint {binding.record} failed: {e}")
        self.bindings.clear()

    def _bind(self, record: MappingRecord) -> DatapointBinding:
        try:
            dp = self.connection.create_datapoint(record.ga, record.dpt)
            unsubscribe = dp.on_change(
                lambda old_val, new_val, state_id=record.id: self.on_bus_change(state_id, old_val, new_val)
            )
        except Exception as e:
            raise BindingFailure(f"Failed to create datapoint for {record.id} ({record.ga}): {e}") from e
        return DatapointBinding(record=record, datapoint=dp, unsubscribe=unsubscribe)

    def create_datapoints(self) -> int:
        """
        Bind every mapping record to a fresh datapoint.

        Old bindings are released first. A record that fails to bind is
        logged and skipped.

        Returns:
            Number of bound datapoints
        """
        self.release_bindings()
        if self.connection is None:
            return 0

        for record in self.mapping:
            try:
                self.bindings[record.id] = self._bind(record)
            except BindingFailure as e:
                logger.warning(str(e))

        logger.info(f"KNX datapoints bound: {len(self.bindings)}")
        return len(self.bindings)

    def enqueue(self, action: Callable[[], Any], description: str):
        self.tx_queue.enqueue(action, description)

    def enqueue_initial_reads(self) -> int:
        queued = 0
        for state_id, binding in self.bindings.items():
            if binding.record.flags.read:
                self.enqueue(binding.datapoint.read, f"read {binding.record.ga}")
                queued += 1
        logger.info(f"Initial GroupValueRead queued: {queued}")
        return queued

    # -------------------------
    # bus -> store
    # -------------------------

    def on_bus_change(self, state_id: str, old_val: Any, new_val: Any):
        value = to_store_value(new_val)
        with self.lock:
            if self._stopped:
                return
            try:
                self.store.set_state(state_id, value, True)
            except Exception as e:
                logger.warning(f"Failed to setState {state_id}: {e}")

    # -------------------------
    # store -> bus
    # -------------------------

    def on_state_change(self, state_id: str, state: Optional[State]):
        """Handle a state change from the store. Only unacknowledged changes are commands."""
        if state is None or state.ack:
            return
        if not state_id.startswith(GA_PREFIX):
            return

        with self.lock:
            record = self.mapping.get(state_id)
            binding = self.bindings.get(state_id)
            if record is None or binding is None:
                logger.debug(f"State change ignored (no mapping): {state_id}")
                return

            dp = binding.datapoint
            if record.flags.write:
                value = coerce_to_bus_value(state.val, record.dpt)
                self.enqueue(lambda: dp.write(value), f"write {record.ga}")
            elif record.flags.read:
                self.enqueue(dp.read, f"read {record.ga}")
            else:
                logger.debug(f"State not writeable/readable by flags: {state_id} ({record.ga})")

            if self.config.get('ack_on_write'):
                try:
                    self.store.set_state(state_id, state.val, True)
                except Exception as e:
                    logger.warning(f"Failed to acknowledge {state_id}: {e}")

