"""KNX/IP transport on top of xknx.

``XknxConnection`` is a ``ConnectionFactory``: the sync engine creates it from
``ConnectionSettings`` and calls ``connect`` on the running event loop. xknx
owns the tunnel or routing socket, keep-alive and reconnects; its connection
state changes are forwarded to the engine's handlers.
"""

import asyncio
import ipaddress
import logging
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Callable, Optional

from xknx import XKNX
from xknx.core import XknxConnectionState
from xknx.dpt import DPTArray, DPTBase, DPTBinary
from xknx.dpt.dpt_10 import KNXTime
from xknx.dpt.dpt_11 import KNXDate
from xknx.dpt.dpt_19 import KNXDateTime
from xknx.io import ConnectionConfig, ConnectionType
from xknx.telegram import GroupAddress, IndividualAddress, Telegram
from xknx.telegram.apci import GroupValueRead, GroupValueResponse, GroupValueWrite

from ..logging_setup import LOGLEVELS
from ..utils.address_codec import major_of
from .transport import BusConnection, ChangeCallback, ConnectionHandlers, ConnectionSettings, Datapoint

logger = logging.getLogger(__name__)


def connection_config(settings: ConnectionSettings) -> ConnectionConfig:
    """
    Build the xknx connection config.

    A multicast gateway address means routing unless tunnelling is forced;
    everything else is a tunnel to the gateway.
    """
    try:
        multicast = ipaddress.ip_address(settings.gateway_ip).is_multicast
    except ValueError:
        multicast = False

    individual_address = IndividualAddress(settings.phys_addr) if settings.phys_addr else None
    local_ip = settings.local_interface
    if local_ip:
        try:
            ipaddress.ip_address(local_ip)
        except ValueError:
            logger.warning(f"local_interface {local_ip} is not an IP address, using default route")
            local_ip = None

    if multicast and not settings.force_tunneling:
        return ConnectionConfig(
            connection_type=ConnectionType.ROUTING,
            multicast_group=settings.gateway_ip,
            multicast_port=settings.gateway_port,
            local_ip=local_ip,
            individual_address=individual_address,
        )
    return ConnectionConfig(
        connection_type=ConnectionType.TUNNELING,
        gateway_ip=settings.gateway_ip,
        gateway_port=settings.gateway_port,
        local_ip=local_ip,
        individual_address=individual_address,
    )


def parse_dpt(dpt: Optional[str]) -> Optional[type]:
    """Transcoder for a type code like ``"9.001"`` or ``"5"``, None if unknown."""
    major = major_of(dpt)
    if major is None:
        return None
    _, _, sub = str(dpt).partition('.')
    transcoder = DPTBase.parse_transcoder({'main': major, 'sub': int(sub) if sub else None})
    if transcoder is None and sub:
        # unknown subtype, fall back to the main type's generic transcoder
        transcoder = DPTBase.parse_transcoder({'main': major, 'sub': None})
    return transcoder


class XknxDatapoint(Datapoint):
    """One group address with its transcoder"""

    def __init__(self, xknx: XKNX, ga: str, dpt: Optional[str], local_echo: bool = False):
        self.xknx = xknx
        self.group_address = GroupAddress(ga)
        self.major = major_of(dpt)
        self.transcoder = parse_dpt(dpt)
        self.local_echo = local_echo
        self.value: Any = None
        if dpt and self.transcoder is None and self.major != 1:
            logger.warning(f"No xknx transcoder for DPT {dpt} ({ga}), values stay raw")

    def _send(self, payload):
        self.xknx.telegrams.put_nowait(Telegram(destination_address=self.group_address, payload=payload))

    def read(self):
        self._send(GroupValueRead())

    def write(self, value: Any):
        self._send(GroupValueWrite(self.encode(value)))

    def encode(self, value: Any):
        if self.major == 1:
            return DPTBinary(1 if value else 0)
        if self.major == 10 and isinstance(value, (datetime, time)):
            value = KNXTime.from_time(value.time() if isinstance(value, datetime) else value)
        elif self.major == 11 and isinstance(value, (datetime, date)):
            value = KNXDate.from_date(value.date() if isinstance(value, datetime) else value)
        elif self.major == 19 and isinstance(value, datetime):
            value = KNXDateTime.from_datetime(value)
        if self.transcoder is None:
            raise ValueError(f"Cannot encode {value!r} for {self.group_address} without a DPT")
        return self.transcoder.to_knx(value)

    def decode(self, payload) -> Any:
        if self.major == 1 and isinstance(payload, DPTBinary):
            return bool(payload.value)
        if self.transcoder is None:
            return list(payload.value) if isinstance(payload, DPTArray) else payload.value
        value = self.transcoder.from_knx(payload)
        if isinstance(value, KNXDateTime):
            return value.as_datetime()
        if isinstance(value, KNXDate):
            return value.as_date()
        if isinstance(value, KNXTime):
            return value.as_time()
        if isinstance(value, Enum):
            return value.value
        return value

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        def telegram_received(telegram: Telegram):
            if not isinstance(telegram.payload, (GroupValueWrite, GroupValueResponse)):
                return
            try:
                new_value = self.decode(telegram.payload.value)
            except Exception as e:
                logger.warning(f"Could not decode telegram for {self.group_address}: {e}")
                return
            old_value, self.value = self.value, new_value
            if old_value != new_value:
                callback(old_value, new_value)

        registered = self.xknx.telegram_queue.register_telegram_received_cb(
            telegram_received,
            group_addresses=[self.group_address],
            match_for_outgoing=self.local_echo,
        )

        def unsubscribe():
            self.xknx.telegram_queue.unregister_telegram_received_cb(registered)
        return unsubscribe


class XknxConnection(BusConnection):
    """KNX/IP gateway connection managed by xknx"""

    def __init__(self, settings: ConnectionSettings):
        self.settings = settings
        logging.getLogger('xknx').setLevel(LOGLEVELS.get(settings.loglevel.lower(), logging.INFO))
        self.xknx = XKNX(connection_config=connection_config(settings), rate_limit=0)
        self.handlers: Optional[ConnectionHandlers] = None
        self._start_task: Optional[asyncio.Task] = None
        self.xknx.connection_manager.register_connection_state_changed_cb(self.connection_state_changed)

    def connection_state_changed(self, state: XknxConnectionState):
        if self.handlers is None:
            return
        if state is XknxConnectionState.CONNECTED:
            self.handlers.connected()
        elif state is XknxConnectionState.DISCONNECTED:
            self.handlers.disconnected()

    def connect(self, handlers: ConnectionHandlers) -> None:
        self.handlers = handlers
        self._start_task = asyncio.get_running_loop().create_task(self._start())

    async def _start(self):
        try:
            await self.xknx.start()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.handlers is not None:
                self.handlers.error(e)

    def disconnect(self):
        return self._stop()

    async def _stop(self):
        self.handlers = None
        if self._start_task is not None and not self._start_task.done():
            self._start_task.cancel()
        self._start_task = None
        await self.xknx.stop()

    def create_datapoint(self, ga: str, dpt: Optional[str]) -> Datapoint:
        return XknxDatapoint(self.xknx, ga, dpt, local_echo=self.settings.local_echo)
