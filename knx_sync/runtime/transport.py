"""Interface to the KNX bus transport.

The transport library owns frame encoding, the tunnelling handshake,
keep-alive and reconnects. The sync engine only needs a connection reporting
its lifecycle and per group address datapoints it can read, write and watch.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

DEFAULT_GATEWAY_PORT = 3671

ChangeCallback = Callable[[Any, Any], None]


@dataclass
class ConnectionHandlers:
    """Lifecycle callbacks the transport invokes."""
    connected: Callable[[], None]
    disconnected: Callable[[], None]
    error: Callable[[Any], None]


@dataclass
class ConnectionSettings:
    """KNX/IP gateway settings handed to the transport."""
    gateway_ip: str
    gateway_port: int = DEFAULT_GATEWAY_PORT
    phys_addr: Optional[str] = None
    local_interface: Optional[str] = None
    loglevel: str = 'info'
    force_tunneling: bool = False
    local_echo: bool = False
    minimum_delay_ms: Optional[int] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ConnectionSettings':
        return cls(
            gateway_ip=str(config.get('gateway_ip') or '').strip(),
            gateway_port=int(config.get('gateway_port') or DEFAULT_GATEWAY_PORT),
            phys_addr=str(config.get('phys_addr') or '').strip() or None,
            local_interface=str(config.get('local_interface') or '').strip() or None,
            loglevel=str(config.get('loglevel') or 'info'),
            force_tunneling=bool(config.get('force_tunneling')),
            local_echo=bool(config.get('local_echo')),
            minimum_delay_ms=int(config.get('minimum_delay_ms') or 0) or None,
        )


class Datapoint(ABC):
    """A group address on the bus"""

    @abstractmethod
    def read(self) -> Any:
        """Send a GroupValueRead. May return an awaitable."""

    @abstractmethod
    def write(self, value: Any) -> Any:
        """Send a GroupValueWrite. May return an awaitable."""

    @abstractmethod
    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call ``callback(old_value, new_value)`` when the bus value changes.

        Returns:
            Function releasing the subscription
        """


class BusConnection(ABC):
    """Connection to a KNX/IP gateway"""

    @abstractmethod
    def connect(self, handlers: ConnectionHandlers) -> None:
        """Start connecting. Progress is reported through ``handlers``."""

    @abstractmethod
    def disconnect(self) -> Any:
        """Close the connection. May return an awaitable."""

    @abstractmethod
    def create_datapoint(self, ga: str, dpt: Optional[str]) -> Datapoint:
        """Create a datapoint for a rendered group address and type code."""


ConnectionFactory = Callable[[ConnectionSettings], BusConnection]
