"""Data models for the KNX state bridge.

This package contains data classes used throughout the application:
- AccessFlags: read/write/transmit/update flags of a group address
- ImportEntry: one flattened group address produced by an ETS import
- ImportResult: entries plus content hash and address style of an import
- MappingRecord: runtime view of a group address bound to the bus
- State: a tagged value in the object store
- TxJob: a deferred bus operation waiting in the send queue
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class AccessFlags:
    """Communication flags of a group address."""
    read: bool = False
    write: bool = False
    transmit: bool = False
    update: bool = False

    @classmethod
    def unreferenced(cls) -> 'AccessFlags':
        """Flags used for a group address no communication object links to."""
        return cls(read=False, write=False, transmit=True, update=False)

    def merge(self, other: 'AccessFlags') -> None:
        """OR another flag set into this one. Flags never go back to False."""
        self.read = self.read or other.read
        self.write = self.write or other.write
        self.transmit = self.transmit or other.transmit
        self.update = self.update or other.update

    def copy(self) -> 'AccessFlags':
        return AccessFlags(self.read, self.write, self.transmit, self.update)

    def to_native(self) -> Dict[str, bool]:
        return {
            'readFlag': self.read,
            'writeFlag': self.write,
            'transmitFlag': self.transmit,
            'updateFlag': self.update,
        }

    @classmethod
    def from_native(cls, native: Optional[Dict[str, Any]]) -> 'AccessFlags':
        """Build flags from a stored ``native.flags`` dict.

        Records written by older versions have no ``transmitFlag``; it
        defaults to True, all other flags default to False.
        """
        native = native or {}
        transmit = native.get('transmitFlag')
        return cls(
            read=bool(native.get('readFlag')),
            write=bool(native.get('writeFlag')),
            transmit=True if transmit is None else bool(transmit),
            update=bool(native.get('updateFlag')),
        )


@dataclass
class ImportEntry:
    """A group address flattened from the ETS project."""
    id: str  # e.g. "ga.Lighting.Ground_floor.1_2_3"
    name: str
    ga: str  # rendered address, e.g. "1/2/3"
    dpt: Optional[str] = None  # e.g. "1.001"
    flags: AccessFlags = field(default_factory=AccessFlags.unreferenced)
    description: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.name} ({self.ga})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'ga': self.ga,
            'dpt': self.dpt,
            'flags': self.flags.to_native(),
            'description': self.description,
        }


@dataclass
class ImportResult:
    """Outcome of an ETS import."""
    hash: str
    style: str
    entries: List[ImportEntry]

    def ids(self) -> List[str]:
        return [entry.id for entry in self.entries]


@dataclass
class MappingRecord:
    """A stored group address as used by the sync engine."""
    id: str
    ga: str
    dpt: Optional[str]
    flags: AccessFlags

    def __str__(self) -> str:
        return f"{self.id} ({self.ga})"


@dataclass
class State:
    """Value of a leaf state in the object store."""
    val: Any
    ack: bool = False
    ts: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {'val': self.val, 'ack': self.ack, 'ts': self.ts}


@dataclass
class TxJob:
    """A bus operation waiting for its slot in the send queue."""
    action: Callable[[], Any]
    description: str = 'tx'


__all__ = [
    'AccessFlags',
    'ImportEntry',
    'ImportResult',
    'MappingRecord',
    'State',
    'TxJob',
]
