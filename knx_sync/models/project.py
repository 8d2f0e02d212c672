"""Typed view of an ETS project.

Both supported project formats (the ``xknxproject`` KNXProject dict and the
ETS tree JSON) are converted into these classes once by the parser, so the
tree walker and the flag aggregator never look at raw dictionaries.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

from . import AccessFlags


@dataclass
class Connector:
    """Group address ids a communication object sends to and listens on."""
    send: List[str] = field(default_factory=list)
    receive: List[str] = field(default_factory=list)


@dataclass
class ComObjectRef:
    """A device's communication object with its flags and group address links."""
    flags: AccessFlags = field(default_factory=AccessFlags)
    active: bool = True
    connectors: List[Connector] = field(default_factory=list)
    name: Optional[str] = None


@dataclass
class Device:
    name: Optional[str] = None
    address: Optional[str] = None  # individual address, e.g. "1.1.5"
    com_object_refs: List[ComObjectRef] = field(default_factory=list)


@dataclass
class Line:
    name: Optional[str] = None
    devices: List[Device] = field(default_factory=list)


@dataclass
class Area:
    name: Optional[str] = None
    lines: List[Line] = field(default_factory=list)


@dataclass
class GroupAddressNode:
    """A group address leaf of the group range tree."""
    id: str  # project internal id, e.g. "P-0341-0_GA-1"
    address: Any  # 16-bit integer when the project is well formed
    name: Optional[str] = None
    description: Optional[str] = None
    datapoint_type: Optional[str] = None  # ETS id, e.g. "DPST-1-1"


@dataclass
class GroupRange:
    """A group range. Ranges nest arbitrarily deep before holding addresses."""
    name: Optional[str] = None
    group_ranges: List['GroupRange'] = field(default_factory=list)
    group_addresses: List[GroupAddressNode] = field(default_factory=list)


@dataclass
class GroupAddressTree:
    """One independent top-level group address tree of a project."""
    group_ranges: List[GroupRange] = field(default_factory=list)


@dataclass
class ProjectDocument:
    """Parsed ETS project."""
    name: Optional[str] = None
    group_address_style: Optional[str] = None
    areas: List[Area] = field(default_factory=list)
    group_address_trees: List[GroupAddressTree] = field(default_factory=list)

    def count_group_addresses(self) -> int:
        def _count(ranges: List[GroupRange]) -> int:
            return sum(len(r.group_addresses) + _count(r.group_ranges) for r in ranges)
        return sum(_count(tree.group_ranges) for tree in self.group_address_trees)


__all__ = [
    'Area',
    'ComObjectRef',
    'Connector',
    'Device',
    'GroupAddressNode',
    'GroupAddressTree',
    'GroupRange',
    'Line',
    'ProjectDocument',
]
