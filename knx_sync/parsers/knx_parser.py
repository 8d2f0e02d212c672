"""KNX Project Parser Module

Loads an ETS project and converts it into a ProjectDocument.

Two input formats are understood:

- ``.knxproj`` / ``.knxprojarchive`` files, parsed with ``xknxproject``, and
  JSON dumps of the resulting KNXProject dict
- JSON documents in the ETS tree layout (``projectInformation``,
  ``topology.areas[].lines[].devices[]``, ``groupAddresses[].groupRanges[]``)
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..exceptions import ImportUnavailable, ParseFailure
from ..models import AccessFlags
from ..models.project import (
    Area, ComObjectRef, Connector, Device, GroupAddressNode, GroupAddressTree,
    GroupRange, Line, ProjectDocument,
)

try:
    from xknxproject.xknxproj import XKNXProj
except ImportError:
    XKNXProj = None

logger = logging.getLogger(__name__)

JSON_SUFFIXES = ('.json',)

# receive targets of older ETS tree exports carry a misspelled back-reference
RECEIVE_REF_KEYS = ('__groupAddressRefID', '__groupAddressRedID')
SEND_REF_KEYS = ('__groupAddressRefID',)


def parser_available() -> bool:
    """Return True if the xknxproject library could be imported."""
    return XKNXProj is not None


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


def _first_ref(target: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        ref = target.get(key)
        if ref:
            return str(ref)
    return None


def dpt_to_project_type_id(dpt: Optional[Dict[str, Any]]) -> Optional[str]:
    """Render an xknxproject ``{'main': 1, 'sub': 1}`` DPT as ``"DPST-1-1"``.

    Example:
        >>> dpt_to_project_type_id({'main': 9, 'sub': 1})
        'DPST-9-1'
        >>> dpt_to_project_type_id({'main': 5, 'sub': None})
        'DPT-5'
    """
    if not isinstance(dpt, dict) or dpt.get('main') is None:
        return None
    if dpt.get('sub') is None:
        return f"DPT-{dpt['main']}"
    return f"DPST-{dpt['main']}-{dpt['sub']}"


# ---------------------------------------------------------------------------
# ETS tree layout
# ---------------------------------------------------------------------------

def _ets_com_object_ref(cor: Dict[str, Any]) -> ComObjectRef:
    connectors = []
    for conn in _as_list(cor.get('connectors')):
        conn = _as_dict(conn)
        send = [_first_ref(_as_dict(s), SEND_REF_KEYS) for s in _as_list(conn.get('send'))]
        receive = [_first_ref(_as_dict(r), RECEIVE_REF_KEYS) for r in _as_list(conn.get('receive'))]
        connectors.append(Connector(
            send=[ref for ref in send if ref],
            receive=[ref for ref in receive if ref],
        ))
    return ComObjectRef(
        flags=AccessFlags(
            read=bool(cor.get('readFlag')),
            write=bool(cor.get('writeFlag')),
            transmit=bool(cor.get('transmitFlag')),
            update=bool(cor.get('updateFlag')),
        ),
        active=cor.get('isActive') is not False,
        connectors=connectors,
        name=_optional_str(cor.get('name')),
    )


def _ets_group_range(gr: Dict[str, Any]) -> GroupRange:
    addresses = []
    for ga in _as_list(gr.get('groupAddresses')):
        if not isinstance(ga, dict):
            continue
        addresses.append(GroupAddressNode(
            id=str(ga.get('ID') or ''),
            address=ga.get('address'),
            name=_optional_str(ga.get('name')),
            description=_optional_str(ga.get('description')),
            datapoint_type=_optional_str(ga.get('datapointType')),
        ))
    return GroupRange(
        name=_optional_str(gr.get('name')),
        group_ranges=[_ets_group_range(sub) for sub in _as_list(gr.get('groupRanges')) if isinstance(sub, dict)],
        group_addresses=addresses,
    )


def project_from_ets_tree(doc: Dict[str, Any]) -> ProjectDocument:
    """Convert an ETS tree JSON document into a ProjectDocument."""
    if not isinstance(doc, dict):
        raise ParseFailure("ETS project document must be a JSON object")

    areas = []
    for area in _as_list(_as_dict(doc.get('topology')).get('areas')):
        area = _as_dict(area)
        lines = []
        for line in _as_list(area.get('lines')):
            line = _as_dict(line)
            devices = []
            for device in _as_list(line.get('devices')):
                device = _as_dict(device)
                devices.append(Device(
                    name=_optional_str(device.get('name')),
                    address=_optional_str(device.get('address')),
                    com_object_refs=[
                        _ets_com_object_ref(cor)
                        for cor in _as_list(device.get('communicationObjectReferences'))
                        if isinstance(cor, dict)
                    ],
                ))
            lines.append(Line(name=_optional_str(line.get('name')), devices=devices))
        areas.append(Area(name=_optional_str(area.get('name')), lines=lines))

    trees = [
        GroupAddressTree(group_ranges=[
            _ets_group_range(gr) for gr in _as_list(root.get('groupRanges')) if isinstance(gr, dict)
        ])
        for root in _as_list(doc.get('groupAddresses'))
        if isinstance(root, dict)
    ]

    info = _as_dict(doc.get('projectInformation'))
    return ProjectDocument(
        name=_optional_str(info.get('name')),
        group_address_style=_optional_str(info.get('groupAddressStyle')),
        areas=areas,
        group_address_trees=trees,
    )


# ---------------------------------------------------------------------------
# xknxproject KNXProject layout
# ---------------------------------------------------------------------------

def _knx_group_address(address: Dict[str, Any]) -> GroupAddressNode:
    return GroupAddressNode(
        id=str(address.get('identifier') or address.get('address') or ''),
        address=address.get('raw_address'),
        name=_optional_str(address.get('name')),
        description=_optional_str(address.get('description')),
        datapoint_type=dpt_to_project_type_id(address.get('dpt')),
    )


def _knx_group_range(gr: Dict[str, Any], group_addresses: Dict[str, Any], placed: set) -> GroupRange:
    addresses = []
    for addr_str in _as_list(gr.get('group_addresses')):
        address = group_addresses.get(addr_str)
        if not isinstance(address, dict):
            logger.debug(f"Group range '{gr.get('name')}' references unknown address {addr_str}")
            continue
        placed.add(addr_str)
        addresses.append(_knx_group_address(address))
    return GroupRange(
        name=_optional_str(gr.get('name')),
        group_ranges=[
            _knx_group_range(sub, group_addresses, placed)
            for sub in _as_dict(gr.get('group_ranges')).values()
            if isinstance(sub, dict)
        ],
        group_addresses=addresses,
    )


def project_from_knxproject(project: Dict[str, Any]) -> ProjectDocument:
    """Convert an xknxproject KNXProject dict into a ProjectDocument.

    xknxproject lists the linked group addresses of a communication object as
    address strings, the first one being the sending address. They are mapped
    to group address identifiers so both formats aggregate flags the same way.
    """
    if not isinstance(project, dict):
        raise ParseFailure("KNX project must be a JSON object")

    group_addresses = _as_dict(project.get('group_addresses'))
    communication_objects = _as_dict(project.get('communication_objects'))
    devices = _as_dict(project.get('devices'))

    def _ga_id(addr_str: str) -> Optional[str]:
        address = group_addresses.get(addr_str)
        if not isinstance(address, dict):
            return None
        return address.get('identifier') or addr_str

    areas = []
    for area in _as_dict(project.get('topology')).values():
        area = _as_dict(area)
        lines = []
        for line in _as_dict(area.get('lines')).values():
            line = _as_dict(line)
            line_devices = []
            for individual_address in _as_list(line.get('devices')):
                device = _as_dict(devices.get(individual_address))
                cors = []
                for co_id in _as_list(device.get('communication_object_ids')):
                    co = communication_objects.get(co_id)
                    if not isinstance(co, dict):
                        continue
                    flags = _as_dict(co.get('flags'))
                    links = [_ga_id(a) for a in _as_list(co.get('group_address_links'))]
                    links = [ref for ref in links if ref]
                    cors.append(ComObjectRef(
                        flags=AccessFlags(
                            read=bool(flags.get('read')),
                            write=bool(flags.get('write')),
                            transmit=bool(flags.get('transmit')),
                            update=bool(flags.get('update')),
                        ),
                        connectors=[Connector(send=links[:1], receive=links[1:])],
                        name=_optional_str(co.get('name')),
                    ))
                line_devices.append(Device(
                    name=_optional_str(device.get('name')),
                    address=str(individual_address),
                    com_object_refs=cors,
                ))
            lines.append(Line(name=_optional_str(line.get('name')), devices=line_devices))
        areas.append(Area(name=_optional_str(area.get('name')), lines=lines))

    placed = set()
    ranges = [
        _knx_group_range(gr, group_addresses, placed)
        for gr in _as_dict(project.get('group_ranges')).values()
        if isinstance(gr, dict)
    ]
    trees = [GroupAddressTree(group_ranges=ranges)]

    # addresses outside any group range (free style projects)
    loose = [
        _knx_group_address(address)
        for addr_str, address in group_addresses.items()
        if addr_str not in placed and isinstance(address, dict)
    ]
    if loose:
        logger.info(f"{len(loose)} group addresses are not part of a group range")
        trees.append(GroupAddressTree(group_ranges=[GroupRange(group_addresses=loose)]))

    info = _as_dict(project.get('info'))
    return ProjectDocument(
        name=_optional_str(info.get('name')),
        group_address_style=_optional_str(info.get('group_address_style')),
        areas=areas,
        group_address_trees=trees,
    )


def project_from_json(doc: Dict[str, Any]) -> ProjectDocument:
    """Detect the layout of a JSON project document and convert it."""
    if not isinstance(doc, dict):
        raise ParseFailure("Project JSON must be an object")
    if 'group_addresses' in doc or 'group_ranges' in doc:
        return project_from_knxproject(doc)
    if 'groupAddresses' in doc or 'projectInformation' in doc:
        return project_from_ets_tree(doc)
    raise ParseFailure("Unknown project JSON layout (no group addresses found)")


class KNXParser:
    """Parser for KNX project files (.knxproj) and their JSON dumps"""

    def __init__(self, knxproj_path: str, password: Optional[str] = None,
                 language: Optional[str] = None):
        """
        Initialize KNX Parser.

        Args:
            knxproj_path: Path to the .knxproj file or JSON dump
            password: Password of a protected project
            language: Language code for translated texts, e.g. "de-DE"
        """
        self.knxproj_path = Path(knxproj_path)
        self.password = password or None
        self.language = language or None

    def is_json(self) -> bool:
        return self.knxproj_path.suffix.lower() in JSON_SUFFIXES

    def parse(self) -> ProjectDocument:
        """
        Parse the project file.

        Returns:
            ProjectDocument with topology and group address trees

        Raises:
            ImportUnavailable: If a .knxproj file is given and xknxproject
                               is not installed
            ParseFailure: If a JSON dump is invalid or has an unknown layout
        """
        logger.info(f"Parsing KNX project: {self.knxproj_path}")

        if self.is_json():
            try:
                with open(self.knxproj_path, 'r', encoding='utf8') as f:
                    doc = json.load(f)
            except json.JSONDecodeError as e:
                raise ParseFailure(f"Invalid project JSON {self.knxproj_path.name}: {e}") from e
            project = project_from_json(doc)
        else:
            if XKNXProj is None:
                raise ImportUnavailable('Dependency "xknxproject" not available')
            knxproj = XKNXProj(path=self.knxproj_path, password=self.password, language=self.language)
            project = project_from_knxproject(knxproj.parse())

        logger.info(f"Parsed {project.count_group_addresses()} group addresses")
        return project
