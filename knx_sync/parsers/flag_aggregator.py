"""Aggregate communication flags per group address.

A group address is usually linked to several communication objects, often on
different devices, and each of them carries its own read/write/transmit/update
flags. The effective flags of the group address are the OR of the flags of
every active communication object that sends to or listens on it.
"""

import logging
from typing import Dict, Iterable, Optional

from ..models import AccessFlags
from ..models.project import ComObjectRef, ProjectDocument

logger = logging.getLogger(__name__)


def add_reference(flags_by_ga_id: Dict[str, AccessFlags], ga_id: Optional[str],
                  flags: AccessFlags) -> None:
    """OR ``flags`` into the record for ``ga_id``, creating it all False."""
    if not ga_id:
        return
    agg = flags_by_ga_id.get(ga_id)
    if agg is None:
        agg = AccessFlags()
        flags_by_ga_id[ga_id] = agg
    agg.merge(flags)


def aggregate_com_object(flags_by_ga_id: Dict[str, AccessFlags], cor: ComObjectRef) -> None:
    """Merge one communication object reference. Inactive ones are ignored."""
    if not cor.active:
        return
    for conn in cor.connectors:
        for ga_id in conn.send:
            add_reference(flags_by_ga_id, ga_id, cor.flags)
        for ga_id in conn.receive:
            add_reference(flags_by_ga_id, ga_id, cor.flags)


def iter_com_objects(project: ProjectDocument) -> Iterable[ComObjectRef]:
    for area in project.areas:
        for line in area.lines:
            for device in line.devices:
                yield from device.com_object_refs


def build_flags_by_group_address_id(project: ProjectDocument) -> Dict[str, AccessFlags]:
    """
    Build a map group address id -> aggregated flags from the device topology.

    Args:
        project: Parsed project

    Returns:
        Dictionary keyed by group address identifier. Group addresses that no
        active communication object links to are not contained; use
        ``AccessFlags.unreferenced()`` for those.
    """
    flags_by_ga_id: Dict[str, AccessFlags] = {}
    skipped = 0
    for cor in iter_com_objects(project):
        if not cor.active:
            skipped += 1
            continue
        aggregate_com_object(flags_by_ga_id, cor)

    logger.debug(f"Aggregated flags for {len(flags_by_ga_id)} group addresses "
                 f"({skipped} inactive communication objects skipped)")
    return flags_by_ga_id


def flags_for(flags_by_ga_id: Dict[str, AccessFlags], ga_id: str) -> AccessFlags:
    """Aggregated flags of a group address, or the unreferenced default."""
    found = flags_by_ga_id.get(ga_id)
    if found is None:
        return AccessFlags.unreferenced()
    return found.copy()
