"""Flatten the group range tree of a project into (path, address) pairs."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..models.project import GroupAddressNode, GroupAddressTree, GroupRange

logger = logging.getLogger(__name__)


@dataclass
class CollectedAddress:
    """A group address together with the names of its enclosing ranges."""
    group_range_path: List[str]
    group_address: GroupAddressNode


def walk_group_ranges(group_ranges: Sequence[GroupRange], path_segments: Sequence[str],
                      out: List[CollectedAddress]) -> List[CollectedAddress]:
    """Collect all group addresses below ``group_ranges`` depth first.

    Nested ranges are visited before the addresses of the range itself, in
    the order they appear. Ranges without a name add no path segment.

    Args:
        group_ranges: Ranges to descend into
        path_segments: Names of the ranges above ``group_ranges``
        out: List the collected addresses are appended to

    Returns:
        ``out``, for convenience
    """
    for gr in group_ranges:
        next_path = list(path_segments)
        if gr.name:
            next_path.append(gr.name)

        if gr.group_ranges:
            walk_group_ranges(gr.group_ranges, next_path, out)

        for ga in gr.group_addresses:
            out.append(CollectedAddress(group_range_path=next_path, group_address=ga))
    return out


def walk_trees(trees: Sequence[GroupAddressTree],
               out: Optional[List[CollectedAddress]] = None) -> List[CollectedAddress]:
    """Walk every top-level tree in order and concatenate the results."""
    if out is None:
        out = []
    for tree in trees:
        walk_group_ranges(tree.group_ranges, [], out)
    logger.debug(f"Collected {len(out)} group addresses from {len(trees)} trees")
    return out
