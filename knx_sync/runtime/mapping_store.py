"""In-memory index of the group address states known to the sync engine"""

import logging
import threading
from typing import Dict, Iterator, List, Optional

from ..models import AccessFlags, MappingRecord
from ..storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

GA_PREFIX = 'ga.'


class RuntimeMappingStore:
    """Mapping state id -> group address, type code and flags.

    The index is only ever rebuilt as a whole from the object store. A
    rebuild fills new tables and swaps them in, so readers on other threads
    see either the old or the new mapping.
    """

    def __init__(self):
        """Initialize empty mapping."""
        self.by_id: Dict[str, MappingRecord] = {}
        self.by_ga: Dict[str, List[MappingRecord]] = {}
        self._hit_count = 0
        self._miss_count = 0
        self._lock = threading.Lock()

    def rebuild(self, store: ObjectStore) -> int:
        """
        Replace the mapping with the group address states found in the store.

        Args:
            store: Object store to scan below ``ga.``

        Returns:
            Number of records loaded
        """
        by_id: Dict[str, MappingRecord] = {}
        by_ga: Dict[str, List[MappingRecord]] = {}

        for obj_id, obj in store.get_object_view(GA_PREFIX):
            if not obj or obj.get('type') != 'state':
                continue

            native = obj.get('native') or {}
            ga = native.get('ga')
            if not ga:
                continue

            dpt = native.get('dpt')
            record = MappingRecord(
                id=obj_id,
                ga=str(ga),
                dpt=str(dpt) if dpt else None,
                flags=AccessFlags.from_native(native.get('flags')),
            )
            by_id[obj_id] = record
            by_ga.setdefault(record.ga, []).append(record)

        with self._lock:
            self.by_id = by_id
            self.by_ga = by_ga
            self._hit_count = 0
            self._miss_count = 0

        logger.info(f"Runtime mapping loaded: {len(by_id)} datapoints.")
        return len(by_id)

    def get(self, state_id: str) -> Optional[MappingRecord]:
        """
        Get the record of a state.

        Args:
            state_id: Object id, e.g. "ga.Lighting.1_2_3"

        Returns:
            MappingRecord or None
        """
        result = self.by_id.get(state_id)
        with self._lock:
            if result:
                self._hit_count += 1
            else:
                self._miss_count += 1
        return result

    def get_by_ga(self, ga: str) -> List[MappingRecord]:
        """All records bound to a rendered group address."""
        return list(self.by_ga.get(ga, []))

    def records(self) -> List[MappingRecord]:
        return list(self.by_id.values())

    def __len__(self) -> int:
        return len(self.by_id)

    def __iter__(self) -> Iterator[MappingRecord]:
        return iter(list(self.by_id.values()))

    def __contains__(self, state_id: str) -> bool:
        return state_id in self.by_id

    def get_statistics(self) -> Dict:
        """
        Get mapping statistics.

        Returns:
            Dictionary with record counts and lookup hit/miss counts
        """
        with self._lock:
            by_id, by_ga = self.by_id, self.by_ga
            hits, misses = self._hit_count, self._miss_count
        total = hits + misses
        hit_rate = (hits / total * 100) if total > 0 else 0

        return {
            'records': len(by_id),
            'group_addresses': len(by_ga),
            'writable': sum(1 for r in by_id.values() if r.flags.write),
            'readable': sum(1 for r in by_id.values() if r.flags.read),
            'hits': hits,
            'misses': misses,
            'hit_rate': f"{hit_rate:.1f}%",
        }

    def clear(self):
        """Clear the mapping."""
        with self._lock:
            self.by_id = {}
            self.by_ga = {}
            self._hit_count = 0
            self._miss_count = 0
