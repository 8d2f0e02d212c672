"""Object Store Exporter Module

Writes imported group addresses into the object store: one channel object per
group range segment and one state object per group address.
"""
import logging
from typing import Any, Dict, Iterable, List

from ..models import AccessFlags, ImportEntry
from ..storage.object_store import ObjectStore
from ..utils.address_codec import address_segment, infer_common

logger = logging.getLogger(__name__)

MANUAL_CHANNEL = 'ga._manual'

INFO_OBJECTS = {
    'info': {
        'type': 'channel',
        'common': {'name': 'Info'},
        'native': {},
    },
    'info.connection': {
        'type': 'state',
        'common': {'name': 'Connection', 'type': 'boolean', 'role': 'indicator.connected',
                   'read': True, 'write': False, 'def': False},
        'native': {},
    },
    'info.etsHash': {
        'type': 'state',
        'common': {'name': 'ETS project hash', 'type': 'string', 'role': 'text',
                   'read': True, 'write': False},
        'native': {},
    },
}


class StateExporter:
    """Exporter for group address objects"""

    def __init__(self, store: ObjectStore):
        """
        Initialize exporter.

        Args:
            store: Object store to write to
        """
        self.store = store

    def ensure_info_objects(self):
        """Create the connection and hash info states if missing."""
        with self.store.batch():
            for obj_id, obj in INFO_OBJECTS.items():
                self.store.set_object_not_exists(obj_id, obj)

    def ensure_channels_for_state(self, state_id: str):
        """
        Create missing channel objects for a state id like ``ga.floor.room.1_2_3``.

        Args:
            state_id: Id of the leaf state; every prefix becomes a channel
        """
        parts = str(state_id).split('.')
        if len(parts) <= 1:
            return

        prefix = ''
        for seg in parts[:-1]:
            prefix = f"{prefix}.{seg}" if prefix else seg
            self.store.set_object_not_exists(prefix, {
                'type': 'channel',
                'common': {'name': seg},
                'native': {},
            })

    def upsert_ga_state(self, entry: ImportEntry):
        """
        Create or update the state object of a group address.

        Existing objects keep their value and any foreign metadata; name,
        type, flags and DPT are refreshed.
        """
        value_type, role = infer_common(entry.dpt)
        flags = entry.flags or AccessFlags.unreferenced()

        common = {
            'name': entry.name,
            'type': value_type,
            'role': role,
            'read': True,
            'write': bool(flags.write or flags.read),
        }
        native = {
            'ga': entry.ga,
            'dpt': entry.dpt,
            'flags': flags.to_native(),
            'description': entry.description,
        }

        self.store.set_object_not_exists(entry.id, {
            'type': 'state',
            'common': common,
            'native': native,
        })
        self.store.extend_object(entry.id, {'common': common, 'native': native})

    def export_entries(self, entries: Iterable[ImportEntry]) -> int:
        """
        Persist all entries in one store batch. A failing entry is logged and
        skipped.

        Returns:
            Number of entries written
        """
        written = 0
        failed = 0
        with self.store.batch():
            for entry in entries:
                try:
                    self.ensure_channels_for_state(entry.id)
                    self.upsert_ga_state(entry)
                    written += 1
                except Exception as e:
                    failed += 1
                    logger.error(f"Failed to store {entry.id} ({entry.ga}): {e}")

        logger.info(f"ETS objects created/updated: {written}" + (f", {failed} failed" if failed else ""))
        return written

    def apply_manual_datapoints(self, datapoints: List[Dict[str, Any]]) -> int:
        """
        Create states for manually configured group addresses.

        Args:
            datapoints: Dicts with ``ga`` and optional ``name``, ``dpt``,
                        ``readFlag``, ``writeFlag`` and ``transmitFlag``

        Returns:
            Number of datapoints written
        """
        if not datapoints:
            return 0

        with self.store.batch():
            self.store.set_object_not_exists('ga', {
                'type': 'channel',
                'common': {'name': 'Group addresses'},
                'native': {},
            })
            self.store.set_object_not_exists(MANUAL_CHANNEL, {
                'type': 'channel',
                'common': {'name': 'Manual'},
                'native': {},
            })

            written = 0
            for dp in datapoints:
                ga = str(dp.get('ga') or '').strip()
                if not ga:
                    continue

                transmit = dp.get('transmitFlag')
                flags = AccessFlags(
                    read=bool(dp.get('readFlag')),
                    write=bool(dp.get('writeFlag')),
                    transmit=True if transmit is None else bool(transmit),
                    update=False,
                )
                dpt = str(dp['dpt']).strip() if dp.get('dpt') else None

                self.upsert_ga_state(ImportEntry(
                    id=f"{MANUAL_CHANNEL}.{address_segment(ga)}",
                    name=str(dp.get('name') or ga),
                    ga=ga,
                    dpt=dpt or None,
                    flags=flags,
                ))
                written += 1

        logger.info(f"Manual datapoints applied: {written}")
        return written
