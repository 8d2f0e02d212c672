"""KNX bridge lifecycle.

Ties the pieces together the way the host runs them:

1. ensure the info states exist
2. import the ETS project (when ``import_on_start`` is set)
3. apply manually configured datapoints
4. rebuild the runtime mapping
5. subscribe to ``ga.*`` state changes and connect to the gateway

An import can also be triggered later with the ``import_ets`` command.
"""

import inspect
import logging
import threading
from typing import Any, Dict, Optional

from .exporters.state_exporter import StateExporter
from .importer import ImportEngine
from .models import ImportResult
from .runtime.mapping_store import RuntimeMappingStore
from .runtime.sync_engine import SyncEngine
from .runtime.transport import ConnectionFactory
from .storage.file_store import FileStore
from .storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

HASH_STATE_ID = 'info.etsHash'


class KnxBridge:
    """The bridge between one KNX installation and one object store"""

    def __init__(self, config: Dict[str, Any], store: ObjectStore, file_store: FileStore,
                 connection_factory: Optional[ConnectionFactory] = None,
                 import_engine: Optional[ImportEngine] = None):
        """
        Initialize bridge.

        Args:
            config: Validated configuration (see ``knx_sync.config``)
            store: Object store
            file_store: Store holding uploaded ETS projects
            connection_factory: Creates the bus connection; without one the
                                bridge only imports and maps
            import_engine: Import engine, created from the config if omitted
        """
        self.config = config
        self.store = store
        self.file_store = file_store
        self.connection_factory = connection_factory
        self.lock = threading.RLock()
        self.exporter = StateExporter(store)
        self.mapping = RuntimeMappingStore()
        self.import_engine = import_engine or ImportEngine(
            file_store, config.get('data_dir') or 'data')
        self.engine: Optional[SyncEngine] = None
        if connection_factory is not None:
            self.engine = SyncEngine(store, self.mapping, connection_factory, config, lock=self.lock)
        self.last_import: Optional[ImportResult] = None

    # -------------------------
    # lifecycle
    # -------------------------

    def on_ready(self):
        with self.lock:
            self.exporter.ensure_info_objects()
            self.store.set_state('info.connection', False, True)

            if self.config.get('import_on_start') and self.config.get('ets_project_file'):
                try:
                    self.do_import_ets_project()
                except Exception as e:
                    logger.error(f"ETS import failed: {e}")

            try:
                self.exporter.apply_manual_datapoints(self.config.get('manual_datapoints') or [])
            except Exception as e:
                logger.error(f"Applying manual datapoints failed: {e}")

            self.mapping.rebuild(self.store)

            if self.engine is not None:
                self.engine.start()
            else:
                logger.warning("No KNX transport configured, running without bus connection")

    async def on_unload(self):
        if self.engine is None:
            return
        result = self.engine.stop()
        if inspect.isawaitable(result):
            await result

    # -------------------------
    # commands
    # -------------------------

    def on_message(self, command: str) -> Dict[str, Any]:
        """
        Handle an admin command.

        Args:
            command: Command name; only ``import_ets`` is known

        Returns:
            ``{'ok': True, ...}`` or ``{'ok': False, 'error': message}``
        """
        if command != 'import_ets':
            return {'ok': False, 'error': f"Unknown command: {command}"}
        with self.lock:
            try:
                result = self.do_import_ets_project()
                self.mapping.rebuild(self.store)
                if self.engine is not None and self.engine.connected:
                    self.engine.create_datapoints()
            except Exception as e:
                return {'ok': False, 'error': str(e)}
        return {'ok': True, 'hash': result.hash, 'style': result.style, 'entries': len(result.entries)}

    def do_import_ets_project(self) -> ImportResult:
        """Import the configured ETS project and persist its entries."""
        file_name = str(self.config.get('ets_project_file') or '').strip()
        logger.info(f"Importing ETS project from file store: {file_name}")

        result = self.import_engine.run(
            file_name,
            ga_style_override=self.config.get('ga_style_override') or 'auto',
            password=self.config.get('ets_password'),
            language=self.config.get('ets_language'),
        )

        self.store.set_state(HASH_STATE_ID, result.hash, True)
        logger.info(f"ETS import OK. GA style: {result.style}. Entries: {len(result.entries)}")

        self.exporter.export_entries(result.entries)
        self.last_import = result
        return result

    def status(self) -> Dict[str, Any]:
        """Connection, mapping and queue summary for the admin backend."""
        with self.lock:
            connection = self.store.get_state('info.connection')
            ets_hash = self.store.get_state(HASH_STATE_ID)
            return {
                'connected': bool(connection.val) if connection else False,
                'link_state': self.engine.link_state.value if self.engine else None,
                'ets_hash': ets_hash.val if ets_hash else None,
                'mapping': self.mapping.get_statistics(),
                'bound': len(self.engine.bindings) if self.engine else 0,
                'queued': len(self.engine.tx_queue) if self.engine else 0,
            }
