"""Entry point for running the admin backend as a module.

Usage: python -m web_ui.backend [path/to/config.json]
"""
import sys

from knx_sync.bridge import KnxBridge
from knx_sync.config import load_config
from knx_sync.logging_setup import setup_logging
from knx_sync.runtime.bus_loop import BusLoop
from knx_sync.runtime.xknx_transport import XknxConnection
from knx_sync.storage.file_store import FileStore
from knx_sync.storage.object_store import JsonObjectStore

from .app import create_app

if __name__ == "__main__":
    cfg = load_config(sys.argv[1] if len(sys.argv) > 1 else None)
    setup_logging(cfg['loglevel'])

    store = JsonObjectStore(cfg['store_path'], flush_delay=cfg['store_flush_delay_ms'] / 1000)
    bridge = KnxBridge(cfg, store, FileStore(cfg['files_dir']), connection_factory=XknxConnection)
    bus_loop = BusLoop(bridge)
    bus_loop.start()
    app = create_app(bridge)

    host = cfg.get("bind_host", "0.0.0.0")
    port = cfg.get("port", 8080)
    print(f"Starting Flask server on {host}:{port}...")
    try:
        app.run(host=host, port=port, debug=False, threaded=True)
    finally:
        bus_loop.stop()
        store.close()
