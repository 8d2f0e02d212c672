"""Import a KNX project into the object store from the command line"""
import argparse
import json
import logging
import sys

from knx_sync.bridge import KnxBridge
from knx_sync.config import load_config
from knx_sync.exceptions import KnxSyncError
from knx_sync.importer import ImportEngine
from knx_sync.logging_setup import setup_logging
from knx_sync.storage.file_store import FileStore
from knx_sync.storage.object_store import JsonObjectStore

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Reads a KNX project file and creates group address states in the object store')
    parser.add_argument("--config", type=str, help='Path to config.json')
    parser.add_argument("--file", type=str, help='Project file name inside the files directory')
    parser.add_argument("--files-dir", type=str, help='Directory holding uploaded project files')
    parser.add_argument("--store", type=str, help='Object store JSON file')
    parser.add_argument("--style", type=str, choices=['auto', 'ThreeLevel', 'TwoLevel', 'Free'],
                        help='Group address style override')
    parser.add_argument("--knxPW", type=str, help="Password for KNX project file if protected")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print the entries as JSON instead of writing them")
    return parser.parse_args(argv)


def main(argv=None):
    """Main function"""
    args = parse_args(argv)
    cfg = load_config(args.config)
    if args.file:
        cfg['ets_project_file'] = args.file
    if args.files_dir:
        cfg['files_dir'] = args.files_dir
    if args.store:
        cfg['store_path'] = args.store
    if args.style:
        cfg['ga_style_override'] = args.style
    if args.knxPW:
        cfg['ets_password'] = args.knxPW
    setup_logging(cfg['loglevel'])

    file_store = FileStore(cfg['files_dir'])
    try:
        if args.dry_run:
            engine = ImportEngine(file_store, cfg['data_dir'])
            result = engine.run(cfg['ets_project_file'], cfg['ga_style_override'],
                                password=cfg.get('ets_password'), language=cfg.get('ets_language'))
            json.dump({
                'hash': result.hash,
                'style': result.style,
                'entries': [entry.to_dict() for entry in result.entries],
            }, sys.stdout, indent=2, ensure_ascii=False)
            sys.stdout.write('\n')
            return 0

        bridge = KnxBridge(cfg, JsonObjectStore(cfg['store_path']), file_store)
        bridge.exporter.ensure_info_objects()
        result = bridge.do_import_ets_project()
        bridge.exporter.apply_manual_datapoints(cfg.get('manual_datapoints') or [])
        bridge.mapping.rebuild(bridge.store)
    except KnxSyncError as e:
        logger.error(f"ETS import failed: {e}")
        return 1

    logger.info(f"{len(result.entries)} group addresses imported, {len(bridge.mapping)} mapped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
