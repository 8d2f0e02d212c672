"""Bridge configuration.

Settings are read from a JSON file and merged over ``DEFAULT_CONFIG``. Older
files using the camelCase keys of the admin form (``gatewayIp``,
``etsProjectFile``, ...) are accepted as well.
"""

import copy
import json
import logging
import os
import re
from typing import Any, Dict, Optional

from .utils.config_validator import ConfigValidator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'config.json'

DEFAULT_CONFIG: Dict[str, Any] = {
    'gateway_ip': '',
    'gateway_port': 3671,
    'phys_addr': '',
    'local_interface': '',
    'loglevel': 'info',
    'force_tunneling': False,
    'local_echo': False,
    'minimum_delay_ms': 25,
    'ets_project_file': '',
    'ets_password': None,
    'ets_language': None,
    'import_on_start': False,
    'ga_style_override': 'auto',
    'read_on_start': False,
    'ack_on_write': False,
    'manual_datapoints': [],
    'files_dir': 'var/lib/knx_sync/files',
    'data_dir': 'var/lib/knx_sync/data',
    'store_path': 'var/lib/knx_sync/objects.json',
    'store_flush_delay_ms': 1000,
    'bind_host': '0.0.0.0',
    'port': 8080,
}

_RE_CAMEL = re.compile(r'(?<!^)(?=[A-Z])')


def snake_case(key: str) -> str:
    """``gatewayIp`` -> ``gateway_ip``, ``minimumDelayMs`` -> ``minimum_delay_ms``"""
    return _RE_CAMEL.sub('_', key).lower()


def normalize_config(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``raw`` over the defaults and fill in empty values."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    # only top-level keys; manual datapoint flags stay camelCase
    for key, value in raw.items():
        cfg[snake_case(key)] = value

    if not cfg.get('gateway_port'):
        cfg['gateway_port'] = DEFAULT_CONFIG['gateway_port']
    if not cfg.get('loglevel'):
        cfg['loglevel'] = DEFAULT_CONFIG['loglevel']
    if cfg.get('minimum_delay_ms') in (None, ''):
        cfg['minimum_delay_ms'] = DEFAULT_CONFIG['minimum_delay_ms']
    if not cfg.get('ga_style_override'):
        cfg['ga_style_override'] = 'auto'
    if cfg.get('manual_datapoints') is None:
        cfg['manual_datapoints'] = []
    return cfg


def load_config(path: Optional[str] = None, validate: bool = True) -> Dict[str, Any]:
    """
    Load the configuration file.

    Args:
        path: Path to the JSON file; ``$KNX_SYNC_CONFIG`` or ``config.json``
              when omitted. A missing file yields the defaults.
        validate: Run the ConfigValidator on the result

    Returns:
        Normalized configuration dictionary

    Raises:
        ConfigValidationError: If validation fails
        json.JSONDecodeError: If the file is not valid JSON
    """
    path = path or os.environ.get('KNX_SYNC_CONFIG') or DEFAULT_CONFIG_FILE
    raw: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, 'r', encoding='utf8') as f:
            raw = json.load(f)
        logger.debug(f"Configuration read from {path}")
    else:
        logger.info(f"No configuration file at {path}, using defaults")

    cfg = normalize_config(raw)
    if validate:
        ConfigValidator().validate(cfg)
    return cfg
