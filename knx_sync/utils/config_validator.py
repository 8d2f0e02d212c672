"""Configuration validator using JSON Schema"""

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import ConfigValidationError
from .address_codec import GA_STYLES, parse_address

logger = logging.getLogger(__name__)

# JSON Schema for config.json
CONFIG_SCHEMA = {
    "type": "object",
    "required": ["gateway_port", "minimum_delay_ms", "ga_style_override"],
    "properties": {
        "gateway_ip": {"type": "string"},
        "gateway_port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "phys_addr": {"type": "string"},
        "local_interface": {"type": "string"},
        "loglevel": {"type": "string", "enum": ["debug", "info", "warn", "warning", "error"]},
        "force_tunneling": {"type": "boolean"},
        "local_echo": {"type": "boolean"},
        "minimum_delay_ms": {"type": "integer", "minimum": 0},
        "ets_project_file": {"type": "string"},
        "ets_password": {"type": ["string", "null"]},
        "ets_language": {"type": ["string", "null"]},
        "import_on_start": {"type": "boolean"},
        "ga_style_override": {"type": "string", "enum": ["auto"] + list(GA_STYLES)},
        "read_on_start": {"type": "boolean"},
        "ack_on_write": {"type": "boolean"},
        "manual_datapoints": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["ga"],
                "properties": {
                    "name": {"type": "string"},
                    "ga": {"type": "string"},
                    "dpt": {"type": "string"},
                    "readFlag": {"type": "boolean"},
                    "writeFlag": {"type": "boolean"},
                    "transmitFlag": {"type": "boolean"}
                }
            }
        },
        "files_dir": {"type": "string"},
        "data_dir": {"type": "string"},
        "store_path": {"type": "string"},
        "store_flush_delay_ms": {"type": "integer", "minimum": 0},
        "bind_host": {"type": "string"},
        "port": {"type": "integer", "minimum": 1, "maximum": 65535}
    }
}

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
    "null": lambda v: v is None,
}


class ConfigValidator:
    """Validates configuration dictionaries"""

    def __init__(self, schema: Optional[Dict] = None):
        """Initialize validator with schema."""
        self.schema = schema or CONFIG_SCHEMA
        self.errors: List[str] = []

    def validate(self, config: Dict) -> bool:
        """
        Validate configuration against schema.

        Args:
            config: Configuration dictionary to validate

        Returns:
            True if valid

        Raises:
            ConfigValidationError: If validation fails with details
        """
        self.errors = []

        for required_field in self.schema.get('required', []):
            if required_field not in config:
                self.errors.append(f"Missing required field: {required_field}")

        for key, rules in self.schema.get('properties', {}).items():
            if key in config:
                self._validate_value(key, config[key], rules)

        if 'manual_datapoints' in config and isinstance(config['manual_datapoints'], list):
            self._validate_manual_datapoints(config['manual_datapoints'])

        if self.errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in self.errors)
            raise ConfigValidationError(error_msg)

        logger.info("Configuration validation successful")
        return True

    def _validate_value(self, key: str, value: Any, rules: Dict):
        """Check type, enum and range of one value."""
        expected = rules.get('type')
        if expected:
            types = expected if isinstance(expected, list) else [expected]
            if not any(_TYPE_CHECKS[t](value) for t in types):
                self.errors.append(f"Field '{key}' must be of type {' or '.join(types)}")
                return

        if 'enum' in rules and value not in rules['enum']:
            self.errors.append(f"Field '{key}' must be one of: {', '.join(rules['enum'])}")

        if isinstance(value, int) and not isinstance(value, bool):
            if 'minimum' in rules and value < rules['minimum']:
                self.errors.append(f"Field '{key}' must be >= {rules['minimum']}")
            if 'maximum' in rules and value > rules['maximum']:
                self.errors.append(f"Field '{key}' must be <= {rules['maximum']}")

    def _validate_manual_datapoints(self, datapoints: List):
        """Each manual datapoint needs a parseable group address."""
        item_rules = self.schema['properties']['manual_datapoints']['items']
        for idx, dp in enumerate(datapoints):
            if not isinstance(dp, dict):
                self.errors.append(f"Manual datapoint #{idx} must be a dictionary")
                continue
            for field in item_rules.get('required', []):
                if field not in dp:
                    self.errors.append(f"Manual datapoint #{idx} missing required field: {field}")
            for key, rules in item_rules.get('properties', {}).items():
                if key in dp:
                    self._validate_value(f"manual_datapoints[{idx}].{key}", dp[key], rules)
            ga = dp.get('ga')
            if isinstance(ga, str) and ga.strip():
                try:
                    parse_address(ga)
                except ValueError as e:
                    self.errors.append(f"Manual datapoint #{idx}: {e}")
