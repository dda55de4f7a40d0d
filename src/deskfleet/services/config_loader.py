"""Configuration loader for DeskFleet."""

from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from deskfleet.errors import ConfigError
from deskfleet.models import FleetSettings

_LIST_KEYS = {"admin_ports", "reserved_ports", "address_sources", "host_packages"}


class ConfigLoader:
    """Loads the YAML fleet configuration used as CLI defaults."""

    SUPPORTED_KEYS = {field.name for field in fields(FleetSettings)} | {"log_file", "verbose"}

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigError(f"Unknown configuration keys: {unknown_list}")

        for key in _LIST_KEYS & set(parsed):
            if not isinstance(parsed[key], list):
                raise ConfigError(f"Configuration key '{key}' must be a list.")
            parsed[key] = tuple(parsed[key])

        return parsed
