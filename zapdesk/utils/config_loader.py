"""
Console configuration.

Settings come from a YAML file (ZAPDESK_CONFIG, else config/config.yml, else
the shipped config/config.example.yml). Any string in it may reference the
environment as ${VAR} or ${VAR:-default}; a .env file in the working
directory is loaded first so those references see it.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from zapdesk.utils.logger import logger


DEFAULT_CONFIG_FILE = "config/config.yml"
EXAMPLE_CONFIG_FILE = "config/config.example.yml"

_ENV_REFERENCE = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def _substitute(match: "re.Match[str]") -> str:
    name, default = match.group(1), match.group(2)
    value = os.getenv(name)
    if value is not None:
        return value
    if default is not None:
        return default
    logger.warning(f"Environment variable {name} not set and no default provided")
    return match.group(0)


def resolve_env(value: Any) -> Any:
    """Expand ${VAR} references anywhere inside a parsed YAML value."""
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(_substitute, value)
    if isinstance(value, dict):
        return {key: resolve_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_env(item) for item in value]
    return value


class ConfigLoader:
    """
    Read-only view over the console settings.

    Values are looked up by dotted path, e.g.
    config.get("console.outbound.drain_interval_seconds", 0.5).
    """

    def __init__(self, config_file: Optional[str] = None):
        if Path(".env").exists():
            load_dotenv(".env")
            logger.info("Loaded environment variables from .env file")

        self.config_file = config_file or os.getenv("ZAPDESK_CONFIG") or DEFAULT_CONFIG_FILE
        self.config: Dict[str, Any] = resolve_env(self._read_yaml())

    def _read_yaml(self) -> Dict[str, Any]:
        path = Path(self.config_file)
        if not path.is_file():
            logger.warning(f"Config file {self.config_file} not found")
            path = Path(EXAMPLE_CONFIG_FILE)
            if not path.is_file():
                return {}
            logger.info(f"Falling back to {EXAMPLE_CONFIG_FILE}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading config file {path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Config file {path} must hold a mapping at the top level")
            return {}
        logger.info(f"Loaded configuration from {path}")
        return data

    def get(self, key_path: str, default: Any = None) -> Any:
        value: Any = self.config
        for key in key_path.split("."):
            if not isinstance(value, dict) or key not in value:
                return default
            value = value[key]
        return value

    def get_float(self, key_path: str, default: float) -> float:
        """Numeric setting; strings produced by env substitution are converted."""
        value = self.get(key_path, default)
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning(f"Config value {key_path}={value!r} is not numeric, using {default}")
            return default

    def get_int(self, key_path: str, default: int) -> int:
        return int(self.get_float(key_path, default))

    def get_all(self) -> Dict[str, Any]:
        return self.config


config = ConfigLoader()
