"""Sync configuration management"""
import os
from pathlib import Path
from typing import Any

import toml  # type: ignore[import-untyped]

DEFAULT_SERVER_URL = "http://localhost:8787"
HOME_ENV_VAR = "TEAM_ORDER_HOME"

_DEFAULTS: dict[str, dict[str, Any]] = {
    "sync": {
        "server_url": DEFAULT_SERVER_URL,
        "timeout_seconds": 15.0,
        "max_attempts": 4,
        "base_delay_seconds": 1.0,
        "max_delay_seconds": 10.0,
    },
    "session": {
        "deadline_poll_seconds": 1.0,
        "roster_path": None,
        "catalog_path": None,
    },
}


def config_dir() -> Path:
    """Return the team-order state directory (~/.team-order by default)."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override)
    return Path.home() / ".team-order"


class SyncConfig:
    """Manage sync configuration"""

    def __init__(self) -> None:
        self.config_dir = config_dir()
        self.config_file = self.config_dir / "config.toml"

    def _load(self) -> dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            data: dict[str, Any] = toml.load(self.config_file)
        except (toml.TomlDecodeError, OSError):
            return {}
        return data

    def get(self, section: str, key: str) -> Any:
        """Return a configured value, falling back to the built-in default."""
        default = _DEFAULTS.get(section, {}).get(key)
        section_data = self._load().get(section)
        if not isinstance(section_data, dict) or key not in section_data:
            return default
        value = section_data[key]
        if default is not None and not isinstance(value, type(default)):
            # ints are accepted where floats are expected
            if isinstance(default, float) and isinstance(value, int) and not isinstance(value, bool):
                return float(value)
            return default
        return value

    def get_server_url(self) -> str:
        return str(self.get("sync", "server_url"))

    def set_server_url(self, url: str) -> None:
        """Set server URL in config"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        config = self._load()
        sync_section = config.get("sync")
        if not isinstance(sync_section, dict):
            sync_section = {}
            config["sync"] = sync_section

        sync_section["server_url"] = url

        with open(self.config_file, "w", encoding="utf-8") as f:
            toml.dump(config, f)

    def as_dict(self) -> dict[str, dict[str, Any]]:
        """Resolved configuration (defaults overlaid with the file)."""
        return {
            section: {key: self.get(section, key) for key in keys}
            for section, keys in _DEFAULTS.items()
        }
