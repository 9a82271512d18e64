"""Reading and writing the per-user configuration file."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_FILE_NAME = ".gatorconfig.json"


@dataclass
class Config:
    """Database location and the name of the user currently logged in."""

    db_url: str = ""
    current_user_name: str = ""
    path: Path | None = field(default=None, compare=False, repr=False)

    def set_user(self, username: str) -> None:
        """Make ``username`` the current user and save the configuration."""
        self.current_user_name = username
        write_config(self, self.path)


def config_path() -> Path:
    """Return the location of the configuration file in the home directory."""
    return Path.home() / CONFIG_FILE_NAME


def _string_field(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"config field {key!r} must be a string, got {type(value).__name__}")
    return value


def read_config(path: str | Path | None = None) -> Config:
    """Load the configuration from ``path`` (the home directory file by default)."""
    location = Path(path) if path is not None else config_path()
    with location.open(encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError("config file must hold a JSON object")
    return Config(
        db_url=_string_field(data, "db_url"),
        current_user_name=_string_field(data, "current_user_name"),
        path=location,
    )


def write_config(config: Config, path: str | Path | None = None) -> None:
    """Save ``config`` to ``path`` (the home directory file by default)."""
    location = Path(path) if path is not None else config_path()
    payload = {"db_url": config.db_url, "current_user_name": config.current_user_name}
    with location.open("w", encoding="utf-8") as handle:
        handle.write(json.dumps(payload, separators=(",", ":")))
        handle.write("\n")