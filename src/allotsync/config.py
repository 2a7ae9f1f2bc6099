"""Service configuration: defaults, ``allotsync.yaml`` and environment."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "allotsync.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "spreadsheet_id": None,
    "spreadsheet_id_env": "GOOGLE_SPREADSHEET_ID",
    "credentials_file": None,
    "credentials_file_env": "GOOGLE_SERVICE_ACCOUNT_FILE",
    "credentials_json": None,
    "credentials_json_env": "GOOGLE_SERVICE_ACCOUNT_JSON",
    "database_url": None,
    "database_url_env": "ALLOTSYNC_DB_URL",
    "identity_header": "X-User-Email",
    "log_dir": ".",
    "logging_fsync": False,
    "logging_tail_bytes": 2_097_152,  # 2 MB
    "link_date_min_length": 5,
    "sheet_timezone": None,  # IANA zone for the link date stamp; UTC if unset
}

# config key -> key naming the environment variable that overrides it
_ENV_OVERRIDES = {
    "spreadsheet_id": "spreadsheet_id_env",
    "credentials_file": "credentials_file_env",
    "credentials_json": "credentials_json_env",
    "database_url": "database_url_env",
}


def _flatten_google_block(user_config: dict[str, Any]) -> dict[str, Any]:
    """Flatten a nested ``google:`` block into flat config keys.

    Supports::

        google:
          spreadsheet_id: 1AbC...
          credentials_file: ~/keys/sheets.json
    """
    block = user_config.pop("google", None)
    if not isinstance(block, dict):
        return user_config

    for key in ("spreadsheet_id", "credentials_file", "credentials_json"):
        if key in block:
            user_config.setdefault(key, block[key])
    return user_config


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """Load configuration with defaults, YAML file, then environment.

    Args:
        config_path: Explicit YAML file.  If omitted, ``allotsync.yaml`` in
            the current directory is used when present.

    Returns:
        Merged configuration dict.

    Raises:
        FileNotFoundError: If *config_path* is given but does not exist.
        ValueError: If the YAML document is not a mapping.
    """
    config = dict(DEFAULT_CONFIG)

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
    else:
        path = Path.cwd() / CONFIG_FILENAME

    if path.exists():
        user_config = yaml.safe_load(path.read_text()) or {}
        if not isinstance(user_config, dict):
            raise ValueError(f"{path} must contain a mapping, got {type(user_config).__name__}")
        config.update(_flatten_google_block(user_config))

    for key, env_key in _ENV_OVERRIDES.items():
        env_name = config.get(env_key)
        if env_name and os.environ.get(env_name):
            config[key] = os.environ[env_name]

    return config
