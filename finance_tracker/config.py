# finance_tracker/config.py
from __future__ import annotations

import copy
import os
from datetime import time
from pathlib import Path
from typing import Dict

import yaml

DEFAULT_CONFIG: Dict[str, object] = {
    "db_path": "fintrack.db",
    "log_level": "INFO",
    "seed_default_categories": True,
    "scheduler": {
        "run_at": "00:00",
    },
}

CONFIG_PATH = Path("config.yaml")

# Environment variable -> (section, key); section None means top level.
_ENV_OVERRIDES = {
    "FINTRACK_DB_PATH": (None, "db_path"),
    "FINTRACK_LOG_LEVEL": (None, "log_level"),
    "FINTRACK_RUN_AT": ("scheduler", "run_at"),
}


def _merge_defaults(current: Dict[str, object], defaults: Dict[str, object]) -> Dict[str, object]:
    """Merge missing default keys into the current config recursively."""
    merged = dict(current)
    for key, value in defaults.items():
        if key not in merged:
            merged[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(merged[key], dict):
            merged[key] = _merge_defaults(merged[key], value)
    return merged


def _apply_env(config: Dict[str, object]) -> Dict[str, object]:
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        if section is None:
            config[key] = value
        else:
            config.setdefault(section, {})[key] = value  # type: ignore[index]
    return config


def load_config(path: Path | str | None = None) -> Dict[str, object]:
    """Load the YAML config at *path*, falling back to defaults.

    Environment overrides (``FINTRACK_DB_PATH``, ``FINTRACK_LOG_LEVEL``,
    ``FINTRACK_RUN_AT``) are applied last.
    """
    target = Path(path) if path else CONFIG_PATH
    data: Dict[str, object] = {}
    if target.exists():
        with target.open("r", encoding="utf-8") as fp:
            data = yaml.safe_load(fp) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {target} must contain a mapping")
    return _apply_env(_merge_defaults(data, DEFAULT_CONFIG))


def parse_run_at(value: str) -> time:
    """Parse an ``HH:MM`` time of day."""
    try:
        hour, minute = (int(part) for part in str(value).split(":"))
        return time(hour, minute)
    except ValueError as exc:
        raise ValueError(f"Invalid scheduler run_at '{value}', expected HH:MM") from exc
