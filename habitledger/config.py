"""Load and validate .habitledger/config.yaml."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from habitledger.errors import ConfigError


CONFIG_DIR = ".habitledger"

# Default config values
DEFAULTS: dict[str, Any] = {
    "store": {
        "path": ".habitledger/habits.db",
        "timeout": 5.0,
    },
    "rewards": {
        "base": 10,
        "synergy_bonus": 5,
        "reversal": "stored",
    },
    "levels": {
        "initial_next_level_points": 100,
        "growth_factor": 1.5,
    },
    "arrears": {
        "window_days": 30,
    },
}

REVERSAL_MODES = ("stored", "flat")


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base recursively. Override wins on conflicts."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _require_mapping(config: dict, key: str) -> dict:
    section = config.get(key)
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return section


def _require_positive_int(section: dict, name: str, key: str) -> None:
    val = section.get(key)
    if isinstance(val, bool) or not isinstance(val, int) or val < 1:
        raise ConfigError(f"'{name}.{key}' must be a positive integer, got {val!r}")


def _validate(config: dict) -> None:
    """Validate required fields in config."""
    store = _require_mapping(config, "store")
    if not isinstance(store.get("path"), str) or not store["path"]:
        raise ConfigError("'store.path' must be a non-empty string")
    timeout = store.get("timeout")
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError(f"'store.timeout' must be a positive number, got {timeout!r}")

    rewards = _require_mapping(config, "rewards")
    _require_positive_int(rewards, "rewards", "base")
    bonus = rewards.get("synergy_bonus")
    if isinstance(bonus, bool) or not isinstance(bonus, int) or bonus < 0:
        raise ConfigError(f"'rewards.synergy_bonus' must be a non-negative integer, got {bonus!r}")
    if rewards.get("reversal") not in REVERSAL_MODES:
        raise ConfigError(
            f"Unsupported reward reversal '{rewards.get('reversal')}'. "
            f"Must be one of {REVERSAL_MODES}."
        )

    levels = _require_mapping(config, "levels")
    _require_positive_int(levels, "levels", "initial_next_level_points")
    growth = levels.get("growth_factor")
    if isinstance(growth, bool) or not isinstance(growth, (int, float)) or growth < 1:
        raise ConfigError(f"'levels.growth_factor' must be >= 1, got {growth!r}")

    arrears = _require_mapping(config, "arrears")
    _require_positive_int(arrears, "arrears", "window_days")


def load_config(project_root: Path | None = None) -> dict:
    """Load config from .habitledger/config.yaml under project_root.

    Falls back to cwd if project_root is None. Merges with DEFAULTS
    so callers always get a full config dict.
    """
    root = Path(project_root) if project_root else Path.cwd()
    config_path = root / CONFIG_DIR / "config.yaml"

    if not config_path.exists():
        raise ConfigError(f"Config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f)

    # An empty file means "all defaults"
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config must be a YAML mapping, got {type(raw).__name__}")

    config = _deep_merge(copy.deepcopy(DEFAULTS), raw)
    _validate(config)
    return config


def default_config() -> dict:
    """Return a validated copy of DEFAULTS (for callers without a project dir)."""
    config = copy.deepcopy(DEFAULTS)
    _validate(config)
    return config


def resolve_db_path(config: dict, project_root: Path) -> Path:
    """Resolve the store path relative to project_root (absolute paths pass through)."""
    path = Path(config["store"]["path"]).expanduser()
    if path.is_absolute():
        return path
    return project_root / path
