"""YAML configuration for locating plans and tuning backups."""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import PlanValidationError

DEFAULT_CONFIG_NAME = "planstate.yaml"
PLANS_DIR_ENV = "PLANSTATE_PLANS_DIR"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "paths": {
        "plans_dir": ".plans",
    },
    "backups": {
        "keep": 5,
    },
    "logging": {
        "level": "WARNING",
    },
}


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(config_path: Optional[Path | str] = None) -> Dict[str, Any]:
    """Load ``config_path`` merged over the defaults.

    A missing file yields the defaults; a file that is not a mapping is rejected.
    """
    config = copy_config_template()
    if config_path is None:
        return config
    path = Path(config_path)
    if not path.exists():
        return config

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise PlanValidationError(
            f"Failed to parse config {path}: {error}",
            code="INVALID_CONFIG",
            details={"path": path.as_posix()},
        ) from error

    if not isinstance(data, dict):
        raise PlanValidationError(
            "Configuration must be a mapping at the top level.",
            code="INVALID_CONFIG",
            details={"path": path.as_posix()},
        )
    return _merge(config, data)


def write_config(config_path: Path | str, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


def resolve_plans_dir(config: Mapping[str, Any], config_path: Optional[Path | str] = None) -> Path:
    """Resolve the plans directory; relative paths are anchored at the config file.

    ``PLANSTATE_PLANS_DIR`` overrides the configured value.
    """
    override = os.environ.get(PLANS_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser().resolve()

    paths_cfg = config.get("paths") or {}
    value = paths_cfg.get("plans_dir") or DEFAULT_CONFIG_TEMPLATE["paths"]["plans_dir"]
    candidate = Path(str(value)).expanduser()
    if not candidate.is_absolute():
        anchor = Path(config_path).parent if config_path is not None else Path.cwd()
        candidate = anchor / candidate
    return candidate.resolve()


def backup_retention(config: Mapping[str, Any]) -> int:
    backups_cfg = config.get("backups") or {}
    try:
        keep = int(backups_cfg.get("keep", DEFAULT_CONFIG_TEMPLATE["backups"]["keep"]))
    except (TypeError, ValueError) as error:
        raise PlanValidationError(
            f"backups.keep must be an integer, got {backups_cfg.get('keep')!r}",
            code="INVALID_CONFIG",
        ) from error
    return max(keep, 1)


def logging_level(config: Mapping[str, Any]) -> int:
    logging_cfg = config.get("logging") or {}
    name = str(logging_cfg.get("level", "WARNING")).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "PLANS_DIR_ENV",
    "backup_retention",
    "copy_config_template",
    "load_config",
    "logging_level",
    "resolve_plans_dir",
    "write_config",
]
