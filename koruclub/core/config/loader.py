"""Configuration loader — YAML file + env override, validated for the scheduler."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from loguru import logger

from koruclub.core.config.schema import Config

CONFIG_ENV = "KORUCLUB_CONFIG"


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    Config file lookup: explicit ``config_path`` → ``$KORUCLUB_CONFIG`` →
    ``./config.yaml``. A missing file is not an error; defaults apply.

    Values priority (handled by pydantic-settings):
        env vars  >  .env file  >  YAML  >  defaults

    Raises
    ------
    ValueError
        If ``scheduler.timezone`` is not a known IANA zone. Every calendar
        rule is evaluated in that single zone, so a typo must fail at boot
        rather than on the first tick.
    """
    path = _find_config_file(config_path)
    config = Config(**_read_yaml(path))
    _check_timezone(config.scheduler.timezone)
    if path:
        logger.debug(f"Config loaded from {path}")
    return config


def _find_config_file(config_path: str | Path | None) -> Path | None:
    candidates = [config_path, os.environ.get(CONFIG_ENV)]
    for candidate in candidates:
        if candidate:
            return Path(candidate)
    default = Path("config.yaml")
    return default if default.exists() else None


def _read_yaml(path: Path | None) -> dict[str, Any]:
    if path is None or not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _check_timezone(name: str) -> None:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown scheduler timezone: {name!r}") from e
