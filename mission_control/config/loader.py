"""Load and save the mission-control configuration file."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from mission_control.config.schema import Config

_CONFIG_DIR = Path.home() / ".mission-control"


def get_config_path() -> Path:
    """Return default path of config.json."""
    return _CONFIG_DIR / "config.json"


def load_config(path: Path | None = None) -> Config:
    """Load config from disk; environment variables override file values.

    A missing or invalid file yields the defaults.
    """
    target = path or get_config_path()
    data: dict = {}
    if target.exists():
        try:
            raw = json.loads(target.read_text(encoding="utf-8"))
            if isinstance(raw, dict):
                data = raw
            else:
                logger.warning(f"[config] Ignoring non-object config at {target}")
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("[config] Failed to read {}: {}", target, exc)

    try:
        # Init kwargs beat env in pydantic-settings; merge env on top manually.
        env_config = Config()
        merged = _deep_merge(data, env_config.model_dump(exclude_defaults=True))
        return Config(**merged)
    except ValidationError as exc:
        logger.warning("[config] Invalid config at {}, using defaults: {}", target, exc)
        return Config()


def save_config(config: Config, path: Path | None = None) -> None:
    """Persist config to disk."""
    target = path or get_config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(
        json.dumps(config.model_dump(), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def _deep_merge(base: dict, override: dict) -> dict:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
