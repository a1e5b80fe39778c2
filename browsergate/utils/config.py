# browsergate/utils/config.py
"""
Config loader with caching and environment overrides.

- Reads ./browsergate.yaml if present.
- Merges environment overrides for the recovery and workflow knobs.
- get_config() returns a plain dict so callers can do .get(...) safely;
  load_settings() validates it into GatewaySettings.
- Exposes reload_config() for tests.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict

import yaml
from pydantic import ValidationError

from browsergate.exceptions import ConfigurationError
from browsergate.schemas.settings import GatewaySettings
from browsergate.utils.logger import StructuredLoggerAdapter

# Not setup_logger(): the root logger reads its level from this module.
logger = StructuredLoggerAdapter(logging.getLogger(__name__), {})

CONFIG_FILENAME = "browsergate.yaml"

_CONFIG_CACHE: Dict[str, Any] | None = None


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        logger.error("Failed to parse %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top-level value is not a mapping", path)
        return {}
    return data


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _as_optional_float(raw: str) -> float | None:
    value = float(raw)
    return value if value > 0 else None


# env var -> (section, key, parser)
_ENV_OVERRIDES: Dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "BROWSERGATE_RECOVERY_ENABLED": ("recovery", "enabled", _as_bool),
    "BROWSERGATE_MAX_GLOBAL_RETRIES": ("recovery", "max_global_retries", int),
    "BROWSERGATE_DEFAULT_DELAY_S": ("recovery", "default_delay", float),
    "BROWSERGATE_HISTORY_LIMIT": ("workflow", "history_limit", int),
    "BROWSERGATE_CONTENT_STALE_AFTER_S": (
        "workflow",
        "content_stale_after_s",
        _as_optional_float,
    ),
}


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    for env_name, (section, key, parse) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if not raw:
            continue
        try:
            value = parse(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: not a valid value", env_name, raw)
            continue
        block = dict(cfg.get(section) or {})
        block[key] = value
        cfg[section] = block
    return cfg


def get_config() -> Dict[str, Any]:
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE

    cfg = _read_yaml(Path(CONFIG_FILENAME))
    cfg = _apply_env_overrides(cfg)
    _CONFIG_CACHE = cfg
    return _CONFIG_CACHE


def reload_config() -> Dict[str, Any]:
    """Clear cache and reload (primarily for tests)."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = None
    return get_config()


def load_settings(cfg: Dict[str, Any] | None = None) -> GatewaySettings:
    """Validate the raw config dict into typed settings.

    :param cfg: Raw mapping; defaults to the cached `get_config()` result.
    :type cfg: Dict[str, Any] | None
    :return: Validated settings with defaults filled in.
    :rtype: GatewaySettings
    :raises ConfigurationError: If any section fails validation.
    """
    raw = get_config() if cfg is None else cfg
    try:
        return GatewaySettings(**raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {CONFIG_FILENAME}: {e}") from e
