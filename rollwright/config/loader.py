"""
Rollwright Config - Loading and persistence.

Precedence: defaults < YAML file < ROLLWRIGHT_* environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from rollwright.config.models import RollwrightConfig
from rollwright.core.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path.home() / ".rollwright" / "config.yaml"

# env var -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "ROLLWRIGHT_MAX_RETRIES": ("resilience", "max_retries"),
    "ROLLWRIGHT_BASE_DELAY": ("resilience", "base_delay"),
    "ROLLWRIGHT_CAP_DELAY": ("resilience", "cap_delay"),
    "ROLLWRIGHT_CIRCUIT_BREAKER_THRESHOLD": ("resilience", "circuit_breaker_threshold"),
    "ROLLWRIGHT_CIRCUIT_BREAKER_TIMEOUT": ("resilience", "circuit_breaker_timeout"),
    "ROLLWRIGHT_MAX_POOL_SIZE": ("pool", "max_pool_size"),
    "ROLLWRIGHT_CONNECTION_IDLE_TIMEOUT": ("pool", "connection_idle_timeout"),
    "ROLLWRIGHT_QUERY_TIMEOUT": ("pool", "query_timeout"),
    "ROLLWRIGHT_HEALTH_DEADLINE": ("health", "deadline"),
    "ROLLWRIGHT_PHASE_TIMEOUT": ("orchestrator", "phase_timeout"),
    "ROLLWRIGHT_ROLLBACK_TIMEOUT": ("orchestrator", "rollback_timeout"),
    "ROLLWRIGHT_ENVIRONMENT": ("orchestrator", "environment"),
    "ROLLWRIGHT_MAX_CONCURRENCY": ("coordinator", "max_concurrency"),
    "ROLLWRIGHT_LOG_LEVEL": ("logging", "console_level"),
}

_config: RollwrightConfig | None = None


def _apply_env_overrides(data: dict[str, Any], environ: dict[str, str]) -> dict[str, Any]:
    for env_name, (section, field_name) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        data.setdefault(section, {})[field_name] = value
        logger.debug(f"Config override from {env_name}")
    return data


def load_config(
    path: str | Path | None = None, environ: dict[str, str] | None = None
) -> RollwrightConfig:
    """
    Load configuration from YAML and environment.

    Args:
        path: YAML file (default: ~/.rollwright/config.yaml, skipped if absent)
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated configuration.

    Raises:
        ConfigurationError: Unreadable file or invalid values.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot read config file {config_path}: {e}", {"path": str(config_path)}
            ) from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Config file {config_path} must contain a mapping", {"path": str(config_path)}
            )
        data = loaded
        logger.debug(f"Loaded config from {config_path}")
    elif path:
        raise ConfigurationError(f"Config file not found: {config_path}", {"path": str(config_path)})

    data = _apply_env_overrides(data, dict(os.environ) if environ is None else environ)

    try:
        return RollwrightConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def save_config(config: RollwrightConfig, path: str | Path | None = None) -> Path:
    """Write configuration as YAML and return the path."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, sort_keys=False)
    logger.info(f"Saved config to {config_path}")
    return config_path


def get_config() -> RollwrightConfig:
    """Get the cached process configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached configuration (tests, reload)."""
    global _config
    _config = None
