"""Configuration loading for the realtime bridge.

Sources, lowest precedence first:

1. built-in defaults (``RealtimeConfig``)
2. deployment environment (``PORT``, ``ACCESS_TOKEN_SECRET``, ``RTB_BASE_URL``)
   filling keys the files leave unset
3. the main YAML file, then an optional override file deep-merged on top

String values may reference environment variables as ``${VAR}``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, cast

if TYPE_CHECKING:
    from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from storefront_realtime.config.schema import RealtimeConfig

logger = structlog.get_logger(__name__)

# Environment variable -> (section, key); shared with the storefront backend's deployment
ENV_DEFAULTS: dict[str, tuple[str, str]] = {
    "PORT": ("server", "port"),
    "ACCESS_TOKEN_SECRET": ("server", "jwt_secret"),
    "RTB_BASE_URL": ("client", "base_url"),
}


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Read one YAML mapping; an empty file yields ``{}``.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not YAML or not a mapping
    """
    if not path.is_file():
        reason = "not found" if not path.exists() else "is not a file"
        raise ConfigurationError(f"Configuration file {reason}: {path}")

    try:
        content = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(f"Configuration must be a YAML mapping, got {type(content).__name__}")
    return content


def expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} references in string values."""

    def expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return os.path.expandvars(value)
        if isinstance(value, dict):
            return {k: expand_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [expand_value(item) for item in value]
        return value

    return cast("dict[str, Any]", expand_value(config))


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two configuration dictionaries; lists are replaced, not merged."""
    result = base.copy()
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value
    return result


def apply_env_defaults(
    config: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Fill unset keys from the deployment environment (see ``ENV_DEFAULTS``)."""
    environ = os.environ if environ is None else environ
    result = config.copy()
    for var, (section, key) in ENV_DEFAULTS.items():
        value = environ.get(var)
        if not value:
            continue
        current = result.get(section)
        current = dict(current) if isinstance(current, dict) else {}
        if current.get(key) in (None, ""):
            current[key] = value
            logger.debug("Configuration value taken from environment", variable=var)
        result[section] = current
    return result


def parse_config(config_dict: dict[str, Any]) -> RealtimeConfig:
    """Validate a configuration mapping.

    Raises:
        ConfigurationError: If validation fails; ``errors`` holds the pydantic details
    """
    try:
        return RealtimeConfig.model_validate(config_dict)
    except ValidationError as e:
        errors = cast("list[dict[str, Any]]", e.errors())
        lines = [f"  - {'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in errors]
        raise ConfigurationError(
            "Configuration validation failed:\n" + "\n".join(lines),
            errors=errors,
        ) from e


def load_config(
    config_path: Path | None = None,
    *,
    override_path: Path | None = None,
    expand_env: bool = True,
) -> RealtimeConfig:
    """Load and validate the configuration.

    Args:
        config_path: Main YAML file; defaults and environment only when omitted
        override_path: Optional YAML file deep-merged over the main file
        expand_env: Apply environment defaults and ``${VAR}`` expansion

    Raises:
        ConfigurationError: If a file cannot be read or the result is invalid
    """
    config_dict: dict[str, Any] = {}
    if config_path is not None:
        logger.info("Loading configuration", path=str(config_path))
        config_dict = load_yaml_file(config_path)

    if override_path is not None:
        logger.info("Loading configuration override", path=str(override_path))
        config_dict = merge_configs(config_dict, load_yaml_file(override_path))

    if expand_env:
        config_dict = apply_env_defaults(expand_env_vars(config_dict))

    config = parse_config(config_dict)
    logger.info(
        "Configuration loaded",
        base_url=config.client.base_url,
        transports=[t.value for t in config.client.transports],
        server_port=config.server.port,
        jwt_secret_configured=config.server.jwt_secret is not None,
    )
    return config


def validate_config_file(config_path: Path) -> list[str]:
    """Validate a configuration file, returning error messages (empty if valid)."""
    try:
        load_config(config_path)
    except ConfigurationError as e:
        return [str(e)]
    return []


def generate_example_config() -> str:
    """Example YAML mirroring the defaults, with the secret read from the environment."""
    defaults = RealtimeConfig()
    example: dict[str, Any] = {
        "client": defaults.client.model_dump(mode="json"),
        "server": {
            **defaults.server.model_dump(mode="json", exclude={"jwt_secret"}),
            "jwt_secret": "${ACCESS_TOKEN_SECRET}",
        },
        "logging": defaults.logging.model_dump(mode="json"),
    }
    return yaml.dump(example, default_flow_style=False, sort_keys=False, allow_unicode=True)
