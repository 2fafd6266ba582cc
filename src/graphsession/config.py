"""Configuration loader.

Loads config.yaml, validates it against the Pydantic schema, and keeps a
process-wide singleton.

Usage:
    from graphsession.config import get_config

    config = get_config()
    print(config.auth.client_id)
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from graphsession.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from graphsession.core.errors import ConfigLoadError, ConfigValidationError
from graphsession.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV_VAR = "GRAPHSESSION_CONFIG_PATH"

_config_lock = threading.Lock()
_current_config: AppConfig | None = None


def _get_config_path() -> Path:
    """Get the config file path from environment or default."""
    env_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into actionable messages."""
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        if err["type"] == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        else:
            messages.append(f"  - Field '{field_path}': {err['msg']}")
    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse YAML file.

    Raises:
        ConfigLoadError: If file not found or YAML parse error
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it by copying config/config.yaml.example to {path}"
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"Configuration file must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def _validate_config(data: dict[str, Any], path: Path) -> AppConfig:
    """Validate config data against Pydantic schema.

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        error_details = _format_validation_errors(e)
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{error_details}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Please upgrade graphsession or downgrade the config."
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration from YAML file, bypassing the singleton.

    Args:
        path: Optional path to config file. If not provided, uses
              GRAPHSESSION_CONFIG_PATH env var or default.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    config_path = path or _get_config_path()

    logger.debug("Loading configuration", path=str(config_path))

    data = _load_yaml(config_path)
    config = _validate_config(data, config_path)

    logger.info(
        "Configuration loaded successfully",
        path=str(config_path),
        schema_version=config.schema_version,
        scopes=config.auth.scopes,
        cache_protection=config.token_cache.protection,
    )
    return config


def get_config(path: Path | None = None) -> AppConfig:
    """Get the configuration singleton, loading it on first call.

    Thread-safe: protected by _config_lock.
    """
    global _current_config

    with _config_lock:
        if _current_config is None:
            _current_config = load_config(path)
        return _current_config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without loading it into the singleton.

    Returns:
        Tuple of (is_valid, message)
    """
    config_path = path or _get_config_path()

    try:
        config = load_config(config_path)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")

    return (
        True,
        f"Configuration valid (schema version {config.schema_version})\n"
        f"  - client id: {config.auth.client_id[:8]}...\n"
        f"  - {len(config.auth.scopes)} scopes: {', '.join(config.auth.scopes)}\n"
        f"  - token cache: {config.token_cache.path} ({config.token_cache.protection})",
    )


def reset_config() -> None:
    """Reset the config singleton. Primarily for testing."""
    global _current_config
    with _config_lock:
        _current_config = None
