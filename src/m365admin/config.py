"""Configuration loading for the admin helpers.

Lookup order for the YAML file:
1. an explicit path (e.g. `validate-config -c`)
2. the M365ADMIN_CONFIG_PATH environment variable
3. ./config/config.yaml
4. ~/.config/m365admin/config.yaml

M365ADMIN_CLIENT_ID and M365ADMIN_TENANT_ID, typically set through a .env
file, override the matching `auth` keys so the app registration can stay out
of the YAML file.

Usage:
    from m365admin.config import get_config

    config = get_config()
    threshold = config.graph.batch_flush_threshold
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from m365admin.config_schema import CURRENT_SCHEMA_VERSION, MAX_FLUSH_THRESHOLD, AppConfig
from m365admin.core.errors import ConfigLoadError, ConfigValidationError
from m365admin.core.logging import get_logger

logger = get_logger(__name__)

CONFIG_PATH_ENV_VAR = "M365ADMIN_CONFIG_PATH"
LOCAL_CONFIG_PATH = Path("config/config.yaml")
USER_CONFIG_PATH = Path.home() / ".config" / "m365admin" / "config.yaml"

# Environment variable -> key under `auth`
AUTH_ENV_OVERRIDES = {
    "M365ADMIN_CLIENT_ID": "client_id",
    "M365ADMIN_TENANT_ID": "tenant_id",
}

# Extra guidance appended to validation errors for specific fields
FIELD_HINTS = {
    "auth.client_id": "copy the Application (client) ID from App registrations -> your app",
    "graph.batch_flush_threshold": (
        f"must be between 1 and {MAX_FLUSH_THRESHOLD} so a flushed batch stays within 20 requests"
    ),
    "domains.metadata_url_template": "keep the {domain} placeholder",
}

_lock = threading.Lock()
_config: AppConfig | None = None


def resolve_config_path(path: Path | None = None) -> Path:
    """Pick the config file to read, following the documented lookup order.

    When no candidate exists the local path is returned so the error message
    points at the conventional location.
    """
    if path is not None:
        return path
    env_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path)
    for candidate in (LOCAL_CONFIG_PATH, USER_CONFIG_PATH):
        if candidate.exists():
            return candidate
    return LOCAL_CONFIG_PATH


def _describe_errors(error: ValidationError) -> str:
    lines = []
    for err in error.errors():
        field_path = ".".join(str(part) for part in err["loc"])
        if err["type"] == "missing":
            line = f"  - {field_path}: required but not set"
        else:
            line = f"  - {field_path}: {err['msg']}"
        hint = FIELD_HINTS.get(field_path)
        if hint:
            line += f" ({hint})"
        lines.append(line)
    return "\n".join(lines)


def _read_yaml(path: Path) -> dict[str, Any]:
    """Parse the YAML mapping at `path`.

    Raises:
        ConfigLoadError: If the file is missing, unreadable or not a mapping
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            "Copy config/config.yaml.example there, or set "
            f"{CONFIG_PATH_ENV_VAR} to point at your file."
        ) from None
    except OSError as e:
        raise ConfigLoadError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(f"{path} must contain a YAML mapping, got {type(data).__name__}")
    return data


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    overrides = {
        key: os.environ[env_var]
        for env_var, key in AUTH_ENV_OVERRIDES.items()
        if os.environ.get(env_var)
    }
    if not overrides:
        return data
    logger.debug("Auth settings overridden from environment", keys=sorted(overrides))
    auth = data.get("auth") if isinstance(data.get("auth"), dict) else {}
    return {**data, "auth": {**auth, **overrides}}


def load_config(path: Path | None = None) -> AppConfig:
    """Read, override and validate a config file, bypassing the singleton.

    Raises:
        ConfigLoadError: If the file cannot be read or parsed
        ConfigValidationError: If the content does not match the schema
    """
    config_path = resolve_config_path(path)
    data = _apply_env_overrides(_read_yaml(config_path))

    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Invalid configuration in {config_path}:\n{_describe_errors(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"{config_path} declares schema_version {config.schema_version}, newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. Upgrade m365admin."
        )

    logger.debug("Configuration loaded", path=str(config_path), tenant_id=config.auth.tenant_id)
    return config


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    with _lock:
        if _config is None:
            _config = load_config()
        return _config


def reset_config() -> None:
    """Forget the loaded config so the next get_config() reads from disk."""
    global _config
    with _lock:
        _config = None


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file and summarize it for the `validate-config` command.

    Returns:
        (is_valid, message) where message is either a summary or the error
    """
    try:
        config = load_config(path)
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"

    summary = [
        f"Configuration valid (schema version {config.schema_version})",
        f"  - tenant: {config.auth.tenant_id}",
        f"  - scopes: {', '.join(config.auth.scopes)}",
        f"  - graph: {config.graph.base_url} (users: {config.graph.users_base_url})",
        f"  - batch flush threshold: {config.graph.batch_flush_threshold}",
        f"  - domain metadata: {config.domains.metadata_url_template}",
    ]
    return True, "\n".join(summary)
