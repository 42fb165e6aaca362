"""Load global settings and resolve per-environment connection configuration.

Precedence for any single setting, highest first:

1. Explicit runtime override (CLI flag)
2. Process environment variable (``BACKUP_ROOT``, ``LOG_FILE``, ...)
3. ``settings.toml`` (non-secret, may be version-controlled)
4. ``<env_dir>/<name>.env`` secret file (environment fields only)
5. Built-in default

Credentials are the exception: ``DB_PASSWORD`` is read from the secret
file and nowhere else.
"""

import logging
import os
import tomllib
from datetime import datetime
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from pg_backup_restore.config.environments import list_environments
from pg_backup_restore.config.models import (
    Environment,
    EnvironmentOverride,
    GlobalSettings,
)
from pg_backup_restore.errors import ConfigurationError

logger = logging.getLogger(__name__)

_CREDENTIAL_KEYS = {"password", "db_password", "DB_PASSWORD"}

# settings.toml [section] key -> GlobalSettings field
_SETTINGS_KEYS: dict[tuple[str, str], str] = {
    ("paths", "backup_root"): "backup_root",
    ("paths", "log_file"): "log_file",
    ("paths", "env_dir"): "env_dir",
    ("paths", "transfer_file"): "transfer_file",
    ("backup", "timestamp_format"): "timestamp_format",
    ("backup", "poll_interval"): "backup_poll_interval",
    ("restore", "poll_interval"): "restore_poll_interval",
    ("restore", "progress_interval"): "progress_interval",
    ("restore", "timeout"): "restore_timeout",
    ("restore", "warmup"): "restore_warmup",
    ("restore", "eta_ceiling"): "eta_ceiling",
    ("restore", "show_lines"): "show_lines",
    ("restore", "latest_requires_confirmation"): "latest_requires_confirmation",
    ("drop", "schema"): "schema_name",
    ("tools", "pg_dump"): "pg_dump",
    ("tools", "pg_restore"): "pg_restore",
}

_PATH_FIELDS = ("backup_root", "log_file", "env_dir", "transfer_file", "secret_file")


class EnvironmentVariables(BaseSettings):
    """Process environment overrides (``BACKUP_ROOT``, ``LOG_FILE``, ...)."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    backup_root: Path | None = None
    log_file: Path | None = None
    env_dir: Path | None = None
    config_file_path: Path | None = None
    global_config_file: Path | None = None


def _read_settings_file(settings_file: Path) -> dict[str, Any]:
    """Parse the TOML settings file, returning ``{}`` when it does not exist."""
    if not settings_file.exists():
        logger.debug(f"Settings file not found, using defaults: {settings_file}")
        return {}

    try:
        with open(settings_file, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationError(f"Could not read settings file {settings_file}: {e}") from e

    logger.info(f"Loaded settings from: {settings_file}")
    return data


def _strip_credentials(section: dict[str, Any], where: str) -> dict[str, Any]:
    """Drop credential keys from a settings-file table, warning once per key."""
    clean = {}
    for key, value in section.items():
        if key in _CREDENTIAL_KEYS:
            logger.warning(
                f"Ignoring credential '{key}' in settings file ({where}); "
                f"credentials are only read from the environment secret file"
            )
            continue
        clean[key] = value
    return clean


def _normalize(path: Path, project_root: Path) -> Path:
    """Resolve a relative path against the project root."""
    path = path.expanduser()
    return path if path.is_absolute() else (project_root / path)


def load_global_settings(
    settings_file: Path | None = None,
    overrides: dict[str, Any] | None = None,
    project_root: Path | None = None,
) -> GlobalSettings:
    """Load ``GlobalSettings`` applying override precedence.

    Args:
        settings_file: Path to ``settings.toml``.  When ``None``, uses
            ``GLOBAL_CONFIG_FILE`` or ``<project_root>/settings.toml``.
        overrides: Explicit runtime overrides keyed by ``GlobalSettings``
            field name (e.g. ``{"backup_root": Path("/mnt/backups")}``).
            ``None`` values are ignored.
        project_root: Base for relative paths (default: ``Path.cwd()``).

    Returns:
        Frozen ``GlobalSettings`` with absolute paths.

    Raises:
        ConfigurationError: If the settings file is unreadable or a value
            has the wrong type.
    """
    project_root = (project_root or Path.cwd()).resolve()
    env_vars = EnvironmentVariables()

    if settings_file is None:
        settings_file = env_vars.global_config_file or project_root / "settings.toml"
    data = _read_settings_file(_normalize(Path(settings_file), project_root))

    values: dict[str, Any] = {
        "backup_root": Path("backups"),
        "log_file": Path("backup.log"),
        "env_dir": Path("environments"),
        "transfer_file": Path("transfer.dump"),
    }

    # Settings file
    for (section, key), field_name in _SETTINGS_KEYS.items():
        table = data.get(section, {})
        if isinstance(table, dict) and key in table:
            values[field_name] = table[key]
    for section_name, table in data.items():
        if isinstance(table, dict) and section_name != "environments":
            _strip_credentials(table, f"[{section_name}]")

    env_overrides: dict[str, EnvironmentOverride] = {}
    for name, table in data.get("environments", {}).items():
        clean = _strip_credentials(table, f"[environments.{name}]")
        try:
            env_overrides[name] = EnvironmentOverride(**clean)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid [environments.{name}] in settings file: {e}") from e
    values["environment_overrides"] = env_overrides

    # Process environment variables beat the settings file
    for field_name in ("backup_root", "log_file", "env_dir"):
        env_value = getattr(env_vars, field_name)
        if env_value is not None:
            values[field_name] = env_value
    if env_vars.config_file_path is not None:
        values["secret_file"] = env_vars.config_file_path

    # Explicit runtime overrides beat everything
    for field_name, value in (overrides or {}).items():
        if value is not None:
            values[field_name] = value

    for field_name in _PATH_FIELDS:
        if values.get(field_name) is not None:
            values[field_name] = _normalize(Path(values[field_name]), project_root)

    try:
        return GlobalSettings(project_root=project_root, **values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e


def _file_timestamps(path: Path) -> tuple[datetime | None, datetime | None]:
    """Creation time from the ``# Created:`` header, update time from mtime."""
    created_at = None
    try:
        with open(path) as f:
            for line in f:
                if line.startswith("# Created:"):
                    created_at = datetime.strptime(
                        line.split(":", 1)[1].strip(), "%Y-%m-%d %H:%M:%S"
                    )
                    break
    except (OSError, ValueError):
        created_at = None
    updated_at = datetime.fromtimestamp(os.stat(path).st_mtime)
    return created_at, updated_at


def environment_file_path(name: str, settings: GlobalSettings) -> Path:
    """Path of ``name``'s own secret file, ``<env_dir>/<name>.env``."""
    return settings.env_dir / f"{name}.env"


def secret_file_path(name: str, settings: GlobalSettings) -> Path:
    """Path of the secret file for the primary environment of an invocation.

    ``CONFIG_FILE_PATH`` wins over ``<env_dir>/<name>.env``.  Secondary
    environments (a sync target, rows of a listing) must be resolved with
    ``environment_file_path`` instead.
    """
    if settings.secret_file is not None:
        return settings.secret_file
    return environment_file_path(name, settings)


def load_environment(
    name: str,
    settings: GlobalSettings,
    overrides: dict[str, Any] | None = None,
    secret_file: Path | None = None,
) -> Environment:
    """Resolve a fully-populated ``Environment`` or fail.

    Args:
        name: Environment identifier (e.g. ``"dev"``).
        settings: Loaded global settings.
        overrides: Explicit runtime overrides for ``host``, ``port``,
            ``database`` or ``username``.  A ``password`` key is rejected.
        secret_file: Explicit secret file path (beats ``CONFIG_FILE_PATH``).

    Returns:
        Validated ``Environment``.

    Raises:
        ConfigurationError: If the secret file is missing or unreadable, or
            any of host/username/password/database is empty.

    Example:
        >>> env = load_environment("dev", settings)
        >>> env.database
        'myapp_dev'
    """
    overrides = dict(overrides or {})
    if "password" in overrides:
        raise ConfigurationError(
            "Credentials cannot be overridden at runtime; set DB_PASSWORD in the secret file"
        )

    path = secret_file or secret_file_path(name, settings)
    if not path.is_file():
        available = ", ".join(list_environments(settings.env_dir)) or "(none)"
        raise ConfigurationError(
            f"Environment '{name}' not found: {path}\nAvailable: {available}"
        )
    if not os.access(path, os.R_OK):
        raise ConfigurationError(f"Could not read config file: {path}")

    logger.info(f"Loading environment '{name}' from: {path}")
    secrets = dotenv_values(path)

    # Lowest layer: secret file, then settings file, then runtime overrides
    resolved: dict[str, Any] = {
        "host": secrets.get("DB_HOST") or "",
        "database": secrets.get("DB_DATABASE") or "",
        "username": secrets.get("DB_USERNAME") or "",
    }
    if secrets.get("DB_PORT"):
        resolved["port"] = secrets["DB_PORT"]

    file_override = settings.environment_overrides.get(name)
    if file_override is not None:
        resolved.update(file_override.model_dump(exclude_none=True))

    resolved.update({k: v for k, v in overrides.items() if v is not None})

    created_at, updated_at = _file_timestamps(path)
    try:
        environment = Environment(
            name=name,
            password=secrets.get("DB_PASSWORD") or "",
            created_at=created_at,
            updated_at=updated_at,
            source_path=path,
            **resolved,
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    missing = environment.missing_fields()
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables for '{name}': {' '.join(missing)}"
        )

    return environment
