"""Configuration: global settings, environment resolution, secret files.

Usage:
    >>> from pg_backup_restore.config import load_global_settings, load_environment
    >>> settings = load_global_settings()
    >>> env = load_environment("dev", settings)
"""

from pg_backup_restore.config.environments import (
    list_environments,
    parse_postgres_url,
    remove_environment_file,
    write_environment_file,
)
from pg_backup_restore.config.loader import load_environment, load_global_settings
from pg_backup_restore.config.models import Environment, GlobalSettings

__all__ = [
    "load_global_settings",
    "load_environment",
    "Environment",
    "GlobalSettings",
    "list_environments",
    "parse_postgres_url",
    "write_environment_file",
    "remove_environment_file",
]
