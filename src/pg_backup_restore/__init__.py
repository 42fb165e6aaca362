"""pg-backup-restore: PostgreSQL backup, restore, sync and schema reset.

Wraps ``pg_dump`` and ``pg_restore`` with per-environment configuration,
supervised execution with live progress, a catalog of timestamped
artifacts, and typed confirmation before anything is overwritten.

Usage:
    from pg_backup_restore import load_global_settings, build_context
    from pg_backup_restore import run_backup, restore_environment, run_sync, run_drop
"""

__version__ = "0.1.0"

# Errors
from pg_backup_restore.errors import (
    ArtifactError,
    BackupToolError,
    ConfigurationError,
    ConfirmationError,
    ConnectivityError,
    OperationCancelledError,
    OperationTimeoutError,
    SchemaResetError,
    ToolExecutionError,
)

# Config
from pg_backup_restore.config.loader import load_environment, load_global_settings
from pg_backup_restore.config.models import Environment, GlobalSettings

# Adapters
from pg_backup_restore.adapters.base import DatabaseClient
from pg_backup_restore.adapters.postgres import AsyncPostgresAdapter

# Factory
from pg_backup_restore.factory import (
    OperationContext,
    build_context,
    check_connectivity,
    get_adapter,
)

# Safety
from pg_backup_restore.safety import RestorePolicy

# Operations
from pg_backup_restore.backup.catalog import ArtifactCatalog
from pg_backup_restore.backup.dump import run_backup
from pg_backup_restore.backup.restore import restore_environment, run_restore
from pg_backup_restore.drop import run_drop
from pg_backup_restore.sync import run_sync

__all__ = [
    # Errors
    "BackupToolError",
    "ConfigurationError",
    "ConnectivityError",
    "ToolExecutionError",
    "ConfirmationError",
    "ArtifactError",
    "OperationTimeoutError",
    "SchemaResetError",
    "OperationCancelledError",
    # Config
    "load_global_settings",
    "load_environment",
    "Environment",
    "GlobalSettings",
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Factory
    "OperationContext",
    "build_context",
    "check_connectivity",
    "get_adapter",
    # Safety
    "RestorePolicy",
    # Operations
    "ArtifactCatalog",
    "run_backup",
    "run_restore",
    "restore_environment",
    "run_sync",
    "run_drop",
]
