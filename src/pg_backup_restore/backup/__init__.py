"""Backup and restore of whole databases with ``pg_dump``/``pg_restore``.

Artifacts are custom-format dumps stored per environment and timestamp;
the catalog lists and selects them, the orchestrators create and restore
them under supervision with live progress.

Usage:
    from pg_backup_restore.backup import ArtifactCatalog, run_backup, restore_environment
"""

from pg_backup_restore.backup.catalog import ArtifactCatalog
from pg_backup_restore.backup.dump import run_backup
from pg_backup_restore.backup.models import (
    ArtifactMetadata,
    BackupArtifact,
    BackupResult,
    BackupStatus,
    RestoreResult,
)
from pg_backup_restore.backup.restore import (
    estimate_total_units,
    restore_environment,
    run_restore,
)

__all__ = [
    "ArtifactCatalog",
    "ArtifactMetadata",
    "BackupArtifact",
    "BackupResult",
    "BackupStatus",
    "RestoreResult",
    "estimate_total_units",
    "restore_environment",
    "run_backup",
    "run_restore",
]
