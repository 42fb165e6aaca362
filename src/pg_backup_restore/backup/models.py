"""Backup artifact, metadata and result models.

Artifacts live at ``<backup_root>/<environment>/<timestamp>/``:

    backups/prod/2026-01-15-02-30/prod.dump
    backups/prod/2026-01-15-02-30/prod.meta.json   (optional)

The dump file alone makes an artifact valid; metadata only marks it
verified.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

LEGACY_CHECKSUM_UNAVAILABLE = "N/A"


def dump_filename(environment: str) -> str:
    return f"{environment}.dump"


def metadata_filename(environment: str) -> str:
    return f"{environment}.meta.json"


class BackupStatus(str, Enum):
    """Lifecycle of a backup operation."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ArtifactMetadata(BaseModel):
    """Write-once record stored next to a completed dump."""

    created_at: datetime
    environment: str
    host: str
    database: str
    artifact_path: Path
    size_bytes: int
    sha256: str
    md5: str = LEGACY_CHECKSUM_UNAVAILABLE  # legacy checksum, "N/A" when unavailable
    log_file: Path | None = None

    def format_lines(self) -> list[str]:
        """Human-readable ``Key: value`` lines."""
        return [
            f"Backup date: {self.created_at.isoformat(sep=' ', timespec='seconds')}",
            f"Environment: {self.environment}",
            f"Database: {self.database}",
            f"Host: {self.host}",
            f"Backup file: {self.artifact_path}",
            f"File size: {self.size_bytes} bytes",
            f"SHA256 checksum: {self.sha256}",
            f"MD5 checksum: {self.md5}",
            f"Log file: {self.log_file or '-'}",
        ]


class BackupArtifact(BaseModel):
    """One backup directory found on disk."""

    environment: str
    timestamp: str  # directory name, sorts chronologically
    directory: Path
    dump_path: Path
    metadata_path: Path
    size_bytes: int = 0
    metadata: ArtifactMetadata | None = None

    @property
    def is_valid(self) -> bool:
        """Usable for restore: the dump file exists."""
        return self.dump_path.is_file()

    @property
    def is_verified(self) -> bool:
        """Companion metadata was found and parsed."""
        return self.metadata is not None


class BackupResult(BaseModel):
    """Outcome of ``run_backup()``."""

    status: BackupStatus = BackupStatus.IN_PROGRESS
    environment: str
    artifact: BackupArtifact | None = None
    transfer_path: Path | None = None
    raw_size_bytes: int | None = None
    duration_seconds: float = 0.0


class RestoreResult(BaseModel):
    """Outcome of ``run_restore()``."""

    success: bool = False
    target: str
    artifact: BackupArtifact
    total_units: int | None = None
    completed_units: int = 0
    duration_seconds: float = 0.0
