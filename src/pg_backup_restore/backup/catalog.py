"""Enumeration and selection of historical backup artifacts.

Usage:
    from pg_backup_restore.backup.catalog import ArtifactCatalog

    catalog = ArtifactCatalog(settings)
    artifact = catalog.latest("prod")
    for line in catalog.describe(artifact):
        print(line)
"""

import logging
from pathlib import Path

from pydantic import ValidationError

from pg_backup_restore.backup.models import (
    ArtifactMetadata,
    BackupArtifact,
    dump_filename,
    metadata_filename,
)
from pg_backup_restore.config.models import GlobalSettings
from pg_backup_restore.errors import ArtifactError
from pg_backup_restore.reporting import NullReporter, Reporter
from pg_backup_restore.safety import Confirmer

logger = logging.getLogger(__name__)

UNVERIFIED_MARKER = "Metadata not found; backup is unverified."


def read_metadata(path: Path) -> ArtifactMetadata | None:
    """Parse a metadata record, ``None`` if absent or unreadable."""
    try:
        return ArtifactMetadata.model_validate_json(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable metadata {path}: {e}")
        return None


class ArtifactCatalog:
    """Read-only view over ``<backup_root>/<environment>/<timestamp>/``."""

    def __init__(self, settings: GlobalSettings) -> None:
        self.settings = settings

    def _load(self, environment: str, directory: Path) -> BackupArtifact:
        dump_path = directory / dump_filename(environment)
        metadata_path = directory / metadata_filename(environment)
        try:
            size = dump_path.stat().st_size
        except OSError:
            size = 0
        return BackupArtifact(
            environment=environment,
            timestamp=directory.name,
            directory=directory,
            dump_path=dump_path,
            metadata_path=metadata_path,
            size_bytes=size,
            metadata=read_metadata(metadata_path),
        )

    def list_artifacts(self, environment: str) -> list[BackupArtifact]:
        """Valid artifacts of ``environment``, newest first.

        Directories without the dump file are skipped; a missing
        environment directory yields an empty list.
        """
        root = self.settings.environment_dir(environment)
        if not root.is_dir():
            return []

        artifacts = []
        for directory in sorted((p for p in root.iterdir() if p.is_dir()), reverse=True):
            if not (directory / dump_filename(environment)).is_file():
                logger.debug(f"Skipping {directory}: no {dump_filename(environment)}")
                continue
            artifacts.append(self._load(environment, directory))
        return artifacts

    def latest(self, environment: str) -> BackupArtifact:
        """Newest valid artifact (greatest timestamp directory name).

        Raises:
            ArtifactError: If ``environment`` has no valid artifact.
        """
        artifacts = self.list_artifacts(environment)
        if not artifacts:
            root = self.settings.environment_dir(environment)
            raise ArtifactError(f"No backups found for '{environment}' in {root}")
        return artifacts[0]

    def describe(self, artifact: BackupArtifact) -> list[str]:
        """Display lines for an artifact, with an unverified marker if needed."""
        lines = [f"Backup: {artifact.environment}/{artifact.timestamp}"]
        if artifact.metadata is not None:
            lines.extend(artifact.metadata.format_lines())
        else:
            lines.append(f"Backup file: {artifact.dump_path}")
            lines.append(f"File size: {artifact.size_bytes} bytes")
            lines.append(UNVERIFIED_MARKER)
        return lines

    def select(
        self,
        environment: str,
        confirmer: Confirmer,
        use_latest: bool = False,
        reporter: Reporter | None = None,
    ) -> BackupArtifact:
        """Pick the artifact to restore.

        With ``use_latest`` the newest artifact is returned without asking.
        Otherwise the newest one is shown and the operator either accepts it
        or picks from the full newest-first list.  The chosen artifact's
        metadata is always shown.

        Raises:
            ArtifactError: If ``environment`` has no valid artifact.
        """
        reporter = reporter or NullReporter()
        artifact = self.latest(environment)

        if not use_latest:
            for line in self.describe(artifact):
                reporter.message(line)
            if not confirmer.confirm(f"Use latest backup of '{environment}' ({artifact.timestamp})?"):
                artifacts = self.list_artifacts(environment)
                options = [
                    f"{a.timestamp}" + ("" if a.is_verified else " (unverified)")
                    for a in artifacts
                ]
                index = confirmer.choose("Select backup number", options)
                artifact = artifacts[index]

        logger.info(f"Selected backup {artifact.dump_path}")
        reporter.message("Selected backup:")
        for line in self.describe(artifact):
            reporter.message(f"  {line}")
        return artifact
