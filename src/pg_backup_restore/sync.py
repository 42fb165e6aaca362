"""Backup one environment and restore it into another.

A sync is a fresh ``run_backup()`` of the source followed, only if the
backup succeeded, by an unattended restore of the source's newest artifact
into the target.  The operator confirms once, up front.

Usage:
    from pg_backup_restore.sync import run_sync

    source_ctx = build_context("prod", settings)
    target = load_environment("dev", settings)
    result = await run_sync(source_ctx, target)
"""

import logging
import time

from pydantic import BaseModel

from pg_backup_restore.backup.catalog import ArtifactCatalog
from pg_backup_restore.backup.dump import run_backup
from pg_backup_restore.backup.models import BackupResult, RestoreResult
from pg_backup_restore.backup.restore import run_restore
from pg_backup_restore.config.models import Environment
from pg_backup_restore.errors import ConfigurationError
from pg_backup_restore.factory import OperationContext
from pg_backup_restore.safety import RestorePolicy, affirm

logger = logging.getLogger(__name__)


class SyncResult(BaseModel):
    """Result of a backup-then-restore sync.

    Attributes:
        success: Whether both phases completed.
        source: Source environment name.
        target: Target environment name.
        backup: Result of the source backup.
        restore: Result of the target restore.
        duration_seconds: Wall-clock time for both phases.
    """

    success: bool = False
    source: str
    target: str
    backup: BackupResult | None = None
    restore: RestoreResult | None = None
    duration_seconds: float = 0.0


async def run_sync(
    ctx: OperationContext,
    target: Environment,
    assume_yes: bool = False,
) -> SyncResult:
    """Back up ``ctx.environment`` and restore it into ``target``.

    Args:
        ctx: Operation context for the source environment.
        target: Environment to overwrite.
        assume_yes: Skip the up-front confirmation.

    Raises:
        ConfigurationError: If source and target are the same environment.
        ConfirmationError: If the operator declines.
        BackupToolError: Any backup failure (the restore never starts) or
            restore failure.
    """
    source = ctx.environment
    if source.name == target.name:
        raise ConfigurationError(
            f"Source and target must differ (both are '{source.name}')"
        )

    if not assume_yes:
        affirm(
            ctx.confirmer,
            f"Backup '{source.name}' ({source.database}@{source.host}) then overwrite "
            f"'{target.name}' ({target.database}@{target.host})?",
        )

    started = time.monotonic()
    ctx.logger.info(f"Sync started: {source.name} -> {target.name}")
    result = SyncResult(source=source.name, target=target.name)

    result.backup = await run_backup(ctx)

    artifact = ArtifactCatalog(ctx.settings).latest(source.name)
    result.restore = await run_restore(
        ctx.for_environment(target), artifact, RestorePolicy.UNATTENDED
    )

    result.success = True
    result.duration_seconds = time.monotonic() - started
    ctx.logger.info(f"Sync completed: {source.name} -> {target.name}")
    return result
