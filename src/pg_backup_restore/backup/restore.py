"""Restore of a backup artifact with ``pg_restore``.

Flow: connectivity probe on the target, manifest size via
``pg_restore -l`` (the total is unknown if listing fails), typed
confirmation of the target database name unless the policy skips it,
then a supervised ``pg_restore --clean --verbose`` whose diagnostic
stream is scraped for work units.

Source and target are decoupled: a backup of ``prod`` can be restored into
``dev``.

Usage:
    from pg_backup_restore.backup.restore import restore_environment
    from pg_backup_restore.safety import RestorePolicy

    result = await restore_environment(ctx, source="prod", policy=RestorePolicy.LATEST)
"""

import os
import tempfile
import time
from pathlib import Path

from pg_backup_restore.backup.catalog import ArtifactCatalog
from pg_backup_restore.backup.models import BackupArtifact, RestoreResult
from pg_backup_restore.backup.process import capture, connection_args, spawn, supervise
from pg_backup_restore.backup.progress import (
    RestoreLogProgress,
    format_clock,
    format_restore_line,
    sample_restore,
)
from pg_backup_restore.errors import ToolExecutionError
from pg_backup_restore.factory import OperationContext, check_connectivity
from pg_backup_restore.safety import RestorePolicy, confirm_database_name, policy_for


def count_manifest_entries(listing: str) -> int:
    """Entries in ``pg_restore -l`` output (non-empty, non-``;`` lines)."""
    return sum(
        1
        for line in listing.splitlines()
        if line.strip() and not line.lstrip().startswith(";")
    )


async def estimate_total_units(ctx: OperationContext, dump_path: Path) -> int | None:
    """Number of work units in ``dump_path``, ``None`` if listing fails."""
    try:
        returncode, stdout, stderr = await capture(
            [ctx.settings.pg_restore, "-l", str(dump_path)], ctx.environment
        )
    except ToolExecutionError as e:
        ctx.logger.warning(f"Could not list dump contents: {e}")
        return None

    if returncode != 0:
        ctx.logger.warning(
            f"pg_restore -l exited with code {returncode}; total units unknown. "
            f"{stderr.strip()}"
        )
        return None

    total = count_manifest_entries(stdout)
    ctx.logger.info(f"Dump contains {total} entries")
    return total or None


async def run_restore(
    ctx: OperationContext,
    artifact: BackupArtifact,
    policy: RestorePolicy = RestorePolicy.INTERACTIVE,
    no_progress: bool = False,
    show_lines: bool | None = None,
) -> RestoreResult:
    """Restore ``artifact`` into the context environment.

    Args:
        ctx: Operation context; ``ctx.environment`` is the target.
        artifact: Artifact to restore (any environment's).
        policy: Whether the typed database-name check is required.
        no_progress: Wait silently instead of reporting progress.
        show_lines: Echo diagnostic lines as they arrive
            (defaults to ``settings.show_lines``).

    Returns:
        ``RestoreResult`` with ``success=True``.

    Raises:
        ConnectivityError: If the target probe fails.
        ConfirmationError: If the typed name does not match (nothing spawned).
        OperationTimeoutError: If ``restore_timeout`` elapses.
        ToolExecutionError: If ``pg_restore`` exits non-zero.
    """
    env = ctx.environment
    settings = ctx.settings
    if show_lines is None:
        show_lines = settings.show_lines

    await check_connectivity(ctx)
    total = await estimate_total_units(ctx, artifact.dump_path)

    if policy.requires_name_confirmation:
        ctx.reporter.message(
            f"WARNING: this will overwrite database '{env.database}' on {env.host}:{env.port} "
            f"with {artifact.environment}/{artifact.timestamp}."
        )
        confirm_database_name(ctx.confirmer, env)
    else:
        ctx.logger.info(f"Restore confirmation skipped by policy '{policy.value}'")

    ctx.logger.info(
        f"Restoring {artifact.dump_path} into '{env.name}' ({env.database}@{env.host})"
    )
    ctx.reporter.message(
        f"Restoring {artifact.environment}/{artifact.timestamp} into '{env.name}'..."
    )

    argv = [
        settings.pg_restore,
        *connection_args(env),
        "--clean",
        "--verbose",
        "-F",
        "c",
        str(artifact.dump_path),
    ]

    fd, scratch = tempfile.mkstemp(prefix="pg_restore-", suffix=".log")
    os.close(fd)
    scratch_path = Path(scratch)

    source = RestoreLogProgress(scratch_path, total)
    started = time.monotonic()
    state = {"completed": 0, "reported_at": 0.0}

    def on_tick(elapsed: float) -> None:
        sample = sample_restore(
            source,
            state["completed"],
            elapsed,
            warmup=settings.restore_warmup,
            ceiling=settings.eta_ceiling,
        )
        state["completed"] = sample.completed
        if show_lines:
            for line in source.drain_lines():
                ctx.reporter.message(line)
        if elapsed - state["reported_at"] >= settings.progress_interval:
            state["reported_at"] = elapsed
            line = format_restore_line(sample)
            ctx.logger.info(line)
            ctx.reporter.progress(line)

    try:
        process = await spawn(argv, env, scratch_path, merge_stdout=True)
        try:
            returncode = await supervise(
                process,
                interval=settings.restore_poll_interval,
                on_tick=None if no_progress else on_tick,
                timeout=settings.restore_timeout,
                cancel_event=ctx.cancel_event,
                tool="pg_restore",
            )
        finally:
            ctx.reporter.done()

        completed, _ = source.sample()
        if show_lines and not no_progress:
            for line in source.drain_lines():
                ctx.reporter.message(line)

        if returncode != 0:
            tail = source.tail()
            ctx.logger.error(f"pg_restore failed with exit code {returncode}")
            for line in tail:
                ctx.logger.error(f"pg_restore: {line}")
            raise ToolExecutionError(
                f"Restore into '{env.name}' failed: pg_restore exited with code {returncode}",
                tool="pg_restore",
                returncode=returncode,
                tail=tail,
            )
    finally:
        scratch_path.unlink(missing_ok=True)

    duration = time.monotonic() - started
    summary = f"{completed}/{total}" if total else str(completed)
    ctx.logger.info(
        f"Restore into '{env.name}' completed: {summary} items in {format_clock(duration)}"
    )
    ctx.reporter.message(f"Restore completed in {format_clock(duration)} ({summary} items)")

    return RestoreResult(
        success=True,
        target=env.name,
        artifact=artifact,
        total_units=total,
        completed_units=completed,
        duration_seconds=duration,
    )


async def restore_environment(
    ctx: OperationContext,
    source: str | None = None,
    latest: bool = False,
    policy: RestorePolicy | None = None,
    no_progress: bool = False,
    show_lines: bool | None = None,
) -> RestoreResult:
    """Select an artifact of ``source`` and restore it into the context environment.

    Args:
        ctx: Operation context; ``ctx.environment`` is the target.
        source: Environment whose backups are used (defaults to the target).
        latest: Take the newest artifact without asking.
        policy: Explicit policy; derived from ``latest`` and settings if omitted.
        no_progress: Wait silently instead of reporting progress.
        show_lines: Echo diagnostic lines as they arrive.

    Raises:
        ArtifactError: If ``source`` has no valid artifact (before any prompt).
    """
    if policy is None:
        policy = policy_for(latest, assume_yes=False, settings=ctx.settings)
    source_name = source or ctx.environment.name
    if source_name != ctx.environment.name:
        ctx.logger.info(f"Cross-environment restore: {source_name} -> {ctx.environment.name}")

    catalog = ArtifactCatalog(ctx.settings)
    artifact = catalog.select(
        source_name, ctx.confirmer, use_latest=policy.uses_latest, reporter=ctx.reporter
    )
    return await run_restore(
        ctx, artifact, policy, no_progress=no_progress, show_lines=show_lines
    )
