"""Backup of one environment with ``pg_dump`` (custom format).

Flow: connectivity probe, raw size query (non-fatal), timestamped artifact
directory, supervised ``pg_dump`` with a byte-count progress line every
``backup_poll_interval`` seconds, then convenience copy, checksums and a
write-once metadata record.

A failed dump is renamed ``<env>.dump.failed`` so the catalog never treats
it as an artifact, and no metadata is written for it.

Usage:
    from pg_backup_restore.backup.dump import run_backup

    result = await run_backup(ctx)
    print(result.artifact.dump_path)
"""

import hashlib
import os
import shutil
import tempfile
import time
from datetime import datetime
from pathlib import Path

from pg_backup_restore.backup.models import (
    LEGACY_CHECKSUM_UNAVAILABLE,
    ArtifactMetadata,
    BackupArtifact,
    BackupResult,
    BackupStatus,
    dump_filename,
    metadata_filename,
)
from pg_backup_restore.backup.process import connection_args, read_tail, spawn, supervise
from pg_backup_restore.backup.progress import (
    DumpFileProgress,
    format_backup_line,
    format_clock,
    sample_backup,
)
from pg_backup_restore.errors import ArtifactError, ToolExecutionError
from pg_backup_restore.factory import OperationContext, check_connectivity, fetch_raw_size

FAILED_SUFFIX = ".failed"
CHUNK_SIZE = 1024 * 1024


def compute_checksums(path: Path) -> tuple[str, str]:
    """SHA-256 and legacy MD5 hex digests of ``path``.

    MD5 is reported as ``"N/A"`` where the platform refuses it (FIPS).
    """
    sha256 = hashlib.sha256()
    try:
        md5 = hashlib.md5(usedforsecurity=False)
    except ValueError:
        md5 = None

    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256.update(chunk)
            if md5 is not None:
                md5.update(chunk)

    return sha256.hexdigest(), md5.hexdigest() if md5 is not None else LEGACY_CHECKSUM_UNAVAILABLE


def write_metadata(metadata: ArtifactMetadata, path: Path) -> None:
    """Write the metadata record; an existing record is never replaced.

    Raises:
        ArtifactError: If ``path`` already exists.
    """
    try:
        with open(path, "x", encoding="utf-8") as f:
            f.write(metadata.model_dump_json(indent=2))
    except FileExistsError as e:
        raise ArtifactError(f"Metadata already exists, refusing to overwrite: {path}") from e


def _mark_failed(ctx: OperationContext, dump_path: Path) -> None:
    if not dump_path.exists():
        return
    failed = dump_path.with_name(dump_path.name + FAILED_SUFFIX)
    try:
        dump_path.replace(failed)
        ctx.logger.warning(f"Incomplete dump kept as {failed}")
    except OSError as e:
        ctx.logger.warning(f"Could not rename incomplete dump {dump_path}: {e}")


def _copy_transfer(ctx: OperationContext, dump_path: Path) -> Path | None:
    transfer = ctx.settings.transfer_file
    try:
        transfer.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(dump_path, transfer)
    except OSError as e:
        ctx.logger.warning(f"Convenience copy to {transfer} failed: {e}")
        return None
    ctx.logger.info(f"Copy created: {transfer}")
    return transfer


async def run_backup(ctx: OperationContext) -> BackupResult:
    """Dump the context environment into a new timestamped artifact.

    Args:
        ctx: Operation context; ``ctx.environment`` is the source database.

    Returns:
        ``BackupResult`` with status ``completed`` and the new artifact.

    Raises:
        ConnectivityError: If the probe fails (``pg_dump`` never starts).
        ToolExecutionError: If ``pg_dump`` cannot start or exits non-zero.
        OperationCancelledError: If the cancel event is set mid-dump.
        ArtifactError: If the timestamp directory or its metadata record
            already exists.
    """
    env = ctx.environment
    settings = ctx.settings
    started = time.monotonic()

    await check_connectivity(ctx)
    raw_size = await fetch_raw_size(ctx)

    timestamp = datetime.now().strftime(settings.timestamp_format)
    directory = settings.environment_dir(env.name) / timestamp
    directory.parent.mkdir(parents=True, exist_ok=True)
    try:
        directory.mkdir()
    except FileExistsError as e:
        raise ArtifactError(
            f"Backup directory already exists, refusing to reuse it: {directory}\n"
            f"Wait for the next timestamp ({settings.timestamp_format}) and retry."
        ) from e
    dump_path = directory / dump_filename(env.name)

    ctx.logger.info(f"Starting backup of '{env.name}' ({env.database}@{env.host}) to {dump_path}")
    ctx.reporter.message(f"Backing up '{env.name}' to {dump_path}")

    argv = [
        settings.pg_dump,
        *connection_args(env),
        "-Fc",
        "--create",
        "-f",
        str(dump_path),
    ]

    fd, scratch = tempfile.mkstemp(prefix="pg_dump-", suffix=".log")
    os.close(fd)
    scratch_path = Path(scratch)

    source = DumpFileProgress(dump_path, raw_size)
    previous = 0

    def on_tick(elapsed: float) -> None:
        nonlocal previous
        sample = sample_backup(source, previous, elapsed)
        previous = sample.completed
        ctx.reporter.progress(format_backup_line(sample))

    try:
        process = await spawn(argv, env, scratch_path)
        try:
            returncode = await supervise(
                process,
                interval=settings.backup_poll_interval,
                on_tick=on_tick,
                cancel_event=ctx.cancel_event,
                tool="pg_dump",
            )
        except BaseException:
            _mark_failed(ctx, dump_path)
            raise
        finally:
            ctx.reporter.done()

        if returncode != 0:
            tail = read_tail(scratch_path)
            ctx.logger.error(f"pg_dump failed with exit code {returncode}")
            for line in tail:
                ctx.logger.error(f"pg_dump: {line}")
            _mark_failed(ctx, dump_path)
            raise ToolExecutionError(
                f"Backup of '{env.name}' failed: pg_dump exited with code {returncode}",
                tool="pg_dump",
                returncode=returncode,
                tail=tail,
            )
    finally:
        scratch_path.unlink(missing_ok=True)

    if not dump_path.is_file():
        raise ToolExecutionError(
            f"pg_dump exited 0 but {dump_path} was not created", tool="pg_dump", returncode=0
        )

    transfer = _copy_transfer(ctx, dump_path)

    size = dump_path.stat().st_size
    sha256, md5 = compute_checksums(dump_path)
    metadata = ArtifactMetadata(
        created_at=datetime.now(),
        environment=env.name,
        host=env.host,
        database=env.database,
        artifact_path=dump_path,
        size_bytes=size,
        sha256=sha256,
        md5=md5,
        log_file=settings.log_file,
    )
    metadata_path = directory / metadata_filename(env.name)
    write_metadata(metadata, metadata_path)

    duration = time.monotonic() - started
    ctx.logger.info(
        f"Backup of '{env.name}' completed: {dump_path} ({size} bytes) "
        f"in {format_clock(duration)}"
    )
    for line in metadata.format_lines():
        ctx.reporter.message(line)

    artifact = BackupArtifact(
        environment=env.name,
        timestamp=timestamp,
        directory=directory,
        dump_path=dump_path,
        metadata_path=metadata_path,
        size_bytes=size,
        metadata=metadata,
    )
    return BackupResult(
        status=BackupStatus.COMPLETED,
        environment=env.name,
        artifact=artifact,
        transfer_path=transfer,
        raw_size_bytes=raw_size,
        duration_seconds=duration,
    )
