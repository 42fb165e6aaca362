"""Spawning and supervision of the external PostgreSQL tools.

``supervise()`` is a cooperative tick loop: every ``interval`` seconds it
either sees the child exit or calls ``on_tick(elapsed)``.  A wall-clock
ceiling and an optional ``asyncio.Event`` end the loop early; whatever the
reason for leaving (including ``CancelledError`` from Ctrl-C), a child that
is still alive is terminated, then killed after a grace period.

Usage:
    process = await spawn(["pg_restore", ...], env, log_path, merge_stdout=True)
    returncode = await supervise(process, interval=5, on_tick=report, timeout=7200)
"""

import asyncio
import logging
import os
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from pg_backup_restore.config.models import Environment
from pg_backup_restore.errors import (
    OperationCancelledError,
    OperationTimeoutError,
    ToolExecutionError,
)

logger = logging.getLogger(__name__)

TERMINATE_GRACE_SECONDS = 5.0
TAIL_LINES = 20


def child_environment(environment: Environment) -> dict[str, str]:
    """Process environment for a tool acting on ``environment``.

    The credential travels only through ``PGPASSWORD`` here, never on the
    command line.
    """
    child_env = dict(os.environ)
    child_env["PGPASSWORD"] = environment.password.get_secret_value()
    return child_env


def connection_args(environment: Environment) -> list[str]:
    """``-h -U -d -p`` arguments shared by ``pg_dump`` and ``pg_restore``."""
    return [
        "-h", environment.host,
        "-U", environment.username,
        "-d", environment.database,
        "-p", str(environment.port),
    ]


async def spawn(
    argv: Sequence[str],
    environment: Environment,
    log_path: Path,
    merge_stdout: bool = False,
) -> asyncio.subprocess.Process:
    """Start ``argv`` with its diagnostic stream appended to ``log_path``.

    Args:
        argv: Command and arguments (no shell involved).
        environment: Supplies the credential for the child.
        log_path: Scratch file for stderr (and stdout when ``merge_stdout``).
        merge_stdout: Capture stdout in the same file instead of discarding it.

    Raises:
        ToolExecutionError: If the executable cannot be started.
    """
    logger.debug(f"Spawning: {' '.join(argv)}")
    with open(log_path, "ab") as log_file:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=log_file if merge_stdout else asyncio.subprocess.DEVNULL,
                stderr=log_file,
                env=child_environment(environment),
            )
        except OSError as e:
            raise ToolExecutionError(
                f"Could not start {argv[0]}: {e}", tool=argv[0]
            ) from e


async def capture(argv: Sequence[str], environment: Environment) -> tuple[int, str, str]:
    """Run a short command to completion; returns ``(returncode, stdout, stderr)``.

    Raises:
        ToolExecutionError: If the executable cannot be started.
    """
    logger.debug(f"Running: {' '.join(argv)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=child_environment(environment),
        )
    except OSError as e:
        raise ToolExecutionError(f"Could not start {argv[0]}: {e}", tool=argv[0]) from e
    stdout, stderr = await process.communicate()
    return (
        process.returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


async def terminate(process: asyncio.subprocess.Process, grace: float = TERMINATE_GRACE_SECONDS) -> None:
    """Send SIGTERM, then SIGKILL if the child outlives ``grace`` seconds."""
    if process.returncode is not None:
        return
    logger.warning(f"Terminating child process {process.pid}")
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace)
    except asyncio.TimeoutError:
        logger.warning(f"Child process {process.pid} ignored SIGTERM; killing")
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


async def supervise(
    process: asyncio.subprocess.Process,
    *,
    interval: float,
    on_tick: Callable[[float], None] | None = None,
    timeout: float | None = None,
    cancel_event: asyncio.Event | None = None,
    tool: str = "process",
    clock: Callable[[], float] = time.monotonic,
    grace: float = TERMINATE_GRACE_SECONDS,
) -> int:
    """Wait for ``process``, ticking every ``interval`` seconds.

    Args:
        process: Running child.
        interval: Seconds between ticks; the wait returns early on exit.
        on_tick: Called with the elapsed seconds after each tick.
        timeout: Wall-clock ceiling in seconds, ``None`` for no ceiling.
        cancel_event: Checked every tick; when set the child is stopped.
        tool: Tool name used in error messages.
        clock: Monotonic time source.
        grace: Seconds between SIGTERM and SIGKILL.

    Returns:
        The child's exit code.

    Raises:
        OperationTimeoutError: If ``timeout`` elapsed first.
        OperationCancelledError: If ``cancel_event`` was set.
    """
    started = clock()
    try:
        while True:
            try:
                return await asyncio.wait_for(process.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

            elapsed = clock() - started
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(
                    f"{tool} cancelled after {elapsed:.0f}s"
                )
            if timeout is not None and elapsed >= timeout:
                logger.error(f"{tool} exceeded the {timeout:.0f}s limit")
                raise OperationTimeoutError(
                    f"{tool} did not finish within {timeout:.0f}s and was terminated"
                )
            if on_tick is not None:
                on_tick(elapsed)
    finally:
        if process.returncode is None:
            await terminate(process, grace=grace)


def read_tail(path: Path, lines: int = TAIL_LINES) -> list[str]:
    """Last ``lines`` lines of a diagnostic file (empty if unreadable)."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return []
    return text.splitlines()[-lines:]
