"""Progress estimation for opaque external processes.

Neither ``pg_dump`` nor ``pg_restore`` reports progress, so it is inferred:

- ``DumpFileProgress``: bytes written to the growing dump file, against
  the raw database size queried up front.
- ``RestoreLogProgress``: ``pg_restore --verbose`` diagnostic lines that
  announce a work unit, against the entry count of ``pg_restore -l``.

Both implement ``ProgressSource.sample() -> (completed, total)``; the ETA
math lives in pure functions so it can be tested without processes.
"""

import re
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

ETA_UNAVAILABLE = "-"

RESTORE_UNIT_PATTERN = re.compile(r"^pg_restore: (creating|processing|restoring|setting)")
RESTORE_ANY_PATTERN = re.compile(r"^pg_restore:")


@dataclass(frozen=True)
class ProgressSample:
    """One observation of a supervised operation.

    Attributes:
        elapsed: Seconds since the child was spawned.
        completed: Bytes written (backup) or work units done (restore).
        total: Expected bytes/units, ``None`` when unknown.
        delta: Change of ``completed`` since the previous sample.
        rate: Average throughput (``completed / elapsed``), 0 when not yet
            meaningful.
        eta: Seconds remaining, ``None`` when unavailable.
    """

    elapsed: float
    completed: int
    total: int | None
    delta: int = 0
    rate: float = 0.0
    eta: float | None = None


class ProgressSource(Protocol):
    """Anything that can report ``(completed, total)`` on demand."""

    def sample(self) -> tuple[int, int | None]:
        ...


# ============================================================================
# Sources
# ============================================================================


class DumpFileProgress:
    """Byte count of a dump file that is still being written.

    A missing file counts as zero bytes ("awaiting dump creation").
    """

    def __init__(self, dump_path: Path, raw_size: int | None) -> None:
        self.dump_path = dump_path
        self.raw_size = raw_size

    def sample(self) -> tuple[int, int | None]:
        try:
            size = self.dump_path.stat().st_size
        except FileNotFoundError:
            size = 0
        return size, self.raw_size


class RestoreLogProgress:
    """Work-unit count scraped from ``pg_restore --verbose`` output.

    Reads the scratch log incrementally: each ``sample()`` consumes only
    the complete lines appended since the previous call.  When the total
    is known only unit-announcing lines count; otherwise every
    ``pg_restore:`` line does.

    Args:
        log_path: Scratch file receiving the child's diagnostic stream.
        total: Manifest entry count, ``None`` when listing failed.
        tail_size: Number of recent lines kept for failure triage.
    """

    def __init__(self, log_path: Path, total: int | None, tail_size: int = 20) -> None:
        self.log_path = log_path
        self.total = total
        self._pattern = RESTORE_UNIT_PATTERN if total else RESTORE_ANY_PATTERN
        self._offset = 0
        self._partial = ""
        self._completed = 0
        self._pending: list[str] = []
        self._tail: deque[str] = deque(maxlen=tail_size)

    def _consume(self) -> None:
        try:
            with open(self.log_path, "rb") as f:
                f.seek(self._offset)
                chunk = f.read()
        except FileNotFoundError:
            return
        if not chunk:
            return
        self._offset += len(chunk)

        text = self._partial + chunk.decode("utf-8", errors="replace")
        lines = text.split("\n")
        self._partial = lines.pop()  # incomplete last line, finished next read
        for line in lines:
            line = line.rstrip("\r")
            self._pending.append(line)
            self._tail.append(line)
            if self._pattern.match(line):
                self._completed += 1

    def sample(self) -> tuple[int, int | None]:
        self._consume()
        return self._completed, self.total

    def drain_lines(self) -> list[str]:
        """Lines read since the last drain (for live echo)."""
        lines, self._pending = self._pending, []
        return lines

    def tail(self) -> list[str]:
        """Most recent lines, including a trailing unterminated one."""
        self._consume()
        lines = list(self._tail)
        if self._partial:
            lines.append(self._partial)
        return lines[-(self._tail.maxlen or len(lines)):]


# ============================================================================
# ETA math
# ============================================================================


def backup_eta(current_size: int, raw_size: int | None, elapsed: float) -> float | None:
    """Seconds left for a dump, from average throughput.

    Unavailable (``None``) when the raw size is unknown, nothing has been
    written yet, no time has passed, or the dump already exceeds the raw
    size (custom format compresses, so the estimate is an upper bound).
    """
    if not raw_size or raw_size <= 0 or current_size <= 0 or elapsed <= 0:
        return None
    average = current_size / elapsed
    if average <= 0 or current_size >= raw_size:
        return None
    return (raw_size - current_size) / average


def restore_rate(completed: int, elapsed: float, warmup: float) -> float:
    """Units per second, 0 until ``warmup`` seconds have passed."""
    if elapsed <= warmup or completed <= 0:
        return 0.0
    return completed / elapsed


def restore_eta(
    completed: int,
    total: int | None,
    rate: float,
    ceiling: float,
) -> float | None:
    """Seconds left for a restore.

    Unavailable when the total is unknown, the rate is zero, the count has
    reached the total, or the estimate is at or above ``ceiling`` (treated
    as numerically unstable).
    """
    if not total or rate <= 0 or completed >= total:
        return None
    eta = (total - completed) / rate
    if eta < 0 or eta >= ceiling:
        return None
    return eta


def sample_backup(
    source: ProgressSource, previous_size: int, elapsed: float
) -> ProgressSample:
    """Take a dump-file sample and derive delta, rate and ETA."""
    size, raw_size = source.sample()
    rate = size / elapsed if elapsed > 0 else 0.0
    return ProgressSample(
        elapsed=elapsed,
        completed=size,
        total=raw_size,
        delta=size - previous_size,
        rate=rate,
        eta=backup_eta(size, raw_size, elapsed),
    )


def sample_restore(
    source: ProgressSource,
    previous_completed: int,
    elapsed: float,
    warmup: float,
    ceiling: float,
) -> ProgressSample:
    """Take a restore-log sample and derive rate and ETA."""
    completed, total = source.sample()
    rate = restore_rate(completed, elapsed, warmup)
    return ProgressSample(
        elapsed=elapsed,
        completed=completed,
        total=total,
        delta=completed - previous_completed,
        rate=rate,
        eta=restore_eta(completed, total, rate, ceiling),
    )


# ============================================================================
# Formatting
# ============================================================================


def format_clock(seconds: float) -> str:
    """``MM:SS``, or ``HH:MM:SS`` from one hour up."""
    seconds = max(int(seconds), 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_eta(eta: float | None) -> str:
    return ETA_UNAVAILABLE if eta is None else format_clock(eta)


def format_backup_line(sample: ProgressSample) -> str:
    """Status line for a running dump."""
    elapsed = format_clock(sample.elapsed)
    if sample.completed <= 0:
        return f"Elapsed {elapsed} | awaiting dump creation... | ETA {ETA_UNAVAILABLE}"
    return (
        f"Elapsed {elapsed} | Size {sample.completed / 1024 / 1024:.2f} MB"
        f" | +{sample.delta / 1024:.1f} KB"
        f" | avg {sample.rate / 1024:.1f} KB/s"
        f" | ETA {format_eta(sample.eta)}"
    )


def format_restore_line(sample: ProgressSample) -> str:
    """Status line for a running restore."""
    total = str(sample.total) if sample.total else "?"
    return (
        f"[{format_clock(sample.elapsed)}] Processed {sample.completed}/{total} items"
        f" | Speed {sample.rate:.1f}/s | ETA {format_eta(sample.eta)}"
    )
