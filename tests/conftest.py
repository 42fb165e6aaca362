"""Shared fixtures and fakes for the pg-backup-restore test suite.

External processes are replaced by ``FakeProcess`` objects and the
database by ``AsyncMock`` adapters; operator input comes from
``ScriptedConfirmer``.
"""

import asyncio
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from pg_backup_restore.backup.models import (
    ArtifactMetadata,
    dump_filename,
    metadata_filename,
)
from pg_backup_restore.config.models import Environment, GlobalSettings
from pg_backup_restore.factory import OperationContext

OVERRIDE_VARIABLES = (
    "BACKUP_ROOT",
    "LOG_FILE",
    "ENV_DIR",
    "CONFIG_FILE_PATH",
    "GLOBAL_CONFIG_FILE",
)


# ------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------


class RecordingReporter:
    """Reporter that keeps every line it receives."""

    def __init__(self) -> None:
        self.messages: list[str] = []
        self.progress_lines: list[str] = []
        self.done_calls = 0

    def message(self, text: str) -> None:
        self.messages.append(text)

    def progress(self, text: str) -> None:
        self.progress_lines.append(text)

    def done(self) -> None:
        self.done_calls += 1


class ScriptedConfirmer:
    """Confirmer answering from canned lists; records every prompt."""

    def __init__(
        self,
        confirms: list[bool] | None = None,
        answers: list[str] | None = None,
        choices: list[int] | None = None,
    ) -> None:
        self.confirms = list(confirms or [])
        self.answers = list(answers or [])
        self.choices = list(choices or [])
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.confirms.pop(0)

    def ask(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.answers.pop(0)

    def choose(self, prompt: str, options) -> int:
        self.prompts.append(prompt)
        return self.choices.pop(0)


class FakeProcess:
    """Stand-in for ``asyncio.subprocess.Process``.

    ``wait()`` blocks for ``ticks`` calls (so ``asyncio.wait_for`` times out
    and the supervisor ticks), then returns ``returncode``.  With
    ``hang=True`` it never exits on its own.  ``on_wait`` runs on every
    ``wait()`` call, e.g. to grow a dump file.
    """

    def __init__(
        self,
        returncode: int = 0,
        ticks: int = 0,
        hang: bool = False,
        stubborn: bool = False,
        on_wait: Callable[["FakeProcess"], None] | None = None,
    ) -> None:
        self.pid = 4242
        self.returncode: int | None = None
        self.final_returncode = returncode
        self.remaining_ticks = ticks
        self.hang = hang
        self.stubborn = stubborn
        self.on_wait = on_wait
        self.wait_calls = 0
        self.terminated = False
        self.killed = False

    async def wait(self) -> int:
        if self.returncode is not None:
            return self.returncode
        self.wait_calls += 1
        if self.on_wait is not None:
            self.on_wait(self)
        if not self.hang and self.remaining_ticks <= 0:
            self.returncode = self.final_returncode
            return self.returncode
        self.remaining_ticks -= 1
        await asyncio.sleep(3600)
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if not self.stubborn:
            self.returncode = -15

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9


def fake_spawn(
    process: FakeProcess,
    write: Callable[[list[str], Path], None] | None = None,
) -> AsyncMock:
    """AsyncMock for ``spawn()`` that optionally writes files, then returns ``process``."""

    async def _spawn(argv, environment, log_path, merge_stdout=False):
        if write is not None:
            write(list(argv), Path(log_path))
        return process

    return AsyncMock(side_effect=_spawn)


def write_dump(content: bytes = b"PGDMP" + b"\x00" * 2043) -> Callable[[list[str], Path], None]:
    """``fake_spawn`` writer that creates the dump file named after ``-f``."""

    def _write(argv: list[str], log_path: Path) -> None:
        Path(argv[argv.index("-f") + 1]).write_bytes(content)

    return _write


def make_environment(
    name: str = "dev",
    database: str = "myapp_dev",
    host: str = "db.internal",
) -> Environment:
    return Environment(
        name=name,
        host=host,
        port=5432,
        database=database,
        username="app",
        password="s3cret",
    )


def make_artifact(
    settings: GlobalSettings,
    environment: str,
    timestamp: str,
    content: bytes = b"PGDMP",
    with_metadata: bool = True,
) -> Path:
    """Create ``<backup_root>/<env>/<timestamp>/`` with a dump (and metadata)."""
    directory = settings.environment_dir(environment) / timestamp
    directory.mkdir(parents=True)
    dump_path = directory / dump_filename(environment)
    dump_path.write_bytes(content)
    if with_metadata:
        metadata = ArtifactMetadata(
            created_at="2026-01-15T02:30:00",
            environment=environment,
            host="db.internal",
            database=f"myapp_{environment}",
            artifact_path=dump_path,
            size_bytes=len(content),
            sha256="ab" * 32,
        )
        (directory / metadata_filename(environment)).write_text(metadata.model_dump_json())
    return directory


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_override_variables(monkeypatch):
    """Keep the developer's shell from leaking into settings resolution."""
    for name in OVERRIDE_VARIABLES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path) -> GlobalSettings:
    """Settings rooted in ``tmp_path`` with fast polling."""
    return GlobalSettings(
        project_root=tmp_path,
        backup_root=tmp_path / "backups",
        log_file=tmp_path / "backup.log",
        env_dir=tmp_path / "environments",
        transfer_file=tmp_path / "transfer.dump",
        backup_poll_interval=0.01,
        restore_poll_interval=0.01,
        progress_interval=0.0,
        restore_warmup=0.0,
    )


@pytest.fixture
def adapter() -> AsyncMock:
    """Database client mock: connectivity OK, 10 MB raw size."""
    client = AsyncMock()
    client.test_connection.return_value = True
    client.scalar.return_value = 10 * 1024 * 1024
    return client


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def make_context(settings, adapter, reporter):
    """Factory for an ``OperationContext`` wired to the test doubles."""

    def _make(
        environment: Environment | None = None,
        confirmer: ScriptedConfirmer | None = None,
        **kwargs,
    ) -> OperationContext:
        return OperationContext(
            environment=environment or make_environment(),
            settings=kwargs.pop("settings", settings),
            confirmer=confirmer or ScriptedConfirmer(),
            reporter=reporter,
            adapter_factory=lambda env: adapter,
            **kwargs,
        )

    return _make
