"""Tests for restore: manifest sizing, confirmation, supervision and selection."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from conftest import (
    FakeProcess,
    ScriptedConfirmer,
    fake_spawn,
    make_artifact,
    make_environment,
    write_dump,
)
from pg_backup_restore.backup.catalog import ArtifactCatalog
from pg_backup_restore.backup.dump import run_backup
from pg_backup_restore.backup.restore import (
    count_manifest_entries,
    estimate_total_units,
    restore_environment,
    run_restore,
)
from pg_backup_restore.errors import (
    ArtifactError,
    ConfirmationError,
    ConnectivityError,
    OperationTimeoutError,
    ToolExecutionError,
)
from pg_backup_restore.safety import RestorePolicy

MANIFEST = """;
; Archive created at 2026-01-15 02:30:00 UTC
;     dbname: myapp_prod
;
215; 1259 16386 TABLE public users app
216; 1259 16390 TABLE public orders app
3320; 0 16386 TABLE DATA public users app
3321; 0 16390 TABLE DATA public orders app
"""

RESTORE_OUTPUT = (
    "pg_restore: connecting to database for restore\n"
    "pg_restore: creating TABLE public.users\n"
    "pg_restore: creating TABLE public.orders\n"
    "pg_restore: processing data for table public.users\n"
    "pg_restore: processing data for table public.orders\n"
)


def write_restore_log(text: str = RESTORE_OUTPUT):
    def _write(argv: list[str], log_path: Path) -> None:
        log_path.write_text(text)

    return _write


def capture_mock(returncode: int = 0, stdout: str = MANIFEST, stderr: str = "") -> AsyncMock:
    return AsyncMock(return_value=(returncode, stdout, stderr))


class TestManifest:
    """Verify work-unit totals from pg_restore -l."""

    def test_count_ignores_comments_and_blank_lines(self) -> None:
        """Only non-empty, non-';' lines are entries."""
        assert count_manifest_entries(MANIFEST) == 4

    @pytest.mark.asyncio
    async def test_estimate_total_units(self, make_context, tmp_path) -> None:
        """The listing runs pg_restore -l against the dump."""
        ctx = make_context()
        capture = capture_mock()
        with patch("pg_backup_restore.backup.restore.capture", capture):
            total = await estimate_total_units(ctx, tmp_path / "prod.dump")

        assert total == 4
        assert capture.call_args.args[0] == ["pg_restore", "-l", str(tmp_path / "prod.dump")]

    @pytest.mark.asyncio
    async def test_listing_failure_means_unknown_total(self, make_context, tmp_path) -> None:
        """A failed listing yields None instead of an error."""
        ctx = make_context()
        with patch(
            "pg_backup_restore.backup.restore.capture",
            capture_mock(returncode=1, stdout="", stderr="pg_restore: error: bad archive"),
        ):
            assert await estimate_total_units(ctx, tmp_path / "prod.dump") is None


class TestRunRestore:
    """Verify confirmation, the pg_restore invocation and failure handling."""

    @pytest.mark.asyncio
    async def test_wrong_name_never_spawns(self, make_context, settings) -> None:
        """A mistyped database name aborts before pg_restore starts."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        artifact = ArtifactCatalog(settings).latest("dev")
        ctx = make_context(confirmer=ScriptedConfirmer(answers=["myapp_de"]))
        spawn = fake_spawn(FakeProcess())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            with pytest.raises(ConfirmationError):
                await run_restore(ctx, artifact, RestorePolicy.INTERACTIVE)

        spawn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_name_check_is_case_sensitive(self, make_context, settings) -> None:
        """Case differences fail the confirmation."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        artifact = ArtifactCatalog(settings).latest("dev")
        ctx = make_context(confirmer=ScriptedConfirmer(answers=["MYAPP_DEV"]))
        spawn = fake_spawn(FakeProcess())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            with pytest.raises(ConfirmationError):
                await run_restore(ctx, artifact, RestorePolicy.LATEST)

        spawn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connectivity_failure_before_prompt(self, make_context, settings, adapter) -> None:
        """An unreachable target fails before any confirmation."""
        adapter.test_connection.side_effect = OSError("timeout")
        make_artifact(settings, "dev", "2026-01-15-02-30")
        confirmer = ScriptedConfirmer()
        ctx = make_context(confirmer=confirmer)

        with pytest.raises(ConnectivityError):
            await run_restore(ctx, ArtifactCatalog(settings).latest("dev"))

        assert confirmer.prompts == []

    @pytest.mark.asyncio
    async def test_successful_restore(self, make_context, settings, reporter) -> None:
        """Correct name: pg_restore runs with --clean --verbose -F c and units are counted."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        artifact = ArtifactCatalog(settings).latest("dev")
        ctx = make_context(confirmer=ScriptedConfirmer(answers=["myapp_dev"]))
        spawn = fake_spawn(FakeProcess(returncode=0, ticks=2), write_restore_log())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            result = await run_restore(ctx, artifact, RestorePolicy.INTERACTIVE)

        assert result.success
        assert result.total_units == 4
        assert result.completed_units == 4

        argv = spawn.call_args.args[0]
        assert argv[0] == "pg_restore"
        assert argv[1:9] == ["-h", "db.internal", "-U", "app", "-d", "myapp_dev", "-p", "5432"]
        assert argv[9:] == ["--clean", "--verbose", "-F", "c", str(artifact.dump_path)]
        assert spawn.call_args.kwargs["merge_stdout"] is True

        assert reporter.progress_lines
        assert all("Processed" in line for line in reporter.progress_lines)
        assert reporter.progress_lines[-1].startswith("[") and "4/4 items" in reporter.progress_lines[-1]

    @pytest.mark.asyncio
    async def test_unattended_asks_nothing(self, make_context, settings) -> None:
        """UNATTENDED skips the typed name check."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        confirmer = ScriptedConfirmer()
        ctx = make_context(confirmer=confirmer)
        spawn = fake_spawn(FakeProcess(returncode=0), write_restore_log())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            result = await run_restore(ctx, ArtifactCatalog(settings).latest("dev"), RestorePolicy.UNATTENDED)

        assert result.success
        assert confirmer.prompts == []

    @pytest.mark.asyncio
    async def test_nonzero_exit_carries_tail(self, make_context, settings) -> None:
        """A failed restore raises with the last 20 diagnostic lines."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        output = "".join(f"pg_restore: processing item {i}\n" for i in range(30))
        output += "pg_restore: error: could not execute query: ERROR:  role \"web\" does not exist\n"
        ctx = make_context()
        spawn = fake_spawn(FakeProcess(returncode=1), write_restore_log(output))

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            with pytest.raises(ToolExecutionError) as exc_info:
                await run_restore(ctx, ArtifactCatalog(settings).latest("dev"), RestorePolicy.UNATTENDED)

        error = exc_info.value
        assert error.returncode == 1
        assert len(error.tail) == 20
        assert 'role "web" does not exist' in error.tail[-1]

    @pytest.mark.asyncio
    async def test_timeout_terminates(self, make_context, settings) -> None:
        """Exceeding restore_timeout terminates pg_restore and raises a TimeoutError."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        process = FakeProcess(hang=True)
        ctx = make_context(settings=settings.model_copy(update={"restore_timeout": 0.03}))
        spawn = fake_spawn(process, write_restore_log())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            with pytest.raises(OperationTimeoutError) as exc_info:
                await run_restore(ctx, ArtifactCatalog(settings).latest("dev"), RestorePolicy.UNATTENDED)

        assert isinstance(exc_info.value, TimeoutError)
        assert process.terminated

    @pytest.mark.asyncio
    async def test_unknown_total_counts_every_line(self, make_context, settings, reporter) -> None:
        """Without a manifest total, any pg_restore: line counts and ETA is '-'."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        ctx = make_context()
        spawn = fake_spawn(FakeProcess(returncode=0, ticks=1), write_restore_log())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock(returncode=1, stdout="")):
            result = await run_restore(ctx, ArtifactCatalog(settings).latest("dev"), RestorePolicy.UNATTENDED)

        assert result.total_units is None
        assert result.completed_units == 5
        assert all(line.endswith("ETA -") for line in reporter.progress_lines)

    @pytest.mark.asyncio
    async def test_show_lines_echoes_output(self, make_context, settings, reporter) -> None:
        """show_lines forwards pg_restore lines to the reporter."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        ctx = make_context()
        spawn = fake_spawn(FakeProcess(returncode=0, ticks=1), write_restore_log())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            await run_restore(
                ctx, ArtifactCatalog(settings).latest("dev"), RestorePolicy.UNATTENDED, show_lines=True
            )

        assert "pg_restore: creating TABLE public.users" in reporter.messages

    @pytest.mark.asyncio
    async def test_no_progress_is_silent(self, make_context, settings, reporter) -> None:
        """no_progress waits without progress lines."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        ctx = make_context()
        spawn = fake_spawn(FakeProcess(returncode=0, ticks=2), write_restore_log())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            result = await run_restore(
                ctx, ArtifactCatalog(settings).latest("dev"), RestorePolicy.UNATTENDED, no_progress=True
            )

        assert result.completed_units == 4
        assert reporter.progress_lines == []


class TestRestoreEnvironment:
    """Verify artifact selection feeding the restore."""

    @pytest.mark.asyncio
    async def test_no_artifacts_fails_without_prompt(self, make_context) -> None:
        """dev has no artifacts: ArtifactError and no confirmation asked."""
        confirmer = ScriptedConfirmer()
        ctx = make_context(confirmer=confirmer)
        spawn = fake_spawn(FakeProcess())

        with patch("pg_backup_restore.backup.restore.spawn", spawn):
            with pytest.raises(ArtifactError):
                await restore_environment(ctx)

        assert confirmer.prompts == []
        spawn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cross_environment_latest_unattended(self, make_context, settings) -> None:
        """A fresh prod backup is restored into dev without listing alternatives."""
        make_artifact(settings, "prod", "2020-01-01-00-00")
        prod_ctx = make_context(make_environment("prod", "myapp_prod"))
        with patch(
            "pg_backup_restore.backup.dump.spawn",
            fake_spawn(FakeProcess(returncode=0), write_dump()),
        ):
            backup = await run_backup(prod_ctx)

        confirmer = ScriptedConfirmer()
        dev_ctx = make_context(make_environment("dev", "myapp_dev"), confirmer=confirmer)
        spawn = fake_spawn(FakeProcess(returncode=0), write_restore_log())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            result = await restore_environment(
                dev_ctx, source="prod", latest=True, policy=RestorePolicy.UNATTENDED
            )

        assert result.artifact.dump_path == backup.artifact.dump_path
        assert result.target == "dev"
        assert confirmer.prompts == []
        argv = spawn.call_args.args[0]
        assert argv[argv.index("-d") + 1] == "myapp_dev"
        assert argv[-1] == str(backup.artifact.dump_path)

    @pytest.mark.asyncio
    async def test_latest_policy_still_requires_name(self, make_context, settings) -> None:
        """--latest alone picks without asking but still checks the typed name."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        confirmer = ScriptedConfirmer(answers=["myapp_dev"])
        ctx = make_context(confirmer=confirmer)
        spawn = fake_spawn(FakeProcess(returncode=0), write_restore_log())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            result = await restore_environment(ctx, latest=True)

        assert result.success
        assert len(confirmer.prompts) == 1
        assert "myapp_dev" in confirmer.prompts[0]

    @pytest.mark.asyncio
    async def test_interactive_affirms_artifact_then_name(self, make_context, settings) -> None:
        """Interactive restore asks to use the latest, then for the name."""
        make_artifact(settings, "dev", "2026-01-15-02-30")
        confirmer = ScriptedConfirmer(confirms=[True], answers=["myapp_dev"])
        ctx = make_context(confirmer=confirmer)
        spawn = fake_spawn(FakeProcess(returncode=0), write_restore_log())

        with patch("pg_backup_restore.backup.restore.spawn", spawn), \
                patch("pg_backup_restore.backup.restore.capture", capture_mock()):
            result = await restore_environment(ctx)

        assert result.success
        assert len(confirmer.prompts) == 2
