"""Exception taxonomy for backup, restore, sync and drop operations.

Every fatal condition raised by the orchestration core derives from
``BackupToolError`` so the CLI can log it and exit non-zero in one place.
None of these are retried automatically.

Usage:
    from pg_backup_restore.errors import ConfigurationError, ToolExecutionError

    try:
        await run_backup(ctx)
    except ToolExecutionError as e:
        print(e.tail)
"""


class BackupToolError(Exception):
    """Base class for all fatal orchestration errors."""

    pass


class ConfigurationError(BackupToolError):
    """Raised when a secret file is missing/unreadable or a required field is empty."""

    pass


class ConnectivityError(BackupToolError):
    """Raised when the pre-flight ``SELECT 1`` probe fails."""

    pass


class ToolExecutionError(BackupToolError):
    """Raised when an external dump/restore process exits non-zero.

    Attributes:
        tool: Executable that failed (e.g. ``pg_dump``).
        returncode: Exit code of the child process (``None`` if it never started).
        tail: Final diagnostic lines captured from the child, verbatim.
    """

    def __init__(
        self,
        message: str,
        tool: str = "",
        returncode: int | None = None,
        tail: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.tool = tool
        self.returncode = returncode
        self.tail = tail or []


class ConfirmationError(BackupToolError):
    """Raised when the operator declines or mistypes a confirmation."""

    pass


class ArtifactError(BackupToolError):
    """Raised when no valid backup artifact can be found for a source."""

    pass


class OperationTimeoutError(BackupToolError, TimeoutError):
    """Raised when a supervised process exceeds its wall-clock ceiling.

    Subclasses the builtin ``TimeoutError`` so generic handlers still match.
    """

    pass


class SchemaResetError(BackupToolError):
    """Raised when the drop-and-recreate schema statement fails."""

    pass


class OperationCancelledError(BackupToolError):
    """Raised when a supervised operation is cancelled through its cancel event."""

    pass
