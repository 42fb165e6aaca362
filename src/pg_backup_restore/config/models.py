"""Pydantic models for environment and global configuration."""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr


# ============================================================================
# Environment (secret, one per target database)
# ============================================================================


class Environment(BaseModel):
    """Fully resolved connection target loaded from ``<env_dir>/<name>.env``."""

    model_config = ConfigDict(frozen=True)

    name: str
    host: str = ""
    port: int = 5432
    database: str = ""
    username: str = ""
    password: SecretStr = SecretStr("")  # Only ever read from the secret file
    created_at: datetime | None = None
    updated_at: datetime | None = None
    source_path: Path | None = None

    def missing_fields(self) -> list[str]:
        """Secret-file keys whose resolved value is empty."""
        missing = []
        if not self.database:
            missing.append("DB_DATABASE")
        if not self.host:
            missing.append("DB_HOST")
        if not self.username:
            missing.append("DB_USERNAME")
        if not self.password.get_secret_value():
            missing.append("DB_PASSWORD")
        return missing

    def masked_summary(self) -> list[tuple[str, str]]:
        """Key/value pairs safe to print (credential masked)."""
        return [
            ("DB_DATABASE", self.database or "<not set>"),
            ("DB_HOST", self.host or "<not set>"),
            ("DB_USERNAME", self.username or "<not set>"),
            ("DB_PASSWORD", "********" if self.password.get_secret_value() else "<not set>"),
            ("DB_PORT", str(self.port)),
        ]


class EnvironmentOverride(BaseModel):
    """Non-secret per-environment values from ``[environments.<name>]``."""

    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None


# ============================================================================
# Global Settings (non-secret, process-wide)
# ============================================================================


class GlobalSettings(BaseModel):
    """Process-wide settings from ``settings.toml`` and environment variables.

    Never contains credentials. All paths are absolute once loaded.
    """

    model_config = ConfigDict(frozen=True)

    project_root: Path
    backup_root: Path
    log_file: Path
    env_dir: Path
    transfer_file: Path
    secret_file: Path | None = None  # CONFIG_FILE_PATH, per-invocation override

    timestamp_format: str = "%Y-%m-%d-%H-%M"
    backup_poll_interval: float = 1.0

    restore_poll_interval: float = 5.0
    progress_interval: float = 10.0
    restore_timeout: float = 7200.0
    restore_warmup: float = 5.0
    eta_ceiling: float = 43200.0
    show_lines: bool = False
    latest_requires_confirmation: bool = True

    schema_name: str = "public"
    pg_dump: str = "pg_dump"
    pg_restore: str = "pg_restore"

    environment_overrides: dict[str, EnvironmentOverride] = Field(default_factory=dict)

    def environment_dir(self, environment: str) -> Path:
        """Directory holding the timestamped artifacts of one environment."""
        return self.backup_root / environment
