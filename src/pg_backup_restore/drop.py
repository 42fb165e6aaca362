"""Destructive schema reset of one environment.

Order is fixed: connectivity probe, typed confirmation of the database
name, safety backup, then ``DROP SCHEMA <schema> CASCADE`` and
``CREATE SCHEMA <schema>`` in a single transaction.  Only ``assume_yes``
skips the confirmation and only ``skip_backup`` skips the backup.

Usage:
    from pg_backup_restore.drop import run_drop

    result = await run_drop(ctx)
"""

import re

from pydantic import BaseModel

from pg_backup_restore.backup.dump import run_backup
from pg_backup_restore.backup.models import BackupResult
from pg_backup_restore.errors import ConfigurationError, SchemaResetError
from pg_backup_restore.factory import OperationContext, check_connectivity
from pg_backup_restore.safety import confirm_database_name

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DropResult(BaseModel):
    """Result of a schema reset.

    Attributes:
        success: True if the schema was dropped and recreated.
        environment: Environment that was reset.
        schema_name: Schema that was reset.
        backup: Safety backup taken first (``None`` when skipped).
    """

    success: bool = False
    environment: str
    schema_name: str
    backup: BackupResult | None = None


def reset_statements(schema: str) -> list[str]:
    """Statements that empty ``schema``.

    Raises:
        ConfigurationError: If ``schema`` is not a plain identifier.
    """
    if not _IDENTIFIER.match(schema):
        raise ConfigurationError(f"Invalid schema name: {schema!r}")
    return [f"DROP SCHEMA {schema} CASCADE", f"CREATE SCHEMA {schema}"]


async def run_drop(
    ctx: OperationContext,
    assume_yes: bool = False,
    skip_backup: bool = False,
) -> DropResult:
    """Drop and recreate the configured schema of ``ctx.environment``.

    Args:
        ctx: Operation context for the environment to reset.
        assume_yes: Skip the typed database-name confirmation.
        skip_backup: Skip the safety backup.

    Raises:
        ConnectivityError: If the probe fails.
        ConfirmationError: If the typed name does not match.
        BackupToolError: If the safety backup fails (nothing is dropped).
        SchemaResetError: If the statements fail; the driver message is kept.
    """
    env = ctx.environment
    schema = ctx.settings.schema_name
    statements = reset_statements(schema)

    await check_connectivity(ctx)

    if assume_yes:
        ctx.logger.warning(f"Drop confirmation skipped for '{env.name}' (--yes)")
    else:
        ctx.reporter.message(
            f"WARNING: this will DROP schema '{schema}' of database '{env.database}' "
            f"on {env.host}:{env.port}. All objects in it will be lost."
        )
        confirm_database_name(ctx.confirmer, env)

    result = DropResult(environment=env.name, schema_name=schema)

    if skip_backup:
        ctx.logger.warning(f"Safety backup skipped for '{env.name}' (--skip-backup)")
    else:
        ctx.reporter.message(f"Taking safety backup of '{env.name}' first...")
        result.backup = await run_backup(ctx)

    ctx.logger.info(f"Dropping schema '{schema}' of '{env.name}' ({env.database}@{env.host})")
    adapter = ctx.adapter_factory(env)
    try:
        await adapter.execute_in_transaction(statements)
    except Exception as e:
        ctx.logger.error(f"Schema reset failed for '{env.name}': {e}")
        raise SchemaResetError(str(e)) from e
    finally:
        await adapter.close()

    ctx.logger.info(f"Schema '{schema}' of '{env.name}' dropped and recreated")
    ctx.reporter.message(f"Schema '{schema}' dropped and recreated.")
    result.success = True
    return result
