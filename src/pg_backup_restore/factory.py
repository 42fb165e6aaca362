"""Operation context, adapter factory and pre-flight probes.

Every operation receives one immutable ``OperationContext`` holding the
resolved environment, global settings, log sink and the operator I/O
capabilities.  No component reads process-wide state.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pg_backup_restore.adapters.base import DatabaseClient
from pg_backup_restore.adapters.postgres import AsyncPostgresAdapter
from pg_backup_restore.config.loader import load_environment
from pg_backup_restore.config.models import Environment, GlobalSettings
from pg_backup_restore.errors import ConnectivityError
from pg_backup_restore.reporting import NullReporter, Reporter
from pg_backup_restore.safety import Confirmer, ConsoleConfirmer

logger = logging.getLogger(__name__)


def get_adapter(environment: Environment) -> DatabaseClient:
    """Create an ``AsyncPostgresAdapter`` for a resolved environment."""
    return AsyncPostgresAdapter.from_environment(environment)


@dataclass(frozen=True)
class OperationContext:
    """Everything one operation needs, threaded explicitly through calls.

    Attributes:
        environment: Resolved environment the operation acts on.
        settings: Global, non-secret settings.
        logger: Sink for the shared timestamped log.
        confirmer: Source of operator answers.
        reporter: Sink for operator-facing output.
        adapter_factory: Builds a ``DatabaseClient`` for an environment.
        cancel_event: When set, supervised processes are terminated at the
            next tick.
    """

    environment: Environment
    settings: GlobalSettings
    logger: logging.Logger = dataclasses.field(
        default_factory=lambda: logging.getLogger("pg_backup_restore")
    )
    confirmer: Confirmer = dataclasses.field(default_factory=ConsoleConfirmer)
    reporter: Reporter = dataclasses.field(default_factory=NullReporter)
    adapter_factory: Callable[[Environment], DatabaseClient] = get_adapter
    cancel_event: asyncio.Event | None = None

    def for_environment(self, environment: Environment) -> "OperationContext":
        """Same context acting on another environment (sync target)."""
        return dataclasses.replace(self, environment=environment)


def build_context(
    environment_name: str,
    settings: GlobalSettings,
    overrides: dict[str, Any] | None = None,
    secret_file: Path | None = None,
    **kwargs: Any,
) -> OperationContext:
    """Resolve ``environment_name`` and wrap it in an ``OperationContext``.

    Raises:
        ConfigurationError: If the environment cannot be resolved.
    """
    environment = load_environment(
        environment_name, settings, overrides=overrides, secret_file=secret_file
    )
    return OperationContext(environment=environment, settings=settings, **kwargs)


async def check_connectivity(ctx: OperationContext) -> None:
    """Run ``SELECT 1`` against the context environment.

    Raises:
        ConnectivityError: If the probe fails for any reason.
    """
    env = ctx.environment
    ctx.logger.info(f"Testing connectivity to {env.database}@{env.host}:{env.port} (SELECT 1)...")

    adapter = ctx.adapter_factory(env)
    try:
        await adapter.test_connection()
    except Exception as e:
        ctx.logger.error(f"Connectivity test failed for '{env.name}': {e}")
        raise ConnectivityError(
            f"Database connectivity test failed for '{env.name}' "
            f"({env.host}:{env.port}/{env.database}): {e}\n"
            f"Check host/port/network/VPN/firewall."
        ) from e
    finally:
        await adapter.close()

    ctx.logger.info("Connectivity OK.")


async def fetch_raw_size(ctx: OperationContext) -> int | None:
    """Raw (uncompressed) size of the environment database in bytes.

    Failure is not fatal: returns ``None`` and ETA reporting degrades.
    """
    adapter = ctx.adapter_factory(ctx.environment)
    try:
        size = await adapter.scalar("SELECT pg_database_size(current_database())")
    except Exception as e:
        ctx.logger.warning(f"Raw size query failed: {e}")
        size = None
    finally:
        await adapter.close()

    if not size:
        ctx.logger.info("Raw size estimate unavailable; ETA will show '-'")
        return None

    ctx.logger.info(
        f"Estimated raw database size: {int(size) / 1024 / 1024:.2f} MB "
        f"(custom format will differ)"
    )
    return int(size)
