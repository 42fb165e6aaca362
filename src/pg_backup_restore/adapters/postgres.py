"""Async PostgreSQL database adapter.

Provides ``AsyncPostgresAdapter``, an async implementation of the
``DatabaseClient`` protocol using SQLAlchemy's async engine with the
``asyncpg`` driver.

Usage:
    from pg_backup_restore.adapters.postgres import AsyncPostgresAdapter

    adapter = AsyncPostgresAdapter.from_environment(env)
    await adapter.test_connection()
    await adapter.close()
"""

from collections.abc import Sequence
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pg_backup_restore.config.models import Environment


def create_async_engine_pooled(database_url: str | URL, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine for short-lived orchestration queries.

    Default pool settings:

    - ``pool_size=1`` / ``max_overflow=0``: one query at a time per run.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``connect_args={"timeout": 10}``: asyncpg connect timeout in seconds.

    Args:
        database_url: URL (string or ``URL``) with ``postgresql+asyncpg`` scheme.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "pool_size": 1,
        "max_overflow": 0,
        "pool_pre_ping": True,
        "connect_args": {"timeout": 10},
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(database_url, **merged)


def environment_url(environment: Environment) -> URL:
    """Build a ``postgresql+asyncpg`` URL from an environment.

    ``URL.create`` escapes the credential, so passwords with ``@`` or ``/``
    need no manual quoting.
    """
    return URL.create(
        drivername="postgresql+asyncpg",
        username=environment.username,
        password=environment.password.get_secret_value(),
        host=environment.host,
        port=environment.port,
        database=environment.database,
    )


class AsyncPostgresAdapter:
    """Async PostgreSQL implementation of the ``DatabaseClient`` protocol.

    Args:
        database_url: PostgreSQL connection URL (``URL`` or string).  String
            URLs with ``postgres://`` or ``postgresql://`` schemes are
            normalized to ``postgresql+asyncpg://``.
        **engine_kwargs: Additional keyword arguments forwarded to
            ``create_async_engine_pooled``.
    """

    def __init__(self, database_url: str | URL, **engine_kwargs: Any) -> None:
        url = database_url
        if isinstance(url, str):
            # postgres:// -> postgresql:// -> postgresql+asyncpg://
            if url.startswith("postgres://"):
                url = "postgresql://" + url[len("postgres://"):]
            if url.startswith("postgresql://"):
                url = "postgresql+asyncpg://" + url[len("postgresql://"):]

        self._engine: AsyncEngine = create_async_engine_pooled(url, **engine_kwargs)

    @classmethod
    def from_environment(
        cls, environment: Environment, **engine_kwargs: Any
    ) -> "AsyncPostgresAdapter":
        """Create an adapter for a resolved ``Environment``."""
        return cls(environment_url(environment), **engine_kwargs)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def test_connection(self) -> bool:
        """Test database connection health.

        Runs ``SELECT 1`` via the async engine to verify the connection
        is alive.

        Raises:
            Exception: If the database connection fails.
        """
        async with self._engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1

    async def scalar(self, sql: str, params: dict | None = None) -> Any:
        """Return the first column of the first row, or ``None``."""
        async with self._engine.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return result.scalar()

    async def execute_in_transaction(self, statements: Sequence[str]) -> None:
        """Execute statements in one transaction.

        Uses ``engine.begin()`` for automatic commit on success, rollback
        on error.  PostgreSQL DDL is transactional, so a failed
        ``CREATE SCHEMA`` also rolls back the preceding ``DROP SCHEMA``.
        """
        async with self._engine.begin() as conn:
            for statement in statements:
                await conn.execute(text(statement))

    async def close(self) -> None:
        """Close the async engine and dispose of the connection pool."""
        if self._engine:
            await self._engine.dispose()
