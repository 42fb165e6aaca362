"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol used by the orchestrators for the
few direct queries they make: the connectivity probe, the raw-size query,
and the schema reset.  All data transfer goes through ``pg_dump`` and
``pg_restore``, never through this client.

Usage:
    from pg_backup_restore.adapters.base import DatabaseClient

    async def probe(client: DatabaseClient) -> None:
        await client.test_connection()
        size = await client.scalar("SELECT pg_database_size(current_database())")
        await client.close()
"""

from collections.abc import Sequence
from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    All methods are async -- callers must ``await`` every operation.
    """

    async def test_connection(self) -> bool:
        """Run a trivial read query (``SELECT 1``).

        Returns:
            ``True`` if the database answered.

        Raises:
            Exception: If the database is unreachable.
        """
        ...

    async def scalar(self, sql: str, params: dict | None = None) -> Any:
        """Run a query and return the first column of the first row.

        Returns:
            The value, or ``None`` if the query returned no rows.
        """
        ...

    async def execute_in_transaction(self, statements: Sequence[str]) -> None:
        """Execute statements in order inside one transaction.

        Either every statement commits or none does.

        Example:
            await client.execute_in_transaction([
                "DROP SCHEMA public CASCADE",
                "CREATE SCHEMA public",
            ])
        """
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
