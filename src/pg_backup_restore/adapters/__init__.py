"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async PostgreSQL adapter
used for connectivity probes, size queries and schema resets.

Usage:
    from pg_backup_restore.adapters import DatabaseClient, AsyncPostgresAdapter
"""

from pg_backup_restore.adapters.base import DatabaseClient
from pg_backup_restore.adapters.postgres import AsyncPostgresAdapter

__all__ = [
    "DatabaseClient",
    "AsyncPostgresAdapter",
]
