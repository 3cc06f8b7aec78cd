"""
Storage Layer - Async PostgreSQL connection pool.

Built on asyncpg. The pool reports query statistics and health so it can be
registered with the monitoring engine as the database adapter.

Public API:
    Database, DatabaseConfig - Connection pool management
    DatabaseStats - Rolling query statistics
"""
from trading_monitor.storage.database import Database, DatabaseConfig, DatabaseStats

__all__ = [
    "Database",
    "DatabaseConfig",
    "DatabaseStats",
]
