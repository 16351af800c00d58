"""
Infrastructure package for polystore.

Centralizes driver connectivity (aiosqlite, psycopg pool, pymongo async) and
the call boundary that maps driver errors onto the polystore taxonomy.
`open_database` lives in `polystore.infrastructure.db_factory` and is
re-exported from the top-level package.
"""

from polystore.infrastructure.calls import ErrorPolicy, run_backend_call
from polystore.infrastructure.mongo import MongoConnection, connect_mongo
from polystore.infrastructure.sql_drivers import (
    AiosqliteDriver,
    PsycopgDriver,
    SqlDriver,
    SqlResult,
)

__all__ = [
    "ErrorPolicy",
    "run_backend_call",
    "MongoConnection",
    "connect_mongo",
    "AiosqliteDriver",
    "PsycopgDriver",
    "SqlDriver",
    "SqlResult",
]
