"""
Async SQL drivers for the relational backend family.

Two drivers implement the same small `SqlDriver` surface:

- `AiosqliteDriver`: one aiosqlite connection in autocommit mode; statements
  are serialized with an asyncio lock and transactions hold the lock for
  their whole duration.
- `PsycopgDriver`: a psycopg_pool `AsyncConnectionPool` in autocommit mode;
  each statement borrows a pooled connection, and a transaction pins one
  connection inside ``conn.transaction()``.

Rows are always returned as ``dict`` keyed by column name.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

import aiosqlite
import psycopg
from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from polystore.errors import BackendError, MisuseError
from polystore.infrastructure.calls import ErrorPolicy, run_backend_call
from polystore.translators.dialect import PostgreSQLDialect, SqlDialect, SqlQuery, SQLiteDialect
from polystore.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class SqlResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1


class SqlDriver(Protocol):
    dialect: SqlDialect

    async def execute(self, operation: str, query: SqlQuery) -> SqlResult:
        ...

    def transaction(self) -> Any:
        """Async context manager yielding a driver bound to one transaction."""
        ...

    async def close(self) -> None:
        ...


def _is_sqlite_duplicate(exc: BaseException) -> bool:
    return isinstance(exc, sqlite3.IntegrityError) and "UNIQUE constraint failed" in str(exc)


def _is_postgres_duplicate(exc: BaseException) -> bool:
    return isinstance(exc, psycopg.errors.UniqueViolation)


SQLITE_ERRORS = ErrorPolicy((sqlite3.Error,), _is_sqlite_duplicate)
POSTGRES_ERRORS = ErrorPolicy((psycopg.Error,), _is_postgres_duplicate)


def _dict_row(cursor: sqlite3.Cursor, row: tuple) -> Dict[str, Any]:
    return {column[0]: value for column, value in zip(cursor.description, row)}


class AiosqliteDriver:
    """SQLite through aiosqlite."""

    dialect: SqlDialect = SQLiteDialect()

    def __init__(self, conn: aiosqlite.Connection, lock: Optional[asyncio.Lock] = None) -> None:
        self._conn = conn
        # None on transaction-bound drivers, which already hold the parent's lock
        self._lock = lock

    @classmethod
    async def connect(cls, path: str) -> "AiosqliteDriver":
        async def _open() -> aiosqlite.Connection:
            conn = await aiosqlite.connect(path, isolation_level=None)
            conn.row_factory = _dict_row
            # align LIKE with the case-sensitive matching of the other backends
            await conn.execute("PRAGMA case_sensitive_like = ON")
            return conn

        conn = await run_backend_call("connect", _open(), SQLITE_ERRORS)
        return cls(conn, asyncio.Lock())

    async def _run(self, query: SqlQuery) -> SqlResult:
        cursor = await self._conn.execute(query.sql, query.params)
        try:
            rows = await cursor.fetchall()
            return SqlResult(list(rows), cursor.rowcount)
        finally:
            await cursor.close()

    async def execute(self, operation: str, query: SqlQuery) -> SqlResult:
        if self._lock is None:
            return await run_backend_call(operation, self._run(query), SQLITE_ERRORS)
        async with self._lock:
            return await run_backend_call(operation, self._run(query), SQLITE_ERRORS)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["AiosqliteDriver"]:
        if self._lock is None:
            raise MisuseError("nested transactions are not supported")
        async with self._lock:
            bound = AiosqliteDriver(self._conn)
            await bound.execute("begin", SqlQuery("BEGIN"))
            try:
                yield bound
                await bound.execute("commit", SqlQuery("COMMIT"))
            except BaseException:
                await bound._rollback()
                raise

    async def _rollback(self) -> None:
        """Roll back without masking the error that caused the rollback."""
        try:
            await self.execute("rollback", SqlQuery("ROLLBACK"))
        except BackendError as exc:
            log.error("rollback failed", extra={"error": str(exc)})

    async def close(self) -> None:
        if self._lock is not None:
            await self._conn.close()


class PsycopgDriver:
    """PostgreSQL through psycopg 3 and psycopg_pool."""

    dialect: SqlDialect = PostgreSQLDialect()

    def __init__(self, pool: AsyncConnectionPool, connection: Optional[AsyncConnection] = None) -> None:
        self._pool = pool
        self._connection = connection

    @classmethod
    async def connect(cls, dsn: str, min_size: int = 1, max_size: int = 10) -> "PsycopgDriver":
        pool = AsyncConnectionPool(
            conninfo=dsn,
            min_size=min_size,
            max_size=max_size,
            open=False,
            kwargs={"autocommit": True, "row_factory": dict_row},
        )
        await run_backend_call("connect", pool.open(wait=True), POSTGRES_ERRORS)
        return cls(pool)

    @staticmethod
    async def _run_on(conn: AsyncConnection, query: SqlQuery) -> SqlResult:
        async with conn.cursor() as cur:
            await cur.execute(query.sql, query.params or None)
            rows = await cur.fetchall() if cur.description is not None else []
            return SqlResult(list(rows), cur.rowcount)

    async def _run(self, query: SqlQuery) -> SqlResult:
        if self._connection is not None:
            return await self._run_on(self._connection, query)
        async with self._pool.connection() as conn:
            return await self._run_on(conn, query)

    async def execute(self, operation: str, query: SqlQuery) -> SqlResult:
        return await run_backend_call(operation, self._run(query), POSTGRES_ERRORS)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["PsycopgDriver"]:
        if self._connection is not None:
            raise MisuseError("nested transactions are not supported")
        try:
            async with self._pool.connection() as conn:
                async with conn.transaction():
                    yield PsycopgDriver(self._pool, conn)
        except psycopg.Error as exc:
            # begin/commit failures; statement errors are already BackendError
            raise BackendError("transaction", str(exc)) from exc

    async def close(self) -> None:
        if self._connection is None:
            await self._pool.close()


__all__ = [
    "SqlDriver",
    "SqlResult",
    "AiosqliteDriver",
    "PsycopgDriver",
    "SQLITE_ERRORS",
    "POSTGRES_ERRORS",
]
