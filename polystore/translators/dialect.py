"""
SQL dialects for the relational translator and schema reconciler.

A dialect supplies the few fragments that differ between SQL engines:
placeholder style, identifier quoting, the physical row identifier used to
bound UPDATE/DELETE to one row, column types and ``ADD COLUMN`` defaults.

    ┌──────────────┬──────────────┬──────────┬──────────────┐
    │ dialect      │ placeholder  │ row id   │ no LIMIT     │
    ├──────────────┼──────────────┼──────────┼──────────────┤
    │ sqlite       │ ?            │ rowid    │ LIMIT -1     │
    │ postgresql   │ %s           │ ctid     │ LIMIT ALL    │
    └──────────────┴──────────────┴──────────┴──────────────┘
"""

from __future__ import annotations

import abc
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Tuple

from polystore.domain.codec import DbKey
from polystore.domain.columns import ColumnDescriptor


@dataclass(frozen=True)
class SqlQuery:
    """Statement text plus its positional parameters, in placeholder order."""

    sql: str
    params: Tuple[Any, ...] = ()


class SqlDialect(abc.ABC):
    """Engine-specific SQL fragments."""

    name: str
    placeholder: str
    row_id: str
    unbounded_limit: str
    false_literal = "0"
    concurrent_index = ""

    def quote(self, identifier: str) -> str:
        """Quote an identifier, doubling embedded quotes."""
        return '"' + identifier.replace('"', '""') + '"'

    def placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)

    @abc.abstractmethod
    def column_type(self, column: ColumnDescriptor) -> str:
        """DDL type for ``column``."""
        raise NotImplementedError

    @abc.abstractmethod
    def columns_query(self, table: str) -> SqlQuery:
        """Live column listing of ``table``; each row carries the column under ``name``."""
        raise NotImplementedError

    @abc.abstractmethod
    def indexes_query(self, table: str) -> SqlQuery:
        """Live index listing of ``table``; each row carries the index under ``name``."""
        raise NotImplementedError

    def default_literal(self, column: ColumnDescriptor) -> Optional[str]:
        """
        DEFAULT used when a non-nullable column is added to an existing table.

        Text defaults to ``''`` and numbers to ``0``; other types have none.
        """
        native = column.native_type
        if not isinstance(native, type):
            return None
        if issubclass(native, bool):
            return self.false_literal
        if native is str:
            return "''"
        if issubclass(native, (int, float, Decimal)):
            return "0"
        return None

    def _text_type(self, column: ColumnDescriptor) -> str:
        if column.max_length is not None:
            return f"VARCHAR({column.max_length})"
        return "TEXT"


class SQLiteDialect(SqlDialect):
    name = "sqlite"
    placeholder = "?"
    row_id = "rowid"
    unbounded_limit = "-1"

    def columns_query(self, table: str) -> SqlQuery:
        return SqlQuery(f"PRAGMA table_info({self.quote(table)})")

    def indexes_query(self, table: str) -> SqlQuery:
        return SqlQuery(f"PRAGMA index_list({self.quote(table)})")

    def column_type(self, column: ColumnDescriptor) -> str:
        native = column.native_type
        if not isinstance(native, type):
            return "TEXT"
        if issubclass(native, DbKey):
            return "VARCHAR(24)"
        if issubclass(native, str):
            return self._text_type(column)
        if issubclass(native, (bool, int)):
            return "INTEGER"
        if issubclass(native, float):
            return "REAL"
        if issubclass(native, Decimal):
            # numeric affinity: stored text converts to a number and compares as one
            return "NUMERIC"
        if issubclass(native, (bytes, bytearray)):
            return "BLOB"
        return "TEXT"


class PostgreSQLDialect(SqlDialect):
    name = "postgresql"
    placeholder = "%s"
    row_id = "ctid"
    unbounded_limit = "ALL"
    false_literal = "FALSE"
    concurrent_index = "CONCURRENTLY "

    def columns_query(self, table: str) -> SqlQuery:
        return SqlQuery(
            "SELECT column_name AS name, data_type AS type, is_nullable "
            "FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = %s "
            "ORDER BY ordinal_position",
            (table,),
        )

    def indexes_query(self, table: str) -> SqlQuery:
        return SqlQuery(
            "SELECT indexname AS name, indexdef "
            "FROM pg_indexes WHERE schemaname = current_schema() AND tablename = %s",
            (table,),
        )

    def column_type(self, column: ColumnDescriptor) -> str:
        native = column.native_type
        if not isinstance(native, type):
            return "TEXT"
        if issubclass(native, DbKey):
            return "VARCHAR(24)"
        if issubclass(native, str):
            return self._text_type(column)
        if issubclass(native, bool):
            return "BOOLEAN"
        if issubclass(native, int):
            return "BIGINT GENERATED BY DEFAULT AS IDENTITY" if column.primary_key else "BIGINT"
        if issubclass(native, float):
            return "DOUBLE PRECISION"
        if issubclass(native, Decimal):
            return "NUMERIC"
        if issubclass(native, (bytes, bytearray)):
            return "BYTEA"
        if issubclass(native, uuid.UUID):
            return "UUID"
        if issubclass(native, datetime):
            return "TIMESTAMPTZ"
        if issubclass(native, date):
            return "DATE"
        return "TEXT"


__all__ = ["SqlQuery", "SqlDialect", "SQLiteDialect", "PostgreSQLDialect"]
