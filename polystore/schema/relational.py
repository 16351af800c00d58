"""
Relational DDL for the schema reconciler.

New tables are created with every declared column in one statement, so no
defaults are needed there. Columns added to an existing table get a DEFAULT
when they are non-nullable (``''`` for text, ``0`` for numbers) so existing
rows stay valid. Indexes use ``IF NOT EXISTS`` and, on PostgreSQL,
``CONCURRENTLY`` so concurrent traffic is not blocked.
"""

from __future__ import annotations

from typing import Sequence

from polystore.domain.columns import ColumnDescriptor
from polystore.infrastructure.sql_drivers import SqlDriver
from polystore.schema.reconciler import DdlStep, SchemaSnapshot, StepKind, index_name
from polystore.translators.dialect import SqlQuery


class RelationalSchemaBackend:
    """Schema introspection and DDL over a `SqlDriver`."""

    has_columns = True

    def __init__(self, driver: SqlDriver) -> None:
        self._driver = driver
        self._dialect = driver.dialect
        self.name = driver.dialect.name

    async def fetch_snapshot(self, object_name: str) -> SchemaSnapshot:
        columns = await self._driver.execute("show_columns", self._dialect.columns_query(object_name))
        if not columns.rows:
            return SchemaSnapshot(exists=False)
        indexes = await self._driver.execute("show_indexes", self._dialect.indexes_query(object_name))
        return SchemaSnapshot(
            exists=True,
            columns={row["name"]: row for row in columns.rows},
            indexes={row["name"]: row for row in indexes.rows},
        )

    def _column_sql(self, column: ColumnDescriptor) -> str:
        parts = [self._dialect.quote(column.storage_name), self._dialect.column_type(column)]
        if column.primary_key:
            parts.append("PRIMARY KEY")
        elif not column.nullable:
            parts.append("NOT NULL")
        return " ".join(parts)

    def create_step(self, object_name: str, columns: Sequence[ColumnDescriptor]) -> DdlStep:
        definitions = ", ".join(self._column_sql(column) for column in columns)
        sql = f"CREATE TABLE IF NOT EXISTS {self._dialect.quote(object_name)} ({definitions})"
        return DdlStep(StepKind.CREATE, object_name, None, sql)

    def add_column_step(self, object_name: str, column: ColumnDescriptor) -> DdlStep:
        sql = f"ALTER TABLE {self._dialect.quote(object_name)} ADD COLUMN {self._column_sql(column)}"
        if not column.nullable and not column.primary_key:
            default = self._dialect.default_literal(column)
            if default is not None:
                sql += f" DEFAULT {default}"
        return DdlStep(StepKind.ADD_COLUMN, object_name, column.name, sql)

    def index_step(self, object_name: str, column: ColumnDescriptor) -> DdlStep:
        unique = "UNIQUE " if column.unique else ""
        sql = (
            f"CREATE {unique}INDEX {self._dialect.concurrent_index}IF NOT EXISTS "
            f"{self._dialect.quote(index_name(object_name, column))} "
            f"ON {self._dialect.quote(object_name)} ({self._dialect.quote(column.storage_name)})"
        )
        return DdlStep(StepKind.CREATE_INDEX, object_name, column.name, sql)

    def index_present(self, snapshot: SchemaSnapshot, object_name: str, column: ColumnDescriptor) -> bool:
        return index_name(object_name, column) in snapshot.indexes

    async def apply(self, step: DdlStep) -> None:
        await self._driver.execute(step.kind.value, SqlQuery(step.statement))


__all__ = ["RelationalSchemaBackend"]
