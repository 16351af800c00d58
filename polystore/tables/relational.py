"""
Relational tables: SQLite (aiosqlite) and PostgreSQL (psycopg).

Predicates are translated into one `SqlQuery` by `RelationalTranslator` and
wrapped into full statements by `StatementCompiler`; the driver executes
them. Writes bounded to one record select it by the dialect's physical row
id (``rowid`` / ``ctid``).
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel

from polystore.domain.codec import Codec
from polystore.domain.columns import ColumnDescriptor
from polystore.errors import MisuseError
from polystore.infrastructure.sql_drivers import SqlDriver
from polystore.query.ir import QueryNode
from polystore.schema.relational import RelationalSchemaBackend
from polystore.tables.abstract import Database, Row, Table
from polystore.translators.dialect import SqlQuery
from polystore.translators.relational import RelationalTranslator, StatementCompiler

ModelT = TypeVar("ModelT", bound=BaseModel)
R = TypeVar("R")


class RelationalTable(Table[ModelT]):
    def __init__(self, model: Type[ModelT], codec: Codec, driver: SqlDriver) -> None:
        super().__init__(model, codec, RelationalSchemaBackend(driver))
        self._driver = driver
        self._translator = RelationalTranslator(self.schema, codec, driver.dialect)
        self._compiler = StatementCompiler(self.schema, driver.dialect)

    def _row_key(self, column: ColumnDescriptor) -> str:
        return column.storage_name

    async def _insert(self, values: Dict[str, Any]) -> None:
        await self._driver.execute("insert", self._compiler.insert(values))

    async def _find(self, node: QueryNode, skip: Optional[int], limit: Optional[int]) -> List[Row]:
        where = self._translator.translate(node)
        result = await self._driver.execute("find", self._compiler.select(where, skip, limit))
        return result.rows

    async def _update(
        self,
        node: QueryNode,
        set_values: Dict[str, Any],
        increments: Dict[str, Any],
        single: bool,
    ) -> int:
        where = self._translator.translate(node)
        result = await self._driver.execute(
            "update", self._compiler.update(where, set_values, increments, single)
        )
        return max(result.rowcount, 0)

    async def _delete(self, node: QueryNode, single: bool) -> int:
        where = self._translator.translate(node)
        result = await self._driver.execute("delete", self._compiler.delete(where, single))
        return max(result.rowcount, 0)

    async def _raw_query(self, statement: Any, params: Tuple[Any, ...]) -> List[Dict[str, Any]]:
        if not isinstance(statement, str):
            raise MisuseError(f"{self.name} raw queries take SQL text, got {type(statement).__name__}")
        result = await self._driver.execute("raw_query", SqlQuery(statement, params))
        return [dict(row) for row in result.rows]

    async def transaction(
        self,
        callback: Callable[[Table[ModelT]], Awaitable[R]],
        *,
        best_effort: bool = False,
    ) -> R:
        async with self._driver.transaction() as bound:
            return await callback(RelationalTable(self.model, self._codec, bound))


class RelationalDatabase(Database):
    """Database handle over a `SqlDriver`."""

    def __init__(self, driver: SqlDriver, codec: Codec) -> None:
        super().__init__(codec)
        self.driver = driver
        self.name = driver.dialect.name

    def _make_table(self, model: Type[ModelT]) -> RelationalTable[ModelT]:
        return RelationalTable(model, self.codec, self.driver)

    async def close(self) -> None:
        await self.driver.close()


__all__ = ["RelationalDatabase", "RelationalTable"]
