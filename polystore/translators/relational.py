"""
Relational translator: compiles the query IR into parameterized SQL.

Every literal becomes a placeholder and is appended to the parameter list in
left-to-right tree order; statement text and parameters always travel
together as one `SqlQuery`. Null handling is aligned with the document
backend so both families select the same records:

- ``field == None`` -> ``IS NULL``; ``field != None`` -> ``IS NOT NULL``
- ``field != v`` -> ``("field" <> ? OR "field" IS NULL)``
- ``NOT p`` -> ``(p) IS NOT TRUE`` (rows where ``p`` is NULL are included)
- IN with ``None`` in the set also accepts NULL; an empty set matches nothing.

`StatementCompiler` builds the full SELECT/INSERT/UPDATE/DELETE statements
the table facade executes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from polystore.domain.codec import Codec
from polystore.domain.columns import ModelSchema
from polystore.errors import TranslationUnsupportedError
from polystore.query.ir import (
    Always,
    Backend,
    BinaryLogic,
    CompareOp,
    Comparison,
    InSet,
    LogicOp,
    Never,
    QueryNode,
    RawEscape,
    UnaryLogic,
    UnaryOp,
)
from polystore.translators.dialect import SqlDialect, SqlQuery
from polystore.utils.logging import get_logger

log = get_logger(__name__)

ALWAYS_SQL = "1 = 1"
NEVER_SQL = "1 = 0"

_OPERATORS = {
    CompareOp.EQ: "=",
    CompareOp.GT: ">",
    CompareOp.LT: "<",
    CompareOp.GE: ">=",
    CompareOp.LE: "<=",
}


class RelationalTranslator:
    """Translate IR trees into SQL boolean expressions."""

    backend = Backend.RELATIONAL

    def __init__(self, schema: ModelSchema, codec: Codec, dialect: SqlDialect) -> None:
        self._table = schema.table_name
        self._columns = {column.name: dialect.quote(column.storage_name) for column in schema.columns}
        self._codec = codec
        self._dialect = dialect

    def translate(self, node: QueryNode) -> SqlQuery:
        params: List[Any] = []
        sql = self._translate(node, params)
        log.debug(
            "translated sql predicate",
            extra={"table": self._table, "sql": sql, "param_count": len(params)},
        )
        return SqlQuery(sql, tuple(params))

    def _unsupported(self, detail: str) -> TranslationUnsupportedError:
        return TranslationUnsupportedError(self.backend.value, detail)

    def _column(self, field: str) -> str:
        try:
            return self._columns[field]
        except KeyError:
            raise self._unsupported(f"unknown field {field!r} of {self._table}") from None

    def _translate(self, node: QueryNode, params: List[Any]) -> str:
        if isinstance(node, Always):
            return ALWAYS_SQL
        if isinstance(node, Never):
            return NEVER_SQL
        if isinstance(node, Comparison):
            return self._comparison(node, params)
        if isinstance(node, InSet):
            return self._in_set(node, params)
        if isinstance(node, BinaryLogic):
            if node.op not in (LogicOp.AND, LogicOp.OR):
                raise self._unsupported(f"logical operator {node.op}")
            left = self._translate(node.left, params)
            right = self._translate(node.right, params)
            return f"({left} {node.op.value} {right})"
        if isinstance(node, UnaryLogic):
            if node.op is not UnaryOp.NOT:
                raise self._unsupported(f"unary operator {node.op}")
            return f"({self._translate(node.operand, params)}) IS NOT TRUE"
        if isinstance(node, RawEscape):
            if node.backend is not Backend.RELATIONAL or not isinstance(node.fragment, str):
                raise self._unsupported(f"raw fragment written for the {node.backend.value} backend")
            params.extend(node.params)
            return f"({node.fragment})"
        raise self._unsupported(f"node {type(node).__name__}")

    def _comparison(self, node: Comparison, params: List[Any]) -> str:
        column = self._column(node.field)
        value = self._codec.encode(node.literal)
        placeholder = self._dialect.placeholder
        if value is None:
            if node.op is CompareOp.EQ:
                return f"{column} IS NULL"
            if node.op is CompareOp.NE:
                return f"{column} IS NOT NULL"
            raise self._unsupported(f"{node.op.value} comparison of {node.field!r} against null")
        if node.op is CompareOp.NE:
            params.append(value)
            return f"({column} <> {placeholder} OR {column} IS NULL)"
        if node.op is CompareOp.LIKE:
            if not isinstance(value, str):
                raise self._unsupported(f"LIKE with non-text pattern on {node.field!r}")
            params.append(value)
            return f"{column} LIKE {placeholder} ESCAPE '\\'"
        operator = _OPERATORS.get(node.op)
        if operator is None:
            raise self._unsupported(f"comparison operator {node.op}")
        params.append(value)
        return f"{column} {operator} {placeholder}"

    def _in_set(self, node: InSet, params: List[Any]) -> str:
        column = self._column(node.field)
        values = [self._codec.encode(value) for value in node.values]
        present = [value for value in values if value is not None]
        parts = []
        if present:
            params.extend(present)
            parts.append(f"{column} IN ({self._dialect.placeholders(len(present))})")
        if len(present) != len(values):
            parts.append(f"{column} IS NULL")
        if not parts:
            return NEVER_SQL
        if len(parts) == 1:
            return parts[0]
        return "(" + " OR ".join(parts) + ")"


class StatementCompiler:
    """
    Compiles complete statements for one table.

    Field-keyed mappings passed in are already encoded by the caller's codec;
    predicates arrive as `SqlQuery` fragments from `RelationalTranslator`.
    """

    def __init__(self, schema: ModelSchema, dialect: SqlDialect) -> None:
        self._dialect = dialect
        self._table = dialect.quote(schema.table_name)
        self._columns: Dict[str, str] = {
            column.name: dialect.quote(column.storage_name) for column in schema.columns
        }

    def _bounded(self, where: SqlQuery) -> str:
        row_id = self._dialect.row_id
        return (
            f"{row_id} IN (SELECT {row_id} FROM {self._table} "
            f"WHERE {where.sql} LIMIT {self._dialect.placeholder})"
        )

    def select(self, where: SqlQuery, skip: Optional[int] = None, limit: Optional[int] = None) -> SqlQuery:
        columns = ", ".join(self._columns.values())
        sql = f"SELECT {columns} FROM {self._table} WHERE {where.sql}"
        params = list(where.params)
        if limit is not None:
            sql += f" LIMIT {self._dialect.placeholder}"
            params.append(limit)
        elif skip is not None:
            sql += f" LIMIT {self._dialect.unbounded_limit}"
        if skip is not None:
            sql += f" OFFSET {self._dialect.placeholder}"
            params.append(skip)
        return SqlQuery(sql, tuple(params))

    def insert(self, values: Mapping[str, Any]) -> SqlQuery:
        columns = ", ".join(self._columns[name] for name in values)
        sql = (
            f"INSERT INTO {self._table} ({columns}) "
            f"VALUES ({self._dialect.placeholders(len(values))})"
        )
        return SqlQuery(sql, tuple(values.values()))

    def update(
        self,
        where: SqlQuery,
        set_values: Mapping[str, Any],
        increments: Mapping[str, Any],
        single: bool,
    ) -> SqlQuery:
        placeholder = self._dialect.placeholder
        assignments: List[str] = []
        params: List[Any] = []
        for name, value in set_values.items():
            assignments.append(f"{self._columns[name]} = {placeholder}")
            params.append(value)
        for name, value in increments.items():
            column = self._columns[name]
            assignments.append(f"{column} = {column} + {placeholder}")
            params.append(value)
        sql = f"UPDATE {self._table} SET {', '.join(assignments)} WHERE "
        return self._with_where(sql, params, where, single)

    def delete(self, where: SqlQuery, single: bool) -> SqlQuery:
        return self._with_where(f"DELETE FROM {self._table} WHERE ", [], where, single)

    def _with_where(self, sql: str, params: List[Any], where: SqlQuery, single: bool) -> SqlQuery:
        params.extend(where.params)
        if single:
            params.append(1)
            return SqlQuery(sql + self._bounded(where), tuple(params))
        return SqlQuery(sql + where.sql, tuple(params))


__all__ = [
    "ALWAYS_SQL",
    "NEVER_SQL",
    "RelationalTranslator",
    "SqlQuery",
    "StatementCompiler",
]
