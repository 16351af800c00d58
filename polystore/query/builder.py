"""
Query builder DSL over the IR.

Table operations take a ``query`` argument that is either a prebuilt IR node,
``None`` (match everything) or a callable receiving a `QueryBuilder`:

    await users.find(lambda q: (q.email == "a@x.com") | (q.age >= 65))
    await users.delete(lambda q: q.status.in_(["banned", "deleted"]))

The builder only exposes the fields the model declares; any other attribute
raises `MisuseError`.
"""

from __future__ import annotations

from functools import reduce
from typing import Any, Callable, Iterable, Type, Union

from pydantic import BaseModel

from polystore.domain.columns import ModelSchema, introspect
from polystore.errors import MisuseError
from polystore.query.ir import (
    ALWAYS,
    NEVER,
    Backend,
    BinaryLogic,
    CompareOp,
    Comparison,
    InSet,
    LogicOp,
    QueryNode,
    RawEscape,
)


class Field:
    """Reference to one model field; comparison operators build IR nodes."""

    __hash__ = None  # type: ignore[assignment]

    def __init__(self, name: str) -> None:
        self.name = name

    def __eq__(self, other: Any) -> Comparison:  # type: ignore[override]
        return Comparison(self.name, CompareOp.EQ, other)

    def __ne__(self, other: Any) -> Comparison:  # type: ignore[override]
        return Comparison(self.name, CompareOp.NE, other)

    def __lt__(self, other: Any) -> Comparison:
        return Comparison(self.name, CompareOp.LT, other)

    def __le__(self, other: Any) -> Comparison:
        return Comparison(self.name, CompareOp.LE, other)

    def __gt__(self, other: Any) -> Comparison:
        return Comparison(self.name, CompareOp.GT, other)

    def __ge__(self, other: Any) -> Comparison:
        return Comparison(self.name, CompareOp.GE, other)

    def like(self, pattern: str) -> Comparison:
        """SQL-style pattern match (``%`` any run, ``_`` one character)."""
        return Comparison(self.name, CompareOp.LIKE, pattern)

    def in_(self, values: Iterable[Any]) -> InSet:
        return InSet(self.name, tuple(values))

    def __repr__(self) -> str:
        return f"Field({self.name!r})"


class QueryBuilder:
    """Exposes a `Field` per model field plus the logical helpers."""

    everything = ALWAYS
    nothing = NEVER

    def __init__(self, schema: ModelSchema) -> None:
        self._schema = schema
        self._fields = set(schema.field_names)

    @classmethod
    def for_model(cls, model: Type[BaseModel]) -> "QueryBuilder":
        return cls(introspect(model))

    def __getattr__(self, name: str) -> Field:
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in self._fields:
            raise MisuseError(f"{self._schema.table_name} has no persisted field {name!r}")
        return Field(name)

    def field(self, name: str) -> Field:
        return self.__getattr__(name)

    @staticmethod
    def all_of(*nodes: QueryNode) -> QueryNode:
        if not nodes:
            return ALWAYS
        return reduce(lambda left, right: BinaryLogic(LogicOp.AND, left, right), nodes)

    @staticmethod
    def any_of(*nodes: QueryNode) -> QueryNode:
        if not nodes:
            return NEVER
        return reduce(lambda left, right: BinaryLogic(LogicOp.OR, left, right), nodes)

    @staticmethod
    def raw(backend: Union[Backend, str], fragment: Any, *params: Any) -> RawEscape:
        return RawEscape(Backend(backend), fragment, tuple(params))


QueryArg = Union[None, QueryNode, Callable[[QueryBuilder], QueryNode]]


def build_query(schema: ModelSchema, query: QueryArg) -> QueryNode:
    """Resolve a table operation's ``query`` argument into an IR node."""
    if query is None:
        return ALWAYS
    if callable(query):
        return query(QueryBuilder(schema))
    return query


__all__ = ["Field", "QueryBuilder", "QueryArg", "build_query"]
