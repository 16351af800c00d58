"""
Table facade shared by every backend family.

A `Table` is bound to one record model and owns the backend-neutral part of
each operation: resolving the ``query`` argument into IR, validating
skip/limit and partial updates before any I/O, encoding records through the
database's codec and decoding result rows back into model instances.
Backend subclasses only implement the native calls (``_insert``, ``_find``,
``_update``, ``_delete``) and ``transaction``.

A `Database` is the handle returned by `open_database`; ``table(Model)``
introspects the model, reconciles its schema and returns a bound `Table`.
"""

from __future__ import annotations

import abc
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

from pydantic import BaseModel

from polystore.domain.codec import Codec, DbKey
from polystore.domain.columns import PRIMARY_KEY_FIELD, ColumnDescriptor, ModelSchema, introspect
from polystore.errors import MisuseError
from polystore.query.builder import QueryArg, build_query
from polystore.query.ir import QueryNode
from polystore.schema.reconciler import DdlStep, SchemaBackend, plan_reconcile, reconcile

ModelT = TypeVar("ModelT", bound=BaseModel)
R = TypeVar("R")

Row = Mapping[str, Any]


def _check_window(skip: Optional[int], limit: Optional[int]) -> None:
    for name, value in (("skip", skip), ("limit", limit)):
        if value is not None and value < 0:
            raise MisuseError(f"{name} must be non-negative, got {value}")


def _check_single(limit: Optional[int]) -> bool:
    """Return True when the write is bounded to one record."""
    if limit is None:
        return False
    if limit == 1:
        return True
    raise MisuseError(f"limit must be None (all matches) or 1, got {limit}")


class Table(abc.ABC, Generic[ModelT]):
    """
    Typed operations on one table/collection.

    Attributes
    ----------
    model : Type[BaseModel]
        The record model the table is bound to.
    schema : ModelSchema
        Introspected storage shape of ``model``.
    """

    # whether the backend generates primary keys the record leaves unset
    assigns_keys = True

    def __init__(self, model: Type[ModelT], codec: Codec, schema_backend: SchemaBackend) -> None:
        self.model = model
        self.schema: ModelSchema = introspect(model)
        self._codec = codec
        self._schema_backend = schema_backend

    @property
    def name(self) -> str:
        return self.schema.table_name

    # -- schema ------------------------------------------------------------

    async def plan(self) -> List[DdlStep]:
        """Steps `reconcile` would apply right now, without applying them."""
        snapshot = await self._schema_backend.fetch_snapshot(self.name)
        return plan_reconcile(self.name, self.schema.columns, snapshot, self._schema_backend)

    async def reconcile(self) -> List[DdlStep]:
        """Additively bring the live schema in line with the model."""
        snapshot = await self._schema_backend.fetch_snapshot(self.name)
        return await reconcile(self.name, self.schema.columns, snapshot, self._schema_backend)

    async def show_columns(self) -> Dict[str, Dict[str, Any]]:
        """Live columns as reported by the backend (empty for collections)."""
        snapshot = await self._schema_backend.fetch_snapshot(self.name)
        return {name: dict(info) for name, info in snapshot.columns.items()}

    # -- encoding ----------------------------------------------------------

    @abc.abstractmethod
    def _row_key(self, column: ColumnDescriptor) -> str:
        """Key under which ``column`` appears in stored rows/documents."""
        raise NotImplementedError

    def _with_key(self, record: ModelT) -> ModelT:
        column = self.schema.column(PRIMARY_KEY_FIELD)
        if column is None or getattr(record, PRIMARY_KEY_FIELD) is not None:
            return record
        if isinstance(column.native_type, type) and issubclass(column.native_type, DbKey):
            return record.model_copy(update={PRIMARY_KEY_FIELD: DbKey.generate()})
        if not self.assigns_keys:
            raise MisuseError(
                f"{self.name} cannot assign a {PRIMARY_KEY_FIELD!r} of this type; "
                f"set it explicitly or declare it as DbKey"
            )
        return record

    def _encode_record(self, record: ModelT) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for column in self.schema.columns:
            value = getattr(record, column.name)
            if value is None and column.primary_key:
                # let the backend assign it
                continue
            values[column.name] = self._codec.encode(value)
        return values

    def _encode_partial(self, partial: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        encoded: Dict[str, Any] = {}
        for name, value in (partial or {}).items():
            if self.schema.column(name) is None:
                raise MisuseError(f"{self.name} has no persisted field {name!r}")
            encoded[name] = self._codec.encode(value)
        return encoded

    def _decode_row(self, row: Row) -> ModelT:
        data: Dict[str, Any] = {}
        for column in self.schema.columns:
            key = self._row_key(column)
            if key in row:
                data[column.name] = self._codec.decode(row[key], column.native_type)
        return self.model.model_validate(data)

    # -- operations --------------------------------------------------------

    async def insert(self, record: ModelT) -> ModelT:
        """
        Insert one record.

        Returns
        -------
        ModelT
            The stored record; a missing `DbKey` primary key is generated.

        Raises
        ------
        DuplicateKeyError
            If a unique column already holds one of the record's values.
        """
        if not isinstance(record, self.model):
            raise MisuseError(f"expected {self.model.__name__}, got {type(record).__name__}")
        record = self._with_key(record)
        await self._insert(self._encode_record(record))
        return record

    async def find(
        self,
        query: QueryArg = None,
        *,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[ModelT]:
        """
        Records matching ``query``.

        ``skip`` and ``limit`` are independent; either may be omitted.
        """
        _check_window(skip, limit)
        node = build_query(self.schema, query)
        rows = await self._find(node, skip, limit)
        return [self._decode_row(row) for row in rows]

    async def find_one(self, query: QueryArg = None) -> Optional[ModelT]:
        found = await self.find(query, limit=1)
        return found[0] if found else None

    async def update(
        self,
        query: QueryArg,
        *,
        values: Optional[Mapping[str, Any]] = None,
        increment: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> int:
        """
        Apply a partial update to matching records.

        Parameters
        ----------
        query : QueryArg
            Predicate selecting the records.
        values : Mapping[str, Any], optional
            Fields to overwrite.
        increment : Mapping[str, Any], optional
            Numeric fields to increment by the given amounts.
        limit : Optional[int]
            ``None`` updates every match, ``1`` at most one.

        Returns
        -------
        int
            Number of records modified.
        """
        single = _check_single(limit)
        set_values = self._encode_partial(values)
        increments = self._encode_partial(increment)
        if not set_values and not increments:
            raise MisuseError("update needs at least one field to set or increment")
        node = build_query(self.schema, query)
        return await self._update(node, set_values, increments, single)

    async def delete(self, query: QueryArg = None, *, limit: Optional[int] = None) -> int:
        """Remove matching records and return how many were removed."""
        single = _check_single(limit)
        node = build_query(self.schema, query)
        return await self._delete(node, single)

    async def raw_query(self, statement: Any, *params: Any) -> List[Dict[str, Any]]:
        """
        Run a native read and return its rows undecoded.

        ``statement`` is SQL text with the dialect's placeholders on relational
        backends and a filter document on MongoDB. ``params`` are encoded
        through the codec before they are bound.
        """
        return await self._raw_query(statement, tuple(self._codec.encode(p) for p in params))

    @abc.abstractmethod
    async def transaction(
        self,
        callback: Callable[["Table[ModelT]"], Awaitable[R]],
        *,
        best_effort: bool = False,
    ) -> R:
        """
        Run ``callback`` with a table bound to one transaction.

        The transaction commits when the callback returns and rolls back when
        it raises; the callback's exception is re-raised unchanged.
        """
        raise NotImplementedError

    # -- backend calls -----------------------------------------------------

    @abc.abstractmethod
    async def _insert(self, values: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def _find(self, node: QueryNode, skip: Optional[int], limit: Optional[int]) -> List[Row]:
        raise NotImplementedError

    @abc.abstractmethod
    async def _update(
        self,
        node: QueryNode,
        set_values: Dict[str, Any],
        increments: Dict[str, Any],
        single: bool,
    ) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def _delete(self, node: QueryNode, single: bool) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    async def _raw_query(self, statement: Any, params: Tuple[Any, ...]) -> List[Dict[str, Any]]:
        raise NotImplementedError


class Database(abc.ABC):
    """Handle to one configured backend; creates model-bound tables."""

    name: str

    def __init__(self, codec: Codec) -> None:
        self.codec = codec

    @abc.abstractmethod
    def _make_table(self, model: Type[ModelT]) -> Table[ModelT]:
        raise NotImplementedError

    async def table(self, model: Type[ModelT], *, reconcile: bool = True) -> Table[ModelT]:
        """
        Bind ``model`` to its table/collection.

        With ``reconcile`` (the default) the live schema is first brought in
        line with the model.
        """
        table = self._make_table(model)
        if reconcile:
            await table.reconcile()
        return table

    @abc.abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    async def __aenter__(self) -> "Database":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


__all__ = ["Database", "Table"]
