"""
MongoDB DDL for the schema reconciler.

Collections have no physical columns, so reconciliation only creates the
collection and the declared indexes. Indexes are built with
``background=True``. An index already covering the same single key with the
same uniqueness counts as present whatever its name, and the primary key is
always covered by Mongo's built-in ``_id`` index.
"""

from __future__ import annotations

from typing import Any, Sequence

from pymongo import ASCENDING
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import CollectionInvalid

from polystore.domain.columns import ColumnDescriptor
from polystore.errors import SchemaReconcileError
from polystore.infrastructure.calls import run_backend_call
from polystore.infrastructure.mongo import MONGO_ERRORS
from polystore.schema.reconciler import DdlStep, SchemaSnapshot, StepKind, index_name
from polystore.translators.document import document_key
from polystore.utils.logging import get_logger

log = get_logger(__name__)


class DocumentSchemaBackend:
    """Schema introspection and DDL over a pymongo `AsyncDatabase`."""

    name = "mongodb"
    has_columns = False

    def __init__(self, database: AsyncDatabase) -> None:
        self._database = database

    async def fetch_snapshot(self, object_name: str) -> SchemaSnapshot:
        names = await run_backend_call(
            "show_collections",
            self._database.list_collection_names(filter={"name": object_name}),
            MONGO_ERRORS,
        )
        if object_name not in names:
            return SchemaSnapshot(exists=False)
        indexes = await run_backend_call(
            "show_indexes", self._database[object_name].index_information(), MONGO_ERRORS
        )
        return SchemaSnapshot(exists=True, indexes=indexes)

    def create_step(self, object_name: str, columns: Sequence[ColumnDescriptor]) -> DdlStep:
        return DdlStep(StepKind.CREATE, object_name, None, f"createCollection({object_name!r})")

    def add_column_step(self, object_name: str, column: ColumnDescriptor) -> DdlStep:
        raise SchemaReconcileError(object_name, column.name, "collections have no physical columns")

    def index_step(self, object_name: str, column: ColumnDescriptor) -> DdlStep:
        key = document_key(column)
        name = index_name(object_name, column)
        statement = (
            f"createIndex({object_name!r}, {{{key!r}: 1}}, "
            f"name={name!r}, unique={column.unique}, background=True)"
        )
        return DdlStep(StepKind.CREATE_INDEX, object_name, column.name, statement, payload=(key, name, column.unique))

    def index_present(self, snapshot: SchemaSnapshot, object_name: str, column: ColumnDescriptor) -> bool:
        if column.primary_key:
            return True
        if index_name(object_name, column) in snapshot.indexes:
            return True
        wanted = [(document_key(column), ASCENDING)]
        for info in snapshot.indexes.values():
            keys = [tuple(pair) for pair in info.get("key", [])]
            if keys == wanted and bool(info.get("unique", False)) == column.unique:
                return True
        return False

    async def _create_collection(self, name: str) -> Any:
        try:
            return await self._database.create_collection(name)
        except CollectionInvalid:
            # created concurrently since the snapshot was taken
            log.debug("collection already exists", extra={"collection": name})
            return None

    async def apply(self, step: DdlStep) -> None:
        if step.kind is StepKind.CREATE:
            await run_backend_call("create_collection", self._create_collection(step.object_name), MONGO_ERRORS)
            return
        if step.kind is StepKind.CREATE_INDEX:
            key, name, unique = step.payload
            await run_backend_call(
                "create_index",
                self._database[step.object_name].create_index(
                    [(key, ASCENDING)], name=name, unique=unique, background=True
                ),
                MONGO_ERRORS,
            )
            return
        raise SchemaReconcileError(step.object_name, step.column, f"unsupported step {step.kind.value}")


__all__ = ["DocumentSchemaBackend"]
