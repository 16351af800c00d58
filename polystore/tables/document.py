"""
Document tables: MongoDB collections through pymongo's asyncio client.

Transactions
------------
Multi-document transactions need a replica set or a sharded cluster. When
the server supports them, ``transaction`` runs the callback inside a session
transaction. On a standalone server it raises `MisuseError`, unless the
caller passes ``best_effort=True``: the callback then runs without atomicity
and a warning is logged.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.errors import PyMongoError

from polystore.domain.codec import Codec
from polystore.domain.columns import ColumnDescriptor
from polystore.errors import BackendError, MisuseError
from polystore.infrastructure.calls import run_backend_call
from polystore.infrastructure.mongo import MONGO_ERRORS, MongoConnection
from polystore.query.ir import QueryNode
from polystore.schema.document import DocumentSchemaBackend
from polystore.tables.abstract import Database, Row, Table
from polystore.translators.document import DocumentTranslator, document_key
from polystore.utils.logging import get_logger

log = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)
R = TypeVar("R")


class DocumentTable(Table[ModelT]):
    # the server would assign an ObjectId, which only a DbKey field can hold
    assigns_keys = False

    def __init__(
        self,
        model: Type[ModelT],
        codec: Codec,
        connection: MongoConnection,
        session: Optional[AsyncClientSession] = None,
    ) -> None:
        super().__init__(model, codec, DocumentSchemaBackend(connection.database))
        self._connection = connection
        self._session = session
        self._collection = connection.database[self.schema.table_name]
        self._translator = DocumentTranslator(self.schema, codec)

    def _row_key(self, column: ColumnDescriptor) -> str:
        return document_key(column)

    def _document(self, values: Dict[str, Any]) -> Dict[str, Any]:
        return {document_key(self.schema.column(name)): value for name, value in values.items()}

    async def _insert(self, values: Dict[str, Any]) -> None:
        await run_backend_call(
            "insert",
            self._collection.insert_one(self._document(values), session=self._session),
            MONGO_ERRORS,
        )

    async def _find(self, node: QueryNode, skip: Optional[int], limit: Optional[int]) -> List[Row]:
        query = self._translator.translate(node)
        if limit == 0:
            # pymongo treats limit=0 as "no limit"
            return []
        cursor = self._collection.find(query, skip=skip or 0, limit=limit or 0, session=self._session)
        return await run_backend_call("find", cursor.to_list(), MONGO_ERRORS)

    async def _update(
        self,
        node: QueryNode,
        set_values: Dict[str, Any],
        increments: Dict[str, Any],
        single: bool,
    ) -> int:
        query = self._translator.translate(node)
        change: Dict[str, Any] = {}
        if set_values:
            change["$set"] = self._document(set_values)
        if increments:
            change["$inc"] = self._document(increments)
        method = self._collection.update_one if single else self._collection.update_many
        result = await run_backend_call(
            "update", method(query, change, session=self._session), MONGO_ERRORS
        )
        return result.modified_count

    async def _delete(self, node: QueryNode, single: bool) -> int:
        query = self._translator.translate(node)
        method = self._collection.delete_one if single else self._collection.delete_many
        result = await run_backend_call("delete", method(query, session=self._session), MONGO_ERRORS)
        return result.deleted_count

    async def _raw_query(self, statement: Any, params: Tuple[Any, ...]) -> List[Dict[str, Any]]:
        if not isinstance(statement, Mapping) or params:
            raise MisuseError(f"{self.name} raw queries take one filter document and no parameters")
        cursor = self._collection.find(dict(statement), session=self._session)
        return await run_backend_call("raw_query", cursor.to_list(), MONGO_ERRORS)

    async def transaction(
        self,
        callback: Callable[[Table[ModelT]], Awaitable[R]],
        *,
        best_effort: bool = False,
    ) -> R:
        if self._session is not None:
            raise MisuseError("nested transactions are not supported")
        if not self._connection.supports_transactions:
            if not best_effort:
                raise MisuseError(
                    "MongoDB server does not support multi-document transactions "
                    "(standalone server); pass best_effort=True to run without atomicity"
                )
            log.warning(
                "running transaction callback without atomicity",
                extra={"collection": self.name},
            )
            return await callback(self)
        try:
            async with self._connection.client.start_session() as session:
                async with await session.start_transaction():
                    bound = DocumentTable(self.model, self._codec, self._connection, session)
                    return await callback(bound)
        except PyMongoError as exc:
            # start/commit/abort failures; operation errors are already BackendError
            raise BackendError("transaction", str(exc)) from exc


class DocumentDatabase(Database):
    """Database handle over one MongoDB database."""

    name = "mongodb"

    def __init__(self, connection: MongoConnection, codec: Codec) -> None:
        super().__init__(codec)
        self.connection = connection

    def _make_table(self, model: Type[ModelT]) -> DocumentTable[ModelT]:
        return DocumentTable(model, self.codec, self.connection)

    async def close(self) -> None:
        await self.connection.close()


__all__ = ["DocumentDatabase", "DocumentTable"]
