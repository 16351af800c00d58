from __future__ import annotations

import logging
from types import SimpleNamespace
from typing import Annotated, Any, ClassVar, Dict, List, Optional

import pytest
from bson import ObjectId
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError
from pymongo.errors import ServerSelectionTimeoutError

from polystore.domain.codec import DbKey, build_document_codec
from polystore.domain.columns import StorageName, Unique
from polystore.errors import BackendError, DuplicateKeyError, MisuseError
from polystore.infrastructure.mongo import MongoConnection, supports_transactions
from polystore.tables.document import DocumentTable

KEY_HEX = "65a1f0c2e4b0a1b2c3d4e5f6"
MODIFIED_COUNT = 2


class User(BaseModel):
    __tablename__: ClassVar[str] = "users"

    id: Optional[DbKey] = None
    email: Annotated[str, Unique()]
    age: int = 0
    nickname: Annotated[Optional[str], StorageName("nick")] = None


class _FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs

    async def to_list(self, length: Optional[int] = None) -> List[Dict[str, Any]]:
        return list(self._docs)


class _FakeCollection:
    def __init__(self, docs: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None) -> None:
        self.docs = docs or []
        self.error = error
        self.calls: List[tuple] = []

    async def insert_one(self, document, session=None):
        self.calls.append(("insert_one", document, session))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(inserted_id=document.get("_id"))

    def find(self, query, skip=0, limit=0, session=None):
        self.calls.append(("find", query, skip, limit, session))
        return _FakeCursor(self.docs)

    async def update_one(self, query, change, session=None):
        self.calls.append(("update_one", query, change, session))
        return SimpleNamespace(modified_count=1)

    async def update_many(self, query, change, session=None):
        self.calls.append(("update_many", query, change, session))
        return SimpleNamespace(modified_count=MODIFIED_COUNT)

    async def delete_one(self, query, session=None):
        self.calls.append(("delete_one", query, session))
        return SimpleNamespace(deleted_count=1)

    async def delete_many(self, query, session=None):
        self.calls.append(("delete_many", query, session))
        return SimpleNamespace(deleted_count=0)


class _FakeDatabase(dict):
    def __missing__(self, name: str) -> _FakeCollection:
        collection = _FakeCollection()
        self[name] = collection
        return collection


def _table(collection: Optional[_FakeCollection] = None, transactional: bool = False) -> DocumentTable[User]:
    database = _FakeDatabase()
    if collection is not None:
        database["users"] = collection
    connection = MongoConnection(client=None, database=database, supports_transactions=transactional)  # type: ignore[arg-type]
    return DocumentTable(User, build_document_codec(), connection)


@pytest.mark.asyncio
async def test_insert_stores_primary_key_as_object_id() -> None:
    collection = _FakeCollection()
    table = _table(collection)

    stored = await table.insert(User(id=KEY_HEX, email="a@x.com", age=30, nickname="al"))

    assert stored.id == KEY_HEX
    ((_, document, session),) = collection.calls
    assert document == {"_id": ObjectId(KEY_HEX), "email": "a@x.com", "age": 30, "nick": "al"}
    assert session is None


@pytest.mark.asyncio
async def test_duplicate_insert_is_mapped() -> None:
    table = _table(_FakeCollection(error=MongoDuplicateKeyError("E11000 duplicate key error")))
    with pytest.raises(DuplicateKeyError):
        await table.insert(User(email="a@x.com"))


@pytest.mark.asyncio
async def test_other_driver_failures_are_backend_errors() -> None:
    table = _table(_FakeCollection(error=ServerSelectionTimeoutError("no servers")))
    with pytest.raises(BackendError) as excinfo:
        await table.insert(User(email="a@x.com"))
    assert excinfo.value.operation == "insert"


@pytest.mark.asyncio
async def test_find_translates_and_decodes() -> None:
    collection = _FakeCollection(docs=[{"_id": ObjectId(KEY_HEX), "email": "a@x.com", "age": 30}])
    table = _table(collection)

    (user,) = await table.find(lambda q: q.age >= 18, skip=3)

    assert user == User(id=DbKey(KEY_HEX), email="a@x.com", age=30)
    assert collection.calls == [("find", {"age": {"$gte": 18}}, 3, 0, None)]


@pytest.mark.asyncio
async def test_zero_limit_returns_nothing_without_querying() -> None:
    collection = _FakeCollection(docs=[{"_id": ObjectId(KEY_HEX), "email": "a@x.com"}])
    table = _table(collection)
    assert await table.find(limit=0) == []
    assert collection.calls == []


@pytest.mark.asyncio
async def test_single_update_uses_update_one_with_set_and_inc() -> None:
    collection = _FakeCollection()
    table = _table(collection)

    count = await table.update(
        lambda q: q.email == "a@x.com", values={"nickname": "al"}, increment={"age": 1}, limit=1
    )

    assert count == 1
    assert collection.calls == [
        ("update_one", {"email": "a@x.com"}, {"$set": {"nick": "al"}, "$inc": {"age": 1}}, None)
    ]


@pytest.mark.asyncio
async def test_unbounded_update_reports_modified_count() -> None:
    collection = _FakeCollection()
    table = _table(collection)
    assert await table.update(None, values={"age": 0}) == MODIFIED_COUNT
    assert collection.calls[0][0] == "update_many"


@pytest.mark.asyncio
async def test_delete_variants() -> None:
    collection = _FakeCollection()
    table = _table(collection)
    assert await table.delete(lambda q: q.age > 100) == 0
    assert await table.delete(lambda q: q.age > 1, limit=1) == 1
    assert [call[0] for call in collection.calls] == ["delete_many", "delete_one"]


@pytest.mark.asyncio
async def test_transaction_on_standalone_server_is_misuse() -> None:
    table = _table()

    async def callback(tx):
        raise AssertionError("must not run")

    with pytest.raises(MisuseError, match="best_effort"):
        await table.transaction(callback)


@pytest.mark.asyncio
async def test_best_effort_transaction_runs_and_warns(caplog) -> None:
    collection = _FakeCollection()
    table = _table(collection)

    async def callback(tx):
        await tx.insert(User(email="a@x.com"))
        return "ok"

    with caplog.at_level(logging.WARNING, logger="polystore.tables.document"):
        assert await table.transaction(callback, best_effort=True) == "ok"

    assert any("without atomicity" in record.getMessage() for record in caplog.records)
    assert collection.calls[0][0] == "insert_one"


@pytest.mark.parametrize(
    ("hello", "expected"),
    [
        ({"isWritablePrimary": True}, False),
        ({"isWritablePrimary": True, "setName": "rs0"}, True),
        ({"isWritablePrimary": True, "msg": "isdbgrid"}, True),
    ],
)
def test_transaction_support_detection(hello, expected: bool) -> None:
    assert supports_transactions(hello) is expected


class Counter(BaseModel):
    __tablename__: ClassVar[str] = "counters"

    id: Optional[int] = None
    name: str


def _counter_table(collection: _FakeCollection) -> DocumentTable[Counter]:
    database = _FakeDatabase(counters=collection)
    connection = MongoConnection(client=None, database=database, supports_transactions=False)  # type: ignore[arg-type]
    return DocumentTable(Counter, build_document_codec(), connection)


@pytest.mark.asyncio
async def test_unset_non_db_key_primary_key_is_misuse() -> None:
    collection = _FakeCollection()
    table = _counter_table(collection)

    with pytest.raises(MisuseError, match="DbKey"):
        await table.insert(Counter(name="a"))
    assert collection.calls == []


@pytest.mark.asyncio
async def test_explicit_integer_primary_key_is_stored_as_id() -> None:
    collection = _FakeCollection()
    table = _counter_table(collection)

    stored = await table.insert(Counter(id=7, name="a"))

    assert stored.id == 7
    assert collection.calls == [("insert_one", {"_id": 7, "name": "a"}, None)]


@pytest.mark.asyncio
async def test_raw_query_runs_the_filter_as_given() -> None:
    docs = [{"_id": ObjectId(KEY_HEX), "email": "a@x.com", "extra": [1, 2]}]
    collection = _FakeCollection(docs=docs)
    table = _table(collection)

    assert await table.raw_query({"extra": {"$size": 2}}) == docs
    assert collection.calls == [("find", {"extra": {"$size": 2}}, 0, 0, None)]


@pytest.mark.asyncio
@pytest.mark.parametrize("args", [("SELECT 1",), ({"age": 1}, 5)])
async def test_raw_query_needs_a_single_filter_document(args) -> None:
    collection = _FakeCollection()
    with pytest.raises(MisuseError):
        await _table(collection).raw_query(*args)
    assert collection.calls == []
