"""
MongoDB connectivity for the document backend family.

Wraps pymongo's asyncio client (`AsyncMongoClient`). The client is created
with the standard UUID representation and timezone-aware datetimes so the
document codec can keep ``uuid.UUID`` and ``datetime`` values as-is.

At connect time the server is asked for ``hello`` to decide whether
multi-document transactions are available: only replica set members and
mongos routers support them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError
from pymongo.errors import PyMongoError

from polystore.infrastructure.calls import ErrorPolicy, run_backend_call
from polystore.utils.logging import get_logger

log = get_logger(__name__)


def _is_mongo_duplicate(exc: BaseException) -> bool:
    return isinstance(exc, MongoDuplicateKeyError)


MONGO_ERRORS = ErrorPolicy((PyMongoError,), _is_mongo_duplicate)


def supports_transactions(hello: Mapping[str, Any]) -> bool:
    """True when a ``hello`` reply comes from a replica set member or a mongos."""
    return "setName" in hello or hello.get("msg") == "isdbgrid"


@dataclass
class MongoConnection:
    client: AsyncMongoClient
    database: AsyncDatabase
    supports_transactions: bool

    async def close(self) -> None:
        await self.client.close()


async def connect_mongo(url: str, database_name: str) -> MongoConnection:
    """
    Open a client for ``url`` and check the server topology.

    Raises
    ------
    BackendError
        If the server cannot be reached.
    """
    client: AsyncMongoClient = AsyncMongoClient(url, uuidRepresentation="standard", tz_aware=True)
    try:
        hello = await run_backend_call("connect", client.admin.command("hello"), MONGO_ERRORS)
    except BaseException:
        await client.close()
        raise
    transactional = supports_transactions(hello)
    log.debug(
        "connected to mongodb",
        extra={"database": database_name, "transactions": transactional},
    )
    return MongoConnection(client, client[database_name], transactional)


__all__ = ["MONGO_ERRORS", "MongoConnection", "connect_mongo", "supports_transactions"]
