"""
Database factory for polystore.

`open_database(url)` picks the backend family from the URL scheme, builds
the backend's codec and returns a connected `Database` handle:

    ┌──────────────────────────────┬──────────────────────────────┐
    │ scheme                       │ backend                      │
    ├──────────────────────────────┼──────────────────────────────┤
    │ mongodb://, mongodb+srv://   │ MongoDB (pymongo async)      │
    │ sqlite:///<path>             │ SQLite (aiosqlite)           │
    │ postgresql://, postgres://   │ PostgreSQL (psycopg pool)    │
    └──────────────────────────────┴──────────────────────────────┘

The descriptor is validated before any connection is attempted: a URL with
no database name (or SQLite path) fails fast with `MisuseError`. SQLite
paths follow the usual convention: ``sqlite:///app.db`` is relative,
``sqlite:////var/db/app.db`` absolute and ``sqlite:///:memory:`` in-memory.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote, urlsplit

from polystore.config import get_settings
from polystore.domain.codec import build_document_codec, build_postgres_codec, build_sqlite_codec
from polystore.errors import MisuseError
from polystore.infrastructure.mongo import connect_mongo
from polystore.infrastructure.sql_drivers import AiosqliteDriver, PsycopgDriver
from polystore.tables.abstract import Database
from polystore.tables.document import DocumentDatabase
from polystore.tables.relational import RelationalDatabase
from polystore.utils.logging import get_logger

log = get_logger(__name__)

MONGO_SCHEMES = ("mongodb", "mongodb+srv")
SQLITE_SCHEMES = ("sqlite",)
POSTGRES_SCHEMES = ("postgresql", "postgres")


@dataclass(frozen=True)
class DatabaseDescriptor:
    """
    Parsed connection URL.

    Attributes
    ----------
    family : str
        ``"mongodb"``, ``"sqlite"`` or ``"postgresql"``.
    url : str
        The URL as given, handed to the driver.
    database : str
        Database name, or the SQLite file path.
    """

    family: str
    url: str
    database: str


def parse_descriptor(url: str) -> DatabaseDescriptor:
    """
    Validate ``url`` and extract the backend family and database name.

    Raises
    ------
    MisuseError
        On an unknown scheme or a missing database name/path.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    database = unquote(parts.path[1:] if parts.path.startswith("/") else parts.path)

    if scheme in MONGO_SCHEMES:
        family = "mongodb"
    elif scheme in SQLITE_SCHEMES:
        family = "sqlite"
    elif scheme in POSTGRES_SCHEMES:
        family = "postgresql"
    else:
        raise MisuseError(f"unsupported database URL scheme {parts.scheme!r}")

    if not database or (family != "sqlite" and "/" in database):
        raise MisuseError(f"database URL {redact_url(url)!r} does not name a database")
    return DatabaseDescriptor(family=family, url=url, database=database)


def redact_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.password is None:
        return url
    netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
    return parts._replace(netloc=netloc).geturl()


async def open_database(
    url: Optional[str] = None,
    *,
    pool_min_size: Optional[int] = None,
    pool_max_size: Optional[int] = None,
) -> Database:
    """
    Connect to the database described by ``url``.

    Parameters
    ----------
    url : Optional[str]
        Connection URL; defaults to ``DATABASE_URL`` from settings.
    pool_min_size, pool_max_size : Optional[int]
        PostgreSQL pool bounds; default to the ``DB_POOL_*`` settings.

    Returns
    -------
    Database
        Handle owning the connection; close it (or use ``async with``).

    Raises
    ------
    MisuseError
        If the URL is malformed, before any connection is attempted.
    BackendError
        If the backend cannot be reached.
    """
    settings = get_settings()
    descriptor = parse_descriptor(url or settings.database_url)
    log.info("opening database", extra={"backend": descriptor.family, "database": descriptor.database})

    if descriptor.family == "mongodb":
        connection = await connect_mongo(descriptor.url, descriptor.database)
        return DocumentDatabase(connection, build_document_codec())
    if descriptor.family == "sqlite":
        driver = await AiosqliteDriver.connect(descriptor.database)
        return RelationalDatabase(driver, build_sqlite_codec())
    pg_driver = await PsycopgDriver.connect(
        descriptor.url,
        min_size=pool_min_size if pool_min_size is not None else settings.db_pool_min_size,
        max_size=pool_max_size if pool_max_size is not None else settings.db_pool_max_size,
    )
    return RelationalDatabase(pg_driver, build_postgres_codec())


__all__ = ["DatabaseDescriptor", "open_database", "parse_descriptor", "redact_url"]
