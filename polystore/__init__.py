"""
polystore - backend-agnostic persistence for typed record models.

Declare records as pydantic models and store them in MongoDB, SQLite or
PostgreSQL through one async API:

- a composable query builder compiled to each backend's native query form
- additive schema reconciliation (tables/collections, columns, indexes)
- per-backend type codecs for identifiers, dates, UUIDs and decimals

    db = await open_database("sqlite:///:memory:")
    users = await db.table(User)
    await users.insert(User(email="a@x.com", age=30))
    adults = await users.find(lambda q: q.age >= 18)
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from polystore.config import Settings, get_settings
from polystore.domain.codec import Codec, DbKey
from polystore.domain.columns import (
    ColumnDescriptor,
    Index,
    MaxLength,
    ModelSchema,
    StorageName,
    Transient,
    Unique,
    introspect,
)
from polystore.errors import (
    BackendError,
    DuplicateKeyError,
    MisuseError,
    PolystoreError,
    SchemaReconcileError,
    TranslationUnsupportedError,
)
from polystore.infrastructure.db_factory import open_database, parse_descriptor
from polystore.query import ALWAYS, NEVER, Backend, QueryBuilder, QueryNode
from polystore.schema.reconciler import DdlStep, SchemaSnapshot
from polystore.tables import Database, Table
from polystore.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Entry point
    "open_database",
    "parse_descriptor",
    "Database",
    "Table",
    # Models
    "Codec",
    "DbKey",
    "ColumnDescriptor",
    "ModelSchema",
    "StorageName",
    "Unique",
    "Index",
    "MaxLength",
    "Transient",
    "introspect",
    # Queries
    "ALWAYS",
    "NEVER",
    "Backend",
    "QueryBuilder",
    "QueryNode",
    # Schema
    "DdlStep",
    "SchemaSnapshot",
    # Errors
    "PolystoreError",
    "BackendError",
    "DuplicateKeyError",
    "TranslationUnsupportedError",
    "SchemaReconcileError",
    "MisuseError",
    # Logging
    "configure_logging",
    "get_logger",
]
