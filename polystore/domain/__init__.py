"""
Domain package for polystore.

Exports the type codec and the model introspector: the two pieces that know
how record models map onto stored values. Keep this package free of I/O.
"""

from polystore.domain.codec import (
    Codec,
    DbKey,
    build_document_codec,
    build_postgres_codec,
    build_sqlite_codec,
)
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

__all__ = [
    "Codec",
    "DbKey",
    "build_document_codec",
    "build_postgres_codec",
    "build_sqlite_codec",
    "ColumnDescriptor",
    "Index",
    "MaxLength",
    "ModelSchema",
    "StorageName",
    "Transient",
    "Unique",
    "introspect",
]
