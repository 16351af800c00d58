"""
Type codec: bidirectional conversion between Python values and storable values.

A `Codec` is a registry of converter pairs keyed by Python type. Encoding looks
the value's type up along its MRO; decoding looks the target type up the same
way. Types nobody registered pass through unchanged in both directions, which
keeps the codec usable for any backend without knowing every type up front.

Each database handle owns its own codec instance (built by one of the
``build_*_codec`` factories below); there is no process-wide registry.

Usage:
    codec = build_sqlite_codec()
    stored = codec.encode(DbKey.generate())     # -> 24-char hex str
    key = codec.decode(stored, DbKey)           # -> DbKey
"""

from __future__ import annotations

import re
import types
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple, Union, get_args, get_origin

from bson import Decimal128, ObjectId
from pydantic_core import core_schema

Converter = Callable[[Any], Any]

_HEX_KEY = re.compile(r"^[0-9a-f]{24}$")


class DbKey(str):
    """
    Opaque 12-byte record identifier, held as 24 lowercase hex characters.

    Usable directly as a pydantic field type. The document backend stores it
    as a native ``ObjectId``; relational backends store the hex text.
    """

    def __new__(cls, value: Any) -> "DbKey":
        if isinstance(value, (bytes, bytearray)) and len(value) == 12:
            text = bytes(value).hex()
        else:
            text = str(value).lower()
        if not _HEX_KEY.match(text):
            raise ValueError(f"invalid DbKey: {value!r}")
        return super().__new__(cls, text)

    @classmethod
    def generate(cls) -> "DbKey":
        """Create a new, time-ordered key."""
        return cls(str(ObjectId()))

    def __repr__(self) -> str:
        return f"DbKey('{str.__str__(self)}')"

    @classmethod
    def __get_pydantic_core_schema__(cls, source: Any, handler: Any) -> core_schema.CoreSchema:
        return core_schema.no_info_after_validator_function(cls, core_schema.str_schema())


def unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
    """
    Strip ``Optional[...]`` / ``X | None`` from an annotation.

    Returns the inner type and whether ``None`` was part of the union.
    """
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        nullable = len(args) != len(get_args(annotation))
        if len(args) == 1:
            return args[0], nullable
        return Union[tuple(args)], nullable
    return annotation, False


def _identity(value: Any) -> Any:
    return value


class Codec:
    """
    Registry of ``(encode, decode)`` converter pairs keyed by Python type.

    Both directions are pure; ``decode(encode(v), type(v)) == v`` holds for
    every registered type, and re-encoding an encoded value is the identity
    because storable types are never registered themselves.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._converters: Dict[type, Tuple[Converter, Converter]] = {}

    def register(self, py_type: type, encode: Converter, decode: Converter) -> "Codec":
        """Register a converter pair for ``py_type`` (and its subclasses)."""
        self._converters[py_type] = (encode, decode)
        return self

    def keep(self, py_type: type) -> "Codec":
        """Store ``py_type`` as-is, shadowing any converter registered for a base class."""
        return self.register(py_type, _identity, _identity)

    def _lookup(self, py_type: type) -> Optional[Tuple[Converter, Converter]]:
        for klass in py_type.__mro__:
            converters = self._converters.get(klass)
            if converters is not None:
                return converters
        return None

    def encode(self, value: Any) -> Any:
        if value is None:
            return None
        converters = self._lookup(type(value))
        if converters is None:
            return value
        return converters[0](value)

    def decode(self, stored: Any, target_type: Any) -> Any:
        if stored is None:
            return None
        target, _ = unwrap_optional(target_type)
        if not isinstance(target, type) or type(stored) is target:
            return stored
        converters = self._lookup(target)
        if converters is None:
            return stored
        return converters[1](stored)


def _sortable_isoformat(value: datetime) -> str:
    """ISO-8601 text that sorts by instant: aware values in UTC, fixed precision."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds")


def _date_from_datetime(value: Any) -> Any:
    return value.date() if isinstance(value, datetime) else value


def build_document_codec() -> Codec:
    """Codec for BSON documents (MongoDB)."""
    return (
        Codec("document")
        .keep(datetime)
        .keep(uuid.UUID)
        .register(DbKey, lambda key: ObjectId(str(key)), lambda oid: DbKey(str(oid)))
        .register(date, lambda d: datetime.combine(d, time.min), _date_from_datetime)
        .register(
            Decimal,
            Decimal128,
            lambda v: v.to_decimal() if isinstance(v, Decimal128) else Decimal(str(v)),
        )
    )


def build_sqlite_codec() -> Codec:
    """Codec for SQLite, which only stores NULL, INTEGER, REAL, TEXT and BLOB."""
    return (
        Codec("sqlite")
        .register(bool, int, bool)
        .register(DbKey, str, DbKey)
        .register(uuid.UUID, str, lambda v: uuid.UUID(str(v)))
        .register(datetime, _sortable_isoformat, datetime.fromisoformat)
        .register(date, lambda v: v.isoformat(), date.fromisoformat)
        .register(Decimal, str, lambda v: Decimal(str(v)))
    )


def build_postgres_codec() -> Codec:
    """Codec for PostgreSQL; psycopg adapts most Python types natively."""
    return Codec("postgres").register(DbKey, str, DbKey)


__all__ = [
    "Codec",
    "DbKey",
    "unwrap_optional",
    "build_document_codec",
    "build_sqlite_codec",
    "build_postgres_codec",
]
