"""
Model introspection: turns a pydantic record model into column descriptors.

This is the only module that reads pydantic reflection data. Everything else
(translators, reconciler, tables) consumes the immutable `ModelSchema` it
produces, which is computed once per model class and cached.

Field metadata is declared with ``typing.Annotated`` markers:

    class User(BaseModel):
        __tablename__: ClassVar[str] = "users"

        id: Optional[DbKey] = None
        email: Annotated[str, Unique(), MaxLength(120)]
        age: Annotated[int, Index()] = 0
        nickname: Annotated[Optional[str], StorageName("nick")] = None
        scratch: Annotated[str, Transient()] = ""
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional, Tuple, Type

from pydantic import BaseModel

from polystore.domain.codec import unwrap_optional

PRIMARY_KEY_FIELD = "id"


@dataclass(frozen=True)
class StorageName:
    """Store the field under a different column/key name."""

    name: str


@dataclass(frozen=True)
class Unique:
    """Back the field with a unique index."""


@dataclass(frozen=True)
class Index:
    """Back the field with a non-unique index."""


@dataclass(frozen=True)
class MaxLength:
    """Maximum length hint for textual fields (``VARCHAR(n)`` on SQL)."""

    max_length: int


@dataclass(frozen=True)
class Transient:
    """Exclude the field from persistence."""


@dataclass(frozen=True)
class ColumnDescriptor:
    """Introspected metadata for one persisted field."""

    name: str
    storage_name: str
    native_type: Any
    nullable: bool = False
    unique: bool = False
    indexed: bool = False
    max_length: Optional[int] = None
    primary_key: bool = False


@dataclass(frozen=True)
class ModelSchema:
    """Table/collection name plus the ordered column descriptors of a model."""

    model: Type[BaseModel]
    table_name: str
    columns: Tuple[ColumnDescriptor, ...]

    def column(self, name: str) -> Optional[ColumnDescriptor]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)


def _describe(name: str, field: Any) -> Optional[ColumnDescriptor]:
    metadata = list(field.metadata)
    if field.exclude is True or any(isinstance(item, Transient) for item in metadata):
        return None

    native_type, nullable = unwrap_optional(field.annotation)
    storage_name = name
    max_length: Optional[int] = None
    unique = indexed = False
    for item in metadata:
        if isinstance(item, StorageName):
            storage_name = item.name
        elif isinstance(item, Unique):
            unique = True
        elif isinstance(item, Index):
            indexed = True
        elif isinstance(getattr(item, "max_length", None), int):
            # MaxLength above or annotated_types.MaxLen from Field(max_length=...)
            max_length = item.max_length

    if native_type is not str:
        max_length = None

    return ColumnDescriptor(
        name=name,
        storage_name=storage_name,
        native_type=native_type,
        nullable=nullable,
        unique=unique,
        indexed=indexed,
        max_length=max_length,
        primary_key=name == PRIMARY_KEY_FIELD,
    )


@lru_cache(maxsize=None)
def introspect(model: Type[BaseModel]) -> ModelSchema:
    """
    Enumerate the persisted fields of ``model`` in declaration order.

    Parameters
    ----------
    model : Type[BaseModel]
        The record model class.

    Returns
    -------
    ModelSchema
        Cached, immutable description of the model's storage shape.
    """
    table_name = getattr(model, "__tablename__", None) or model.__name__
    columns = []
    for name, field in model.model_fields.items():
        column = _describe(name, field)
        if column is not None:
            columns.append(column)
    return ModelSchema(model=model, table_name=table_name, columns=tuple(columns))


__all__ = [
    "ColumnDescriptor",
    "ModelSchema",
    "StorageName",
    "Unique",
    "Index",
    "MaxLength",
    "Transient",
    "PRIMARY_KEY_FIELD",
    "introspect",
]
