"""
Document translator: compiles the query IR into MongoDB filter documents.

Mapping:
- Always -> ``{}``; Never -> ``{"$expr": False}`` (a literal-false expression,
  so no sentinel field can ever collide with stored data).
- EQ -> ``{key: value}``; NE/GT/LT/GE/LE -> ``$ne/$gt/$lt/$gte/$lte``.
- IN -> ``$in``; LIKE -> anchored ``$regex`` equivalent of the SQL pattern.
- AND merges sibling filters when no key collides, otherwise ``$and``.
- OR -> ``$or``; NOT -> ``$nor``.

The record primary key (``id``) is stored under Mongo's ``_id``.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping

from polystore.domain.codec import Codec
from polystore.domain.columns import ColumnDescriptor, ModelSchema
from polystore.errors import TranslationUnsupportedError
from polystore.query.ir import (
    Always,
    Backend,
    BinaryLogic,
    CompareOp,
    Comparison,
    InSet,
    LogicOp,
    Never,
    QueryNode,
    RawEscape,
    UnaryLogic,
    UnaryOp,
)
from polystore.utils.logging import get_logger

log = get_logger(__name__)

DocumentQuery = Dict[str, Any]

MONGO_ID = "_id"
NEVER_FILTER: DocumentQuery = {"$expr": False}

_OPERATORS = {
    CompareOp.NE: "$ne",
    CompareOp.GT: "$gt",
    CompareOp.LT: "$lt",
    CompareOp.GE: "$gte",
    CompareOp.LE: "$lte",
}


def document_key(column: ColumnDescriptor) -> str:
    """Storage key of ``column`` inside a document."""
    return MONGO_ID if column.primary_key else column.storage_name


def like_to_regex(pattern: str) -> str:
    """
    Convert a SQL LIKE pattern into an equivalent anchored regular expression.

    ``%`` matches any run, ``_`` one character and ``\\`` escapes the next
    character, mirroring ``LIKE ... ESCAPE '\\'`` on the relational side.
    """
    parts = ["^"]
    escaped = False
    for char in pattern:
        if escaped:
            parts.append(re.escape(char))
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    if escaped:
        parts.append(re.escape("\\"))
    parts.append("$")
    return "".join(parts)


def _is_operator_map(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(key.startswith("$") for key in value)


def merge_and(left: DocumentQuery, right: DocumentQuery) -> DocumentQuery:
    """
    AND two filters by merging their keys.

    Operator maps on the same field merge when their operators differ; any
    other collision falls back to an explicit ``$and`` so no condition is lost.
    """
    if not left:
        return right
    if not right:
        return left
    merged = dict(left)
    for key, value in right.items():
        if key not in merged:
            merged[key] = value
            continue
        existing = merged[key]
        if _is_operator_map(existing) and _is_operator_map(value) and not (existing.keys() & value.keys()):
            merged[key] = {**existing, **value}
            continue
        return {"$and": [left, right]}
    return merged


class DocumentTranslator:
    """Translate IR trees into MongoDB filter documents."""

    backend = Backend.DOCUMENT

    def __init__(self, schema: ModelSchema, codec: Codec) -> None:
        self._table = schema.table_name
        self._keys = {column.name: document_key(column) for column in schema.columns}
        self._codec = codec

    def translate(self, node: QueryNode) -> DocumentQuery:
        query = self._translate(node)
        log.debug("translated document filter", extra={"table": self._table, "filter": query})
        return query

    def _unsupported(self, detail: str) -> TranslationUnsupportedError:
        return TranslationUnsupportedError(self.backend.value, detail)

    def _key(self, field: str) -> str:
        try:
            return self._keys[field]
        except KeyError:
            raise self._unsupported(f"unknown field {field!r} of {self._table}") from None

    def _translate(self, node: QueryNode) -> DocumentQuery:
        if isinstance(node, Always):
            return {}
        if isinstance(node, Never):
            return dict(NEVER_FILTER)
        if isinstance(node, Comparison):
            return self._comparison(node)
        if isinstance(node, InSet):
            values = [self._codec.encode(value) for value in node.values]
            return {self._key(node.field): {"$in": values}}
        if isinstance(node, BinaryLogic):
            left = self._translate(node.left)
            right = self._translate(node.right)
            if node.op is LogicOp.AND:
                return merge_and(left, right)
            if node.op is LogicOp.OR:
                return {"$or": [left, right]}
            raise self._unsupported(f"logical operator {node.op}")
        if isinstance(node, UnaryLogic):
            if node.op is UnaryOp.NOT:
                return {"$nor": [self._translate(node.operand)]}
            raise self._unsupported(f"unary operator {node.op}")
        if isinstance(node, RawEscape):
            if node.backend is not Backend.DOCUMENT or not isinstance(node.fragment, Mapping):
                raise self._unsupported(f"raw fragment written for the {node.backend.value} backend")
            if node.params:
                raise self._unsupported("raw fragment parameters")
            return dict(node.fragment)
        raise self._unsupported(f"node {type(node).__name__}")

    def _comparison(self, node: Comparison) -> DocumentQuery:
        key = self._key(node.field)
        value = self._codec.encode(node.literal)
        if node.op is CompareOp.EQ:
            return {key: {"$eq": value} if isinstance(value, Mapping) else value}
        if value is None and node.op is not CompareOp.NE:
            raise self._unsupported(f"{node.op.value} comparison of {node.field!r} against null")
        if node.op is CompareOp.LIKE:
            if not isinstance(value, str):
                raise self._unsupported(f"LIKE with non-text pattern on {node.field!r}")
            return {key: {"$regex": like_to_regex(value), "$options": "s"}}
        operator = _OPERATORS.get(node.op)
        if operator is None:
            raise self._unsupported(f"comparison operator {node.op}")
        return {key: {operator: value}}


__all__ = [
    "DocumentQuery",
    "DocumentTranslator",
    "MONGO_ID",
    "NEVER_FILTER",
    "document_key",
    "like_to_regex",
    "merge_and",
]
