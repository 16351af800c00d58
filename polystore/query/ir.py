"""
Backend-neutral query IR.

A query is an immutable tree of the node classes below. Nodes hold field
names and raw Python literals only; turning a tree into something a backend
can execute is the job of the translators in `polystore.translators`.

Nodes compose with ``&``, ``|`` and ``~``:

    node = (Comparison("age", CompareOp.GT, 18) & ~InSet("status", ("banned",)))
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Mapping, Tuple, Union


class CompareOp(str, enum.Enum):
    EQ = "EQ"
    NE = "NE"
    GT = "GT"
    LT = "LT"
    GE = "GE"
    LE = "LE"
    LIKE = "LIKE"


class LogicOp(str, enum.Enum):
    AND = "AND"
    OR = "OR"


class UnaryOp(str, enum.Enum):
    NOT = "NOT"


class Backend(str, enum.Enum):
    """Backend families a `RawEscape` fragment can target."""

    DOCUMENT = "document"
    RELATIONAL = "relational"


class _Node:
    __slots__ = ()

    def __and__(self, other: "QueryNode") -> "BinaryLogic":
        return BinaryLogic(LogicOp.AND, self, other)  # type: ignore[arg-type]

    def __or__(self, other: "QueryNode") -> "BinaryLogic":
        return BinaryLogic(LogicOp.OR, self, other)  # type: ignore[arg-type]

    def __invert__(self) -> "UnaryLogic":
        return UnaryLogic(UnaryOp.NOT, self)  # type: ignore[arg-type]


@dataclass(frozen=True)
class Always(_Node):
    """Matches every record."""


@dataclass(frozen=True)
class Never(_Node):
    """Matches no record."""


@dataclass(frozen=True)
class Comparison(_Node):
    field: str
    op: CompareOp
    literal: Any


@dataclass(frozen=True)
class BinaryLogic(_Node):
    op: LogicOp
    left: "QueryNode"
    right: "QueryNode"


@dataclass(frozen=True)
class UnaryLogic(_Node):
    op: UnaryOp
    operand: "QueryNode"


@dataclass(frozen=True)
class InSet(_Node):
    field: str
    values: Tuple[Any, ...]


@dataclass(frozen=True)
class RawEscape(_Node):
    """
    Backend-specific fragment passed through verbatim.

    For the document backend ``fragment`` is a filter mapping; for the
    relational backend it is SQL text whose placeholders are bound to
    ``params`` in order. This node bypasses translation safety.
    """

    backend: Backend
    fragment: Union[str, Mapping[str, Any]]
    params: Tuple[Any, ...] = ()


QueryNode = Union[Always, Never, Comparison, BinaryLogic, UnaryLogic, InSet, RawEscape]

ALWAYS = Always()
NEVER = Never()


__all__ = [
    "CompareOp",
    "LogicOp",
    "UnaryOp",
    "Backend",
    "Always",
    "Never",
    "Comparison",
    "BinaryLogic",
    "UnaryLogic",
    "InSet",
    "RawEscape",
    "QueryNode",
    "ALWAYS",
    "NEVER",
]
