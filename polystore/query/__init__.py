"""
Query package for polystore.

Re-exports the backend-neutral IR nodes and the builder DSL so callers can
import from `polystore.query` directly.
"""

from polystore.query.builder import Field, QueryArg, QueryBuilder, build_query
from polystore.query.ir import (
    ALWAYS,
    NEVER,
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

__all__ = [
    # IR
    "ALWAYS",
    "NEVER",
    "Always",
    "Backend",
    "BinaryLogic",
    "CompareOp",
    "Comparison",
    "InSet",
    "LogicOp",
    "Never",
    "QueryNode",
    "RawEscape",
    "UnaryLogic",
    "UnaryOp",
    # Builder
    "Field",
    "QueryArg",
    "QueryBuilder",
    "build_query",
]
