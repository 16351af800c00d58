"""
Schema package for polystore.

The reconciler plans and applies additive DDL; `document` and `relational`
provide the per-family schema backends it drives.
"""

from polystore.schema.reconciler import (
    DdlStep,
    SchemaBackend,
    SchemaSnapshot,
    StepKind,
    index_name,
    plan_reconcile,
    reconcile,
)

__all__ = [
    "DdlStep",
    "SchemaBackend",
    "SchemaSnapshot",
    "StepKind",
    "index_name",
    "plan_reconcile",
    "reconcile",
]
