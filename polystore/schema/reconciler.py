"""
Schema reconciliation: brings a live table/collection in line with a model.

Reconciliation is additive only. Given the model's column descriptors and a
freshly fetched `SchemaSnapshot`, `plan_reconcile` computes the missing steps:

1. create the table/collection when it does not exist (never drop/recreate);
2. add declared columns the live table lacks (relational backends only);
3. create the unique/plain indexes declared on columns when absent.

Columns or indexes present live but absent from the model are left alone.
Planning is pure, so reconciling an up-to-date schema yields no steps.
`reconcile` applies the plan in order and stops at the first failing step;
steps already applied stay applied.
"""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from polystore.domain.columns import ColumnDescriptor
from polystore.errors import BackendError, SchemaReconcileError
from polystore.utils.logging import get_logger

log = get_logger(__name__)


class StepKind(str, enum.Enum):
    CREATE = "create"
    ADD_COLUMN = "add_column"
    CREATE_INDEX = "create_index"


@dataclass(frozen=True)
class SchemaSnapshot:
    """Live schema of one table/collection as reported by the backend."""

    exists: bool
    columns: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    indexes: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)


MISSING = SchemaSnapshot(exists=False)


@dataclass(frozen=True)
class DdlStep:
    """
    One schema change.

    ``statement`` is the human-readable form (SQL text, or a description of
    the driver call for the document backend); ``payload`` carries whatever
    the backend needs to apply it.
    """

    kind: StepKind
    object_name: str
    column: Optional[str]
    statement: str
    payload: Any = field(default=None, compare=False)


class SchemaBackend(Protocol):
    """DDL capabilities a backend exposes to the reconciler."""

    name: str
    has_columns: bool

    async def fetch_snapshot(self, object_name: str) -> SchemaSnapshot:
        ...

    def create_step(self, object_name: str, columns: Sequence[ColumnDescriptor]) -> DdlStep:
        ...

    def add_column_step(self, object_name: str, column: ColumnDescriptor) -> DdlStep:
        ...

    def index_step(self, object_name: str, column: ColumnDescriptor) -> DdlStep:
        ...

    def index_present(self, snapshot: SchemaSnapshot, object_name: str, column: ColumnDescriptor) -> bool:
        ...

    async def apply(self, step: DdlStep) -> None:
        ...


# PostgreSQL truncates identifiers beyond NAMEDATALEN - 1 bytes
MAX_INDEX_NAME_BYTES = 63


def index_name(object_name: str, column: ColumnDescriptor) -> str:
    """
    Deterministic index name: ``ux_<table>_<column>`` or ``ix_<table>_<column>``.

    Names longer than `MAX_INDEX_NAME_BYTES` are cut and suffixed with a short
    hash of the full name, so the name the backend reports back is the one
    planned.
    """
    prefix = "ux" if column.unique else "ix"
    name = f"{prefix}_{object_name}_{column.storage_name}"
    encoded = name.encode("utf-8")
    if len(encoded) <= MAX_INDEX_NAME_BYTES:
        return name
    digest = hashlib.sha1(encoded).hexdigest()[:8]
    head = encoded[: MAX_INDEX_NAME_BYTES - len(digest) - 1].decode("utf-8", errors="ignore")
    return f"{head}_{digest}"


def plan_reconcile(
    object_name: str,
    columns: Sequence[ColumnDescriptor],
    snapshot: SchemaSnapshot,
    backend: SchemaBackend,
) -> List[DdlStep]:
    """Compute the additive steps needed to match ``columns``; performs no I/O."""
    steps: List[DdlStep] = []
    if not snapshot.exists:
        steps.append(backend.create_step(object_name, columns))
    elif backend.has_columns:
        for column in columns:
            if column.storage_name not in snapshot.columns:
                steps.append(backend.add_column_step(object_name, column))

    for column in columns:
        if not (column.unique or column.indexed):
            continue
        if snapshot.exists and backend.index_present(snapshot, object_name, column):
            continue
        steps.append(backend.index_step(object_name, column))
    return steps


async def reconcile(
    object_name: str,
    columns: Sequence[ColumnDescriptor],
    snapshot: SchemaSnapshot,
    backend: SchemaBackend,
) -> List[DdlStep]:
    """
    Apply the planned steps in order.

    Returns
    -------
    list of DdlStep
        The steps applied (empty when the schema was already up to date).

    Raises
    ------
    SchemaReconcileError
        On the first failing step; remaining steps are not attempted.
    """
    steps = plan_reconcile(object_name, columns, snapshot, backend)
    for step in steps:
        try:
            await backend.apply(step)
        except BackendError as exc:
            raise SchemaReconcileError(step.object_name, step.column, str(exc)) from exc
        log.info(
            "schema step applied",
            extra={"backend": backend.name, "step": step.kind.value, "statement": step.statement},
        )
    if not steps:
        log.debug("schema up to date", extra={"backend": backend.name, "object": object_name})
    return steps


__all__ = [
    "DdlStep",
    "MAX_INDEX_NAME_BYTES",
    "MISSING",
    "SchemaBackend",
    "SchemaSnapshot",
    "StepKind",
    "index_name",
    "plan_reconcile",
    "reconcile",
]
