"""
Error taxonomy for polystore.

Every failure surfaced by the persistence layer is one of the classes below so
callers can branch on the kind of failure instead of matching messages:

- DuplicateKeyError: a uniqueness constraint rejected a write.
- TranslationUnsupportedError: a query shape the backend cannot express.
- SchemaReconcileError: a DDL step failed while reconciling a schema.
- MisuseError: a documented precondition was violated by the caller.
- BackendError: any other failure reported by the driver.
"""

from __future__ import annotations

from typing import Optional


class PolystoreError(Exception):
    """Base class for all polystore errors."""


class BackendError(PolystoreError):
    """
    A driver-reported failure (connectivity, timeout, malformed statement).

    Attributes
    ----------
    operation : str
        The facade/driver operation that failed (e.g. ``"find"``).
    """

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class DuplicateKeyError(BackendError):
    """A uniqueness constraint was violated on write."""


class TranslationUnsupportedError(PolystoreError):
    """The query contains an operator or node the backend cannot express."""

    def __init__(self, backend: str, detail: str) -> None:
        super().__init__(f"{backend} backend cannot translate {detail}")
        self.backend = backend
        self.detail = detail


class SchemaReconcileError(PolystoreError):
    """
    A DDL step failed during schema reconciliation.

    Attributes
    ----------
    object_name : str
        Table or collection being reconciled.
    column : Optional[str]
        Column the failing step targeted, if any.
    """

    def __init__(self, object_name: str, column: Optional[str], message: str) -> None:
        target = object_name if column is None else f"{object_name}.{column}"
        super().__init__(f"schema reconcile failed on {target}: {message}")
        self.object_name = object_name
        self.column = column


class MisuseError(PolystoreError, ValueError):
    """A caller-side precondition was violated; nothing was sent to the backend."""


__all__ = [
    "PolystoreError",
    "BackendError",
    "DuplicateKeyError",
    "TranslationUnsupportedError",
    "SchemaReconcileError",
    "MisuseError",
]
