"""
Translator interface shared by every backend family.

A translator compiles a `QueryNode` tree into the backend's native query
form. Translation happens before any I/O, so an unsupported node fails the
call with `TranslationUnsupportedError` without touching the database.
"""

from __future__ import annotations

from typing import Protocol, TypeVar, runtime_checkable

from polystore.query.ir import Backend, QueryNode

NativeQuery = TypeVar("NativeQuery", covariant=True)


@runtime_checkable
class QueryTranslator(Protocol[NativeQuery]):
    """
    Common interface for backend translators.

    Attributes
    ----------
    backend : Backend
        The backend family this translator targets.
    """

    backend: Backend

    def translate(self, node: QueryNode) -> NativeQuery:
        """
        Compile ``node`` into the backend's native query.

        Raises
        ------
        TranslationUnsupportedError
            If the tree contains a node or operator the backend cannot express.
        """
        ...


__all__ = ["NativeQuery", "QueryTranslator"]
