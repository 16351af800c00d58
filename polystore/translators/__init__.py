"""
Translators package for polystore.

Re-exports the translator interface, the two backend-family translators and
the SQL dialects so downstream code can import from `polystore.translators`.
"""

from polystore.translators.abstract import QueryTranslator
from polystore.translators.dialect import PostgreSQLDialect, SqlDialect, SQLiteDialect
from polystore.translators.document import DocumentQuery, DocumentTranslator
from polystore.translators.relational import RelationalTranslator, SqlQuery, StatementCompiler

__all__ = [
    # Interface
    "QueryTranslator",
    # Document family
    "DocumentQuery",
    "DocumentTranslator",
    # Relational family
    "RelationalTranslator",
    "SqlQuery",
    "StatementCompiler",
    "SqlDialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
]
