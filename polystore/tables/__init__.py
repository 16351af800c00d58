"""
Tables package for polystore.

Exports the backend-neutral facade plus the two backend-family
implementations. Use `polystore.open_database` to obtain a `Database`.
"""

from polystore.tables.abstract import Database, Table
from polystore.tables.document import DocumentDatabase, DocumentTable
from polystore.tables.relational import RelationalDatabase, RelationalTable

__all__ = [
    "Database",
    "Table",
    "DocumentDatabase",
    "DocumentTable",
    "RelationalDatabase",
    "RelationalTable",
]
