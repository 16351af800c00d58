"""
Utilities package for polystore.

Exports shared logging helpers. Keep this package lightweight and free of
backend-specific logic.
"""

from polystore.utils.logging import JsonFormatter, configure_logging, get_logger

__all__ = [
    "JsonFormatter",
    "configure_logging",
    "get_logger",
]
