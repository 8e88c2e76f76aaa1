# src/polycrud/utils.py
"""
Identifier checks for backends that splice names into queries, and logger setup
"""

import os
import re
import logging
from typing import Any, Dict, Optional

from .errors import TranslationError

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def validate_table_name(table: str) -> str:
    """
    Accept ``table`` or ``schema.table`` where each part is a plain identifier.

    Table names end up in SQL text, so anything else is rejected before a
    query is built.
    """
    parts = table.split('.') if isinstance(table, str) else []
    if not 1 <= len(parts) <= 2 or not all(_IDENTIFIER.match(p) for p in parts):
        raise TranslationError(
            f"Invalid table name: '{table}'. Use letters, digits and underscores, "
            f"optionally schema-qualified.",
            resource=str(table),
        )
    return table


def validate_column_name(column: str) -> str:
    if not isinstance(column, str) or not _IDENTIFIER.match(column):
        raise TranslationError(
            f"Invalid column name: '{column}'. Use letters, digits and underscores."
        )
    return column


def validate_columns(data: Dict[str, Any]) -> Dict[str, Any]:
    for key in data:
        validate_column_name(key)
    return data


def setup_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Per-class adapter logger.

    The level defaults to ``POLYCRUD_LOG_LEVEL`` (INFO when unset). A stream
    handler is attached once per logger name, so rebuilding an adapter does
    not duplicate output.
    """
    logger = logging.getLogger(name)
    if level is None:
        level = logging.getLevelName(os.getenv("POLYCRUD_LOG_LEVEL", "INFO").upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    if not any(getattr(h, "_polycrud", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._polycrud = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger
