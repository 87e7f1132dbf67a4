"""
SQLite Database Provider
Introspects the main and attached databases through sqlite_master and PRAGMA table_info
"""
from __future__ import annotations

import re
import sqlite3
from typing import Any, List, Optional, Tuple, Type

from ..config import DatabaseType
from .base import BaseProvider, ColumnDescriptor, TableIdentifier, register_provider

_TYPE_WITH_LENGTH = re.compile(r"^\s*([A-Za-z][\w ]*?)\s*\(\s*(\d+)\s*\)\s*$")


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def split_declared_type(declared: Optional[str]) -> Tuple[str, Optional[int]]:
    """Split a declared type such as ``VARCHAR(100)`` into type and length"""
    if not declared:
        return "TEXT", None
    match = _TYPE_WITH_LENGTH.match(declared)
    if match:
        return match.group(1), int(match.group(2))
    return declared.strip(), None


@register_provider(DatabaseType.SQLITE)
class SQLiteProvider(BaseProvider):
    """SQLite database provider"""

    QUERY_HINTS = (
        "SQLite has no native DATE or BOOLEAN types: dates are TEXT, use date(), "
        "datetime() and strftime() to compare or group them, booleans are 0/1. "
        "Use LIMIT n to restrict the number of rows."
    )

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType.SQLITE

    @property
    def name(self) -> str:
        return "SQLite"

    @property
    def dialect_label(self) -> str:
        return "SQLite SQL"

    @property
    def default_schema(self) -> str:
        return "main"

    def _connect(self) -> Any:
        if self.config.connection_string:
            db_path = self.config.connection_string.get_secret_value()
        else:
            db_path = self.config.database or ":memory:"

        # Autocommit; the repair loop never manages transactions
        return sqlite3.connect(
            db_path,
            timeout=self.config.connection_timeout,
            check_same_thread=False,
            isolation_level=None,
        )

    def _driver_errors(self) -> Tuple[Type[BaseException], ...]:
        return (sqlite3.Error,)

    def _is_connection_lost(self, connection: Any, error: BaseException) -> bool:
        # sqlite3 reports a closed handle as ProgrammingError, not OperationalError
        return isinstance(error, sqlite3.ProgrammingError) and "closed database" in str(error).lower()

    def _fetch_table_names(self, connection: Any) -> List[TableIdentifier]:
        tables = []
        schemas = [row[1] for row in self._fetch_all(connection, "PRAGMA database_list") if row[1] != "temp"]

        for schema in schemas:
            rows = self._fetch_all(
                connection,
                f"""
                SELECT name
                FROM {_quote(schema)}.sqlite_master
                WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%'
                ORDER BY name
                """,
            )
            tables.extend(TableIdentifier(schema=schema, name=row[0]) for row in rows)

        return tables

    def _fetch_columns(self, connection: Any, table: TableIdentifier) -> List[ColumnDescriptor]:
        rows = self._fetch_all(
            connection,
            f"PRAGMA {_quote(table.schema)}.table_info({_quote(table.name)})",
        )

        columns = []
        for row in rows:
            # PRAGMA table_info returns: cid, name, type, notnull, dflt_value, pk
            data_type, max_length = split_declared_type(row[2])
            columns.append(ColumnDescriptor(
                name=row[1],
                data_type=data_type,
                max_length=max_length,
                nullable=not row[3],
            ))
        return columns
