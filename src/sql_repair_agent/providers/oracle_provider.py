"""
Oracle Database Provider
Introspects user-owned tables and views through the ALL_* dictionary views;
rewrites LIMIT clauses to the row-limiting clause
"""
from __future__ import annotations

import re
from typing import Any, List, Tuple, Type

from ..config import DatabaseType
from .base import (
    BaseProvider,
    ColumnDescriptor,
    TableIdentifier,
    register_provider,
    requote_bracket_identifiers,
)

# LIMIT n | LIMIT n OFFSET m | LIMIT m, n at the very end of the statement
_TRAILING_LIMIT = re.compile(
    r"\s+LIMIT\s+(\d+)(?:\s+OFFSET\s+(\d+)|\s*,\s*(\d+))?\s*$",
    re.IGNORECASE,
)


def _row_limiting_clause(match: "re.Match[str]") -> str:
    first, offset, second = match.group(1), match.group(2), match.group(3)
    if second is not None:
        # MySQL form: LIMIT offset, count
        offset, limit = first, second
    else:
        limit = first
    if offset is not None:
        return f" OFFSET {offset} ROWS FETCH NEXT {limit} ROWS ONLY"
    return f" FETCH FIRST {limit} ROWS ONLY"


@register_provider(DatabaseType.ORACLE)
class OracleProvider(BaseProvider):
    """Oracle database provider"""

    QUERY_HINTS = (
        "Use FETCH FIRST n ROWS ONLY instead of LIMIT, and do not end the statement "
        "with a semicolon. Quote identifiers with double quotes. Use TO_DATE(), "
        "TRUNC() and ADD_MONTHS() for date arithmetic."
    )

    PING_SQL = "SELECT 1 FROM dual"

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType.ORACLE

    @property
    def name(self) -> str:
        return "Oracle"

    @property
    def dialect_label(self) -> str:
        return "Oracle SQL"

    @property
    def default_schema(self) -> str:
        return (self.config.username or "").upper()

    def _connect(self) -> Any:
        try:
            import oracledb
        except ImportError:
            raise ImportError(
                "oracledb is required for Oracle support. "
                "Install it with: pip install oracledb"
            )

        if self.config.connection_string:
            dsn = self.config.connection_string.get_secret_value()
        else:
            service = self.config.oracle_service_name or self.config.database
            dsn = f"{self.config.host}:{self.config.get_port()}/{service}"

        connection = oracledb.connect(
            user=self.config.username,
            password=self.config.password.get_secret_value() if self.config.password else None,
            dsn=dsn,
            tcp_connect_timeout=self.config.connection_timeout,
        )
        connection.autocommit = True
        return connection

    def _driver_errors(self) -> Tuple[Type[BaseException], ...]:
        import oracledb
        return (oracledb.Error,)

    def _is_connection_lost(self, connection: Any, error: BaseException) -> bool:
        return not connection.is_healthy()

    def _fetch_table_names(self, connection: Any) -> List[TableIdentifier]:
        rows = self._fetch_all(
            connection,
            """
            SELECT owner, table_name FROM all_tables
            WHERE owner IN (SELECT username FROM all_users WHERE oracle_maintained = 'N')
            UNION ALL
            SELECT owner, view_name FROM all_views
            WHERE owner IN (SELECT username FROM all_users WHERE oracle_maintained = 'N')
            ORDER BY 1, 2
            """,
        )
        return [TableIdentifier(schema=row[0], name=row[1]) for row in rows]

    def _fetch_columns(self, connection: Any, table: TableIdentifier) -> List[ColumnDescriptor]:
        rows = self._fetch_all(
            connection,
            """
            SELECT column_name, data_type, char_length, nullable
            FROM all_tab_columns
            WHERE owner = :owner AND table_name = :table_name
            ORDER BY column_id
            """,
            {"owner": table.schema, "table_name": table.name},
        )
        return [
            ColumnDescriptor(
                name=row[0],
                data_type=row[1],
                max_length=row[2] or None,
                nullable=row[3] == "Y",
            )
            for row in rows
        ]

    def _rewrite_query(self, sql: str) -> str:
        sql = requote_bracket_identifiers(sql, '"').rstrip()
        while sql.endswith(";"):
            sql = sql[:-1].rstrip()
        return _TRAILING_LIMIT.sub(_row_limiting_clause, sql)
