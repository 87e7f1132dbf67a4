"""
MySQL Database Provider
Introspects databases through information_schema; rewrites bracket-quoted identifiers to backticks
"""
from __future__ import annotations

from typing import Any, List, Tuple, Type

from ..config import DatabaseType
from .base import (
    BaseProvider,
    ColumnDescriptor,
    TableIdentifier,
    as_text,
    register_provider,
    requote_bracket_identifiers,
)

SYSTEM_SCHEMAS = ("mysql", "information_schema", "performance_schema", "sys")


@register_provider(DatabaseType.MYSQL)
class MySQLProvider(BaseProvider):
    """MySQL database provider"""

    QUERY_HINTS = (
        "Quote identifiers with backticks, never with square brackets. "
        "Use LIMIT n to restrict the number of rows and DATE_FORMAT(), DATE_SUB() "
        "or TIMESTAMPDIFF() for date arithmetic."
    )

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType.MYSQL

    @property
    def name(self) -> str:
        return "MySQL"

    @property
    def dialect_label(self) -> str:
        return "MySQL SQL"

    @property
    def default_schema(self) -> str:
        return self.config.database

    def _connect(self) -> Any:
        try:
            import mysql.connector
        except ImportError:
            raise ImportError(
                "mysql-connector-python is required for MySQL support. "
                "Install it with: pip install mysql-connector-python"
            )

        connection_config = {
            "host": self.config.host,
            "port": self.config.get_port(),
            "database": self.config.database or None,
            "user": self.config.username,
            "password": self.config.password.get_secret_value() if self.config.password else None,
            "connection_timeout": self.config.connection_timeout,
            "autocommit": True,
        }
        if self.config.ssl_enabled and self.config.ssl_ca_path:
            connection_config["ssl_ca"] = self.config.ssl_ca_path

        return mysql.connector.connect(**connection_config)

    def _driver_errors(self) -> Tuple[Type[BaseException], ...]:
        import mysql.connector
        return (mysql.connector.Error,)

    def _is_connection_lost(self, connection: Any, error: BaseException) -> bool:
        return not connection.is_connected()

    def _fetch_table_names(self, connection: Any) -> List[TableIdentifier]:
        placeholders = ", ".join(["%s"] * len(SYSTEM_SCHEMAS))
        rows = self._fetch_all(
            connection,
            f"""
            SELECT table_schema, table_name
            FROM information_schema.tables
            WHERE table_schema NOT IN ({placeholders})
            ORDER BY table_schema, table_name
            """,
            SYSTEM_SCHEMAS,
        )
        return [TableIdentifier(schema=as_text(row[0]), name=as_text(row[1])) for row in rows]

    def _fetch_columns(self, connection: Any, table: TableIdentifier) -> List[ColumnDescriptor]:
        rows = self._fetch_all(
            connection,
            """
            SELECT column_name, data_type, character_maximum_length, is_nullable
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ordinal_position
            """,
            (table.schema, table.name),
        )
        return [
            ColumnDescriptor(
                name=as_text(row[0]),
                data_type=as_text(row[1]),
                max_length=int(row[2]) if row[2] is not None else None,
                nullable=as_text(row[3]) == "YES",
            )
            for row in rows
        ]

    def _rewrite_query(self, sql: str) -> str:
        return requote_bracket_identifiers(sql, "`")
