"""
PostgreSQL Database Provider
Introspects schemas through information_schema; rewrites bracket-quoted identifiers
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


@register_provider(DatabaseType.POSTGRESQL)
class PostgreSQLProvider(BaseProvider):
    """PostgreSQL database provider"""

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType.POSTGRESQL

    @property
    def name(self) -> str:
        return "PostgreSQL"

    @property
    def dialect_label(self) -> str:
        return "PL/pgSQL"

    @property
    def default_schema(self) -> str:
        return "public"

    def _connect(self) -> Any:
        try:
            import psycopg2
        except ImportError:
            raise ImportError(
                "psycopg2 is required for PostgreSQL support. "
                "Install it with: pip install psycopg2-binary"
            )

        if self.config.connection_string:
            connection = psycopg2.connect(
                self.config.connection_string.get_secret_value(),
                connect_timeout=self.config.connection_timeout,
            )
        else:
            connection_params = {
                "host": self.config.host,
                "port": self.config.get_port(),
                "dbname": self.config.database,
                "user": self.config.username,
                "password": self.config.password.get_secret_value() if self.config.password else None,
                "connect_timeout": self.config.connection_timeout,
            }
            if self.config.ssl_enabled:
                connection_params["sslmode"] = "require"
                if self.config.ssl_ca_path:
                    connection_params["sslrootcert"] = self.config.ssl_ca_path
            connection = psycopg2.connect(**connection_params)

        connection.autocommit = True
        return connection

    def _driver_errors(self) -> Tuple[Type[BaseException], ...]:
        import psycopg2
        return (psycopg2.Error,)

    def _is_connection_lost(self, connection: Any, error: BaseException) -> bool:
        return connection.closed != 0

    def _fetch_table_names(self, connection: Any) -> List[TableIdentifier]:
        rows = self._fetch_all(
            connection,
            """
            SELECT table_schema, table_name
            FROM information_schema.tables
            WHERE table_schema NOT IN ('pg_catalog', 'information_schema')
            ORDER BY table_schema, table_name
            """,
        )
        return [TableIdentifier(schema=row[0], name=row[1]) for row in rows]

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
                max_length=row[2],
                nullable=row[3] == "YES",
            )
            for row in rows
        ]

    def _rewrite_query(self, sql: str) -> str:
        return requote_bracket_identifiers(sql, '"')
