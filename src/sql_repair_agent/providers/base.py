"""
Base Database Provider Module
Defines the provider contract (identity, schema introspection, DDL synthesis,
dialect adaptation, execution) using the Template Method pattern
"""
from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generator, Iterable, Iterator, List, Optional, Tuple, Type, Union

from ..config import DatabaseConfig, DatabaseType
from ..utils import (
    ConfigurationError,
    ProviderDisposedError,
    ProviderUnavailableError,
    QueryExecutionError,
    RepairMetrics,
    get_logger,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class TableIdentifier:
    """Schema-qualified table name"""
    schema: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}"

    @classmethod
    def parse(cls, text: str, default_schema: str = "") -> "TableIdentifier":
        """Parse ``schema.table`` (or a bare ``table`` in the default schema)"""
        schema, sep, name = text.strip().partition(".")
        if not sep:
            return cls(schema=default_schema, name=schema.strip())
        return cls(schema=schema.strip(), name=name.strip())

    def __str__(self) -> str:
        return self.qualified_name


@dataclass(frozen=True)
class ColumnDescriptor:
    """Column metadata for one table"""
    name: str
    data_type: str
    max_length: Optional[int] = None
    nullable: bool = True

    def to_ddl_fragment(self) -> str:
        """Render as ``[name] TYPE[(length)] [NOT] NULL``"""
        length = ""
        if self.max_length == -1:
            length = "(MAX)"
        elif self.max_length is not None:
            length = f"({self.max_length})"
        nullability = "NULL" if self.nullable else "NOT NULL"
        return f"[{self.name}] {self.data_type.upper()}{length} {nullability}"


@dataclass
class RowSet:
    """Rows returned by a successful query execution"""
    columns: List[str] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)
    row_count: int = 0
    execution_time_ms: float = 0.0

    def __iter__(self) -> Iterator[Tuple[Any, ...]]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": self.columns,
            "rows": [list(row) for row in self.rows],
            "row_count": self.row_count,
            "execution_time_ms": self.execution_time_ms,
        }


class ProviderState(str, Enum):
    """Connection lifecycle of a provider"""
    CREATED = "created"
    OPEN = "open"
    DISPOSED = "disposed"


TableRef = Union[TableIdentifier, str]


def filter_tables(
    tables: Iterable[TableIdentifier],
    included: Optional[Iterable[str]] = None,
    excluded: Optional[Iterable[str]] = None,
) -> List[TableIdentifier]:
    """
    Apply include/exclude filters to catalog tables

    A non-empty inclusion set is the only source of truth; the exclusion set
    is consulted only when no inclusion set is given. Matching is
    case-insensitive on the qualified ``schema.table`` name.
    """
    included_names = {name.strip().lower() for name in (included or []) if name.strip()}
    excluded_names = {name.strip().lower() for name in (excluded or []) if name.strip()}

    if included_names:
        return [t for t in tables if t.qualified_name.lower() in included_names]
    if excluded_names:
        return [t for t in tables if t.qualified_name.lower() not in excluded_names]
    return list(tables)


def is_column_excluded(table: TableIdentifier, column_name: str, excluded_columns: Iterable[str]) -> bool:
    """
    Check a column against the exclusion set

    ``column`` excludes the column from every table, ``table.column`` from
    tables with that name in any schema and ``schema.table.column`` from one
    table only.
    """
    column = column_name.lower()
    for entry in excluded_columns:
        parts = [part.strip().lower() for part in entry.split(".")]
        if parts[-1] != column:
            continue
        if len(parts) == 1:
            return True
        if len(parts) == 2 and parts[0] == table.name.lower():
            return True
        if len(parts) == 3 and parts[0] == table.schema.lower() and parts[1] == table.name.lower():
            return True
    return False


def _skip_quoted(sql: str, start: int, quote: str) -> int:
    """Return the index just past the quoted section starting at ``start``"""
    i = start + 1
    while i < len(sql):
        if sql[i] == quote:
            if i + 1 < len(sql) and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return len(sql)


def requote_bracket_identifiers(sql: str, open_quote: str, close_quote: Optional[str] = None) -> str:
    """
    Rewrite ``[identifier]`` quoting to the dialect's quote characters

    String literals and already-quoted identifiers are left untouched, as is
    subscript syntax such as ``tags[1]``.
    """
    close_quote = close_quote or open_quote
    out = []
    i = 0
    while i < len(sql):
        ch = sql[i]
        if ch in ("'", '"', "`"):
            end = _skip_quoted(sql, i, ch)
            out.append(sql[i:end])
            i = end
            continue
        if ch == "[" and (i == 0 or not (sql[i - 1].isalnum() or sql[i - 1] in "_])")):
            close = sql.find("]", i + 1)
            name = sql[i + 1:close] if close != -1 else ""
            if name.strip() and "[" not in name:
                escaped = name.replace(close_quote, close_quote * 2)
                out.append(f"{open_quote}{escaped}{close_quote}")
                i = close + 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def as_text(value: Any) -> str:
    """Decode catalog values some drivers return as bytes"""
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8")
    return str(value)


class BaseProvider(ABC):
    """
    Abstract base class for database providers

    Concrete dialects supply connection opening, catalog queries and dialect
    adaptations; this class owns filtering, DDL rendering, execution, error
    mapping and the connection lifecycle.
    """

    #: Dialect guidance appended to the prompt, None when there is none
    QUERY_HINTS: Optional[str] = None

    #: Statement used by ping()
    PING_SQL = "SELECT 1"

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._connection: Any = None
        self._state = ProviderState.CREATED
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def database_type(self) -> DatabaseType:
        """Return the database type"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable engine name"""

    @property
    @abstractmethod
    def dialect_label(self) -> str:
        """SQL dialect the model should write"""

    @property
    @abstractmethod
    def default_schema(self) -> str:
        """Schema assumed for unqualified table names"""

    # ------------------------------------------------------------------
    # Dialect hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _connect(self) -> Any:
        """Open and return a DB-API connection"""

    @abstractmethod
    def _driver_errors(self) -> Tuple[Type[BaseException], ...]:
        """Exception types raised by the driver"""

    @abstractmethod
    def _fetch_table_names(self, connection: Any) -> List[TableIdentifier]:
        """Read user tables from the metadata catalog, system schemas excluded"""

    @abstractmethod
    def _fetch_columns(self, connection: Any, table: TableIdentifier) -> List[ColumnDescriptor]:
        """Read column metadata for one table, in ordinal order"""

    def _rewrite_query(self, sql: str) -> str:
        """Dialect-specific rewrite applied by normalize_query"""
        return sql

    def _is_connection_lost(self, connection: Any, error: BaseException) -> bool:
        """Whether a driver error means the connection itself is gone"""
        return False

    def _close_connection(self, connection: Any) -> None:
        connection.close()

    def _fetch_all(self, connection: Any, sql: str, params: Any = None) -> List[Tuple[Any, ...]]:
        cursor = connection.cursor()
        try:
            if params is not None:
                cursor.execute(sql, params)
            else:
                cursor.execute(sql)
            return [tuple(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def _run_query(self, connection: Any, sql: str) -> RowSet:
        cursor = connection.cursor()
        try:
            cursor.execute(sql)
            if cursor.description:
                columns = [as_text(desc[0]) for desc in cursor.description]
                rows = [tuple(row) for row in cursor.fetchall()]
                return RowSet(columns=columns, rows=rows, row_count=len(rows))
            return RowSet(row_count=max(cursor.rowcount, 0))
        finally:
            cursor.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> ProviderState:
        return self._state

    def _ensure_usable(self) -> None:
        if self._state is ProviderState.DISPOSED:
            raise ProviderDisposedError(self.name)

    def open(self) -> "BaseProvider":
        """Acquire the database connection"""
        with self._lock:
            self._ensure_usable()
            if self._state is ProviderState.OPEN:
                return self
            try:
                self._connection = self._connect()
            except self._driver_errors() as e:
                raise ProviderUnavailableError(
                    message=f"Could not connect to {self.name}: {e}",
                    provider_name=self.name,
                    original_error=e,
                ) from e
            self._state = ProviderState.OPEN
            logger.debug(f"{self.name} connection opened")
            return self

    def close(self) -> None:
        """Release the connection; the provider cannot be used afterwards"""
        with self._lock:
            if self._state is ProviderState.DISPOSED:
                return
            connection, self._connection = self._connection, None
            self._state = ProviderState.DISPOSED
            if connection is not None:
                try:
                    self._close_connection(connection)
                except self._driver_errors() as e:
                    logger.warning(f"Error closing {self.name} connection: {e}")
            logger.debug(f"{self.name} provider disposed")

    def __enter__(self) -> "BaseProvider":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @contextmanager
    def _session(self) -> Generator[Any, None, None]:
        """Hold the connection for one operation; one statement in flight at a time"""
        with self._lock:
            self._ensure_usable()
            if self._state is not ProviderState.OPEN:
                self.open()
            yield self._connection

    # ------------------------------------------------------------------
    # Schema introspection
    # ------------------------------------------------------------------

    def list_tables(
        self,
        included: Optional[Iterable[str]] = None,
        excluded: Optional[Iterable[str]] = None,
    ) -> List[TableIdentifier]:
        """List user tables, applying the include/exclude filters"""
        with self._session() as connection:
            try:
                tables = self._fetch_table_names(connection)
            except self._driver_errors() as e:
                raise ProviderUnavailableError(
                    message=f"Could not read the {self.name} table catalog: {e}",
                    provider_name=self.name,
                    original_error=e,
                ) from e

        selected = filter_tables(tables, included, excluded)
        logger.debug(
            "Listed tables",
            extra={"extra_fields": {"catalog": len(tables), "selected": len(selected)}},
        )
        return selected

    # ------------------------------------------------------------------
    # DDL synthesis
    # ------------------------------------------------------------------

    def _as_identifier(self, table: TableRef) -> TableIdentifier:
        if isinstance(table, TableIdentifier):
            return table
        return TableIdentifier.parse(table, self.default_schema)

    def render_create_statements(
        self,
        tables: Iterable[TableRef],
        excluded_columns: Optional[Iterable[str]] = None,
    ) -> List[Tuple[TableIdentifier, str]]:
        """Render one CREATE TABLE statement per table that resolves to columns"""
        excluded = list(excluded_columns or [])
        statements = []

        with self._session() as connection:
            for ref in tables:
                table = self._as_identifier(ref)
                try:
                    columns = self._fetch_columns(connection, table)
                except self._driver_errors() as e:
                    if self._is_connection_lost(connection, e):
                        raise ProviderUnavailableError(
                            message=f"Lost {self.name} connection while reading columns: {e}",
                            provider_name=self.name,
                            original_error=e,
                        ) from e
                    logger.warning(f"Skipping table {table}: {e}")
                    continue

                kept = [c for c in columns if not is_column_excluded(table, c.name, excluded)]
                if not kept:
                    logger.warning(f"Skipping table {table}: no columns to describe")
                    continue

                column_list = ", ".join(c.to_ddl_fragment() for c in kept)
                statements.append(
                    (table, f"CREATE TABLE [{table.schema}].[{table.name}] ({column_list});")
                )

        return statements

    def synthesize_ddl(
        self,
        tables: Iterable[TableRef],
        excluded_columns: Optional[Iterable[str]] = None,
    ) -> str:
        """Build a CREATE TABLE script, one statement per line"""
        return "\n".join(
            statement for _, statement in self.render_create_statements(tables, excluded_columns)
        )

    # ------------------------------------------------------------------
    # Dialect adaptation
    # ------------------------------------------------------------------

    def query_hints(self) -> Optional[str]:
        """Dialect guidance for the prompt, or None"""
        self._ensure_usable()
        return self.QUERY_HINTS

    def normalize_query(self, sql: str) -> str:
        """Best-effort rewrite to the dialect's syntax; never raises"""
        self._ensure_usable()
        try:
            return self._rewrite_query(sql)
        except Exception as e:
            logger.warning(f"Query normalization failed, using query as-is: {e}")
            return sql

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, sql: str) -> RowSet:
        """
        Execute a query and return its rows

        Raises:
            QueryExecutionError: the database rejected the query
            ProviderUnavailableError: the connection was lost
        """
        start_time = time.time()
        with self._session() as connection:
            try:
                result = self._run_query(connection, sql)
            except self._driver_errors() as e:
                duration = time.time() - start_time
                RepairMetrics.record_query_execution(duration, self.database_type.value, success=False)
                if self._is_connection_lost(connection, e):
                    raise ProviderUnavailableError(
                        message=f"Lost {self.name} connection during execution: {e}",
                        provider_name=self.name,
                        original_error=e,
                    ) from e
                raise QueryExecutionError(
                    driver_message=str(e).strip(),
                    sql=sql,
                    original_error=e,
                ) from e

        duration = time.time() - start_time
        result.execution_time_ms = round(duration * 1000, 2)
        RepairMetrics.record_query_execution(duration, self.database_type.value, success=True)
        return result

    def ping(self) -> bool:
        """Check that the database answers a trivial statement"""
        try:
            self.execute(self.PING_SQL)
            return True
        except (QueryExecutionError, ProviderUnavailableError) as e:
            logger.warning(f"{self.name} ping failed: {e}")
            return False


ProviderClass = Type[BaseProvider]


class ProviderRegistry:
    """Registry for database providers using Factory pattern"""

    _providers: Dict[DatabaseType, ProviderClass] = {}
    _lock = threading.Lock()

    @classmethod
    def register(cls, db_type: DatabaseType, provider_class: ProviderClass) -> None:
        with cls._lock:
            cls._providers[DatabaseType(db_type)] = provider_class

    @classmethod
    def get_provider_class(cls, db_type: Union[DatabaseType, str]) -> ProviderClass:
        try:
            key = DatabaseType(db_type)
        except ValueError as e:
            raise ConfigurationError(f"Unknown database type: {db_type}", config_key="db_type", original_error=e) from e
        with cls._lock:
            if key not in cls._providers:
                raise ConfigurationError(f"No provider registered for database type: {key.value}", config_key="db_type")
            return cls._providers[key]

    @classmethod
    def create_provider(cls, config: DatabaseConfig) -> BaseProvider:
        return cls.get_provider_class(config.db_type)(config)

    @classmethod
    def get_supported_types(cls) -> List[DatabaseType]:
        with cls._lock:
            return list(cls._providers.keys())


def register_provider(db_type: DatabaseType):
    """Decorator to register a database provider class"""
    def decorator(cls: ProviderClass) -> ProviderClass:
        ProviderRegistry.register(db_type, cls)
        return cls
    return decorator
