"""
Test doubles shared by unit and integration tests
"""
from typing import Dict, List, Optional, Sequence, Tuple, Union

from sql_repair_agent.config import DatabaseConfig, DatabaseType
from sql_repair_agent.llm_client import BaseLLMClient, LLMResponse
from sql_repair_agent.providers.base import BaseProvider, ColumnDescriptor, RowSet, TableIdentifier
from sql_repair_agent.schemas import Conversation
from sql_repair_agent.utils import ModelUnavailableError


class FakeDriverError(Exception):
    """Stands in for a DB-API driver exception"""


class FakeConnection:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeProvider(BaseProvider):
    """
    In-memory provider

    ``tables`` maps ``(schema, table)`` to its columns; ``results`` is the
    script of execute outcomes, each a RowSet or an exception to raise.
    """

    QUERY_HINTS = "Use TOP n instead of LIMIT n."

    def __init__(
        self,
        tables: Optional[Dict[Tuple[str, str], List[ColumnDescriptor]]] = None,
        results: Optional[Sequence[Union[RowSet, Exception]]] = None,
        catalog_error: Optional[Exception] = None,
    ):
        super().__init__(DatabaseConfig(db_type=DatabaseType.SQLITE))
        self.tables = dict(tables or {})
        self.results = list(results or [])
        self.catalog_error = catalog_error
        self.connection_lost = False
        self.executed: List[str] = []

    @property
    def database_type(self) -> DatabaseType:
        return DatabaseType.SQLITE

    @property
    def name(self) -> str:
        return "FakeSQL"

    @property
    def dialect_label(self) -> str:
        return "Fake SQL"

    @property
    def default_schema(self) -> str:
        return "dbo"

    def _connect(self):
        return FakeConnection()

    def _driver_errors(self):
        return (FakeDriverError,)

    def _is_connection_lost(self, connection, error):
        return self.connection_lost

    def _fetch_table_names(self, connection):
        if self.catalog_error is not None:
            raise self.catalog_error
        return [TableIdentifier(schema=schema, name=name) for schema, name in self.tables]

    def _fetch_columns(self, connection, table):
        for (schema, name), columns in self.tables.items():
            if schema.lower() == table.schema.lower() and name.lower() == table.name.lower():
                return list(columns)
        raise FakeDriverError(f"Invalid object name '{table}'")

    def _run_query(self, connection, sql):
        self.executed.append(sql)
        outcome = self.results.pop(0) if self.results else RowSet()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class ScriptedLLMClient(BaseLLMClient):
    """
    LLM client replaying scripted completions

    Each entry is a completion string or an exception to raise. The last
    entry repeats once the script runs out. Every conversation received is
    kept in ``conversations``.
    """

    model_id = "scripted-model"

    def __init__(self, responses: Sequence[Union[str, Exception]]):
        super().__init__(retry_attempts=1, retry_delay=0.0)
        self.responses = list(responses)
        self.conversations: List[Conversation] = []

    @property
    def call_count(self) -> int:
        return len(self.conversations)

    def complete(self, conversation: Conversation, **kwargs) -> LLMResponse:
        index = min(len(self.conversations), len(self.responses) - 1)
        self.conversations.append(conversation)
        outcome = self.responses[index]
        if isinstance(outcome, Exception):
            raise outcome
        return LLMResponse(
            content=outcome,
            model_id=self.model_id,
            input_tokens=100,
            output_tokens=20,
            latency_ms=5.0,
        )


def model_down(message: str = "Could not connect to the endpoint URL") -> ModelUnavailableError:
    return ModelUnavailableError(message=message, model_id="scripted-model")


def sales_orders_provider(results=None) -> FakeProvider:
    """Provider exposing sales.orders(id INT NOT NULL, total MONEY NULL)"""
    return FakeProvider(
        tables={
            ("sales", "orders"): [
                ColumnDescriptor(name="id", data_type="int", nullable=False),
                ColumnDescriptor(name="total", data_type="money", nullable=True),
            ],
        },
        results=results,
    )
