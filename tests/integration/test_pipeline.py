"""
Integration Tests for the SQL Repair Pipeline
Tests the generation / execution / repair loop end to end with scripted model completions
"""
import threading

import pytest

from sql_repair_agent.config import AgentConfig, DatabaseConfig, DatabaseType, LLMConfig, MetricsConfig, SystemConfig
from sql_repair_agent.orchestration import CancellationToken, PipelineBuilder, RepairPipeline, create_pipeline
from sql_repair_agent.providers import ColumnDescriptor, RowSet, SQLiteProvider
from sql_repair_agent.schemas import AttemptOutcome, LoopState, RepairRequest, Role
from sql_repair_agent.utils import (
    ConfigurationError,
    ModelUnavailableError,
    ProviderUnavailableError,
    RepairExhaustedError,
    get_metrics_collector,
)

from helpers import FakeDriverError, ScriptedLLMClient, model_down, sales_orders_provider

TOTALS_ROWS = RowSet(columns=["total"], rows=[(10.5,), (20.0,)], row_count=2)


def make_pipeline(provider, client, **agent_settings):
    config = SystemConfig(
        database=DatabaseConfig(db_type=DatabaseType.SQLITE),
        agent=AgentConfig(**agent_settings),
    )
    return RepairPipeline(config, provider=provider, llm_client=client)


class HookedLLMClient(ScriptedLLMClient):
    """Scripted client that calls ``hook`` after every completion"""

    def __init__(self, responses, hook):
        super().__init__(responses)
        self.hook = hook

    def complete(self, conversation, **kwargs):
        response = super().complete(conversation, **kwargs)
        self.hook()
        return response


class TestRepairLoop:
    """Tests for the draft / execute / feedback cycle"""

    def test_first_attempt_succeeds(self):
        provider = sales_orders_provider(results=[TOTALS_ROWS])
        client = ScriptedLLMClient(["```sql\nSELECT total FROM sales.orders\n```"])
        pipeline = make_pipeline(provider, client)

        result = pipeline.run("What are the order totals?")

        assert result.state is LoopState.SUCCEEDED
        assert result.is_successful
        assert result.rowset is TOTALS_ROWS
        assert result.final_sql == "SELECT total FROM sales.orders"
        assert result.attempt_count == 1
        assert provider.executed == ["SELECT total FROM sales.orders"]

    def test_repairs_from_database_error(self):
        provider = sales_orders_provider(results=[
            FakeDriverError('column "totals" does not exist'),
            TOTALS_ROWS,
        ])
        client = ScriptedLLMClient([
            "SELECT totals FROM sales.orders",
            "SELECT total FROM sales.orders",
        ])
        pipeline = make_pipeline(provider, client, max_retries=3)

        result = pipeline.run("What are the order totals?")

        assert result.state is LoopState.SUCCEEDED
        assert result.final_sql == "SELECT total FROM sales.orders"
        assert [a.attempt_index for a in result.attempts] == [0, 1]
        assert result.attempts[0].outcome is AttemptOutcome.FAILED
        assert result.attempts[0].error_message == 'column "totals" does not exist'
        assert result.attempts[1].outcome is AttemptOutcome.SUCCEEDED

        second = client.conversations[1]
        assert [turn.role for turn in second.turns[-2:]] == [Role.ASSISTANT, Role.USER]
        assert second.turns[-2].content == "SELECT totals FROM sales.orders"
        assert "SELECT totals FROM sales.orders" in second.last_turn.content
        assert 'column "totals" does not exist' in second.last_turn.content

    def test_exhausted_after_every_attempt_fails(self):
        provider = sales_orders_provider(results=[
            FakeDriverError("no such column: a"),
            FakeDriverError("no such column: b"),
            FakeDriverError("no such column: c"),
        ])
        client = ScriptedLLMClient(["SELECT a FROM t", "SELECT b FROM t", "SELECT c FROM t"])
        pipeline = make_pipeline(provider, client, max_retries=2)

        with pytest.raises(RepairExhaustedError) as exc_info:
            pipeline.run("q")

        error = exc_info.value
        assert [a.sql for a in error.attempts] == ["SELECT a FROM t", "SELECT b FROM t", "SELECT c FROM t"]
        assert [a.error_message for a in error.attempts] == [
            "no such column: a",
            "no such column: b",
            "no such column: c",
        ]
        assert error.max_retries == 2
        assert len(provider.executed) == 3

    def test_zero_retries_means_one_execution(self):
        provider = sales_orders_provider(results=[FakeDriverError("syntax error")])
        client = ScriptedLLMClient(["SELECT FROM"])
        pipeline = make_pipeline(provider, client, max_retries=0)

        with pytest.raises(RepairExhaustedError) as exc_info:
            pipeline.run("q")

        assert len(exc_info.value.attempts) == 1
        assert len(provider.executed) == 1
        assert client.call_count == 1

    def test_per_request_max_retries(self):
        provider = sales_orders_provider(results=[FakeDriverError("bad")] * 5)
        client = ScriptedLLMClient(["SELECT x FROM t"])
        pipeline = make_pipeline(provider, client, max_retries=4)

        with pytest.raises(RepairExhaustedError):
            pipeline.run("q", max_retries=1)

        assert len(provider.executed) == 2

    def test_negative_max_retries_rejected(self):
        pipeline = make_pipeline(sales_orders_provider(), ScriptedLLMClient(["SELECT 1"]))
        with pytest.raises(ConfigurationError):
            pipeline.run("q", max_retries=-1)

    def test_conversation_accumulates_every_failure(self):
        errors = [f"error number {i}" for i in range(3)]
        provider = sales_orders_provider(results=[FakeDriverError(e) for e in errors] + [TOTALS_ROWS])
        client = ScriptedLLMClient([f"SELECT c{i} FROM sales.orders" for i in range(4)])
        pipeline = make_pipeline(provider, client, max_retries=3)

        result = pipeline.run("q")

        assert result.attempts[-1].attempt_index == 3
        for k, conversation in enumerate(client.conversations):
            assert len(conversation) == 2 + 2 * k
            # earlier snapshots are prefixes of later ones
            assert client.conversations[-1].turns[:len(conversation)] == conversation.turns

        feedback = [turn.content for turn in client.conversations[3].messages if turn.role is Role.USER][1:]
        for i, message in enumerate(feedback):
            assert f"SELECT c{i} FROM sales.orders" in message
            assert errors[i] in message

    def test_no_feedback_turn_after_last_attempt(self):
        provider = sales_orders_provider(results=[FakeDriverError("bad")] * 3)
        client = ScriptedLLMClient(["SELECT x FROM t"])
        pipeline = make_pipeline(provider, client, max_retries=2)

        result = pipeline.process(RepairRequest(question="q"))

        assert len(result.conversation) == 2 + 2 * 2
        assert result.conversation == client.conversations[-1]

    def test_completion_without_sql_consumes_a_retry(self):
        provider = sales_orders_provider(results=[TOTALS_ROWS])
        client = ScriptedLLMClient(["I need to know which currency you mean.", "SELECT total FROM sales.orders"])
        pipeline = make_pipeline(provider, client, max_retries=1)

        result = pipeline.run("q")

        assert result.state is LoopState.SUCCEEDED
        first = result.attempts[0]
        assert first.sql is None
        assert first.outcome is AttemptOutcome.FAILED
        assert first.error_message == "no query produced"
        assert provider.executed == ["SELECT total FROM sales.orders"]
        assert "no query produced" in client.conversations[1].last_turn.content

    def test_domain_hints_reach_the_prompt(self):
        client = ScriptedLLMClient(["SELECT total FROM sales.orders"])
        pipeline = make_pipeline(
            sales_orders_provider(results=[TOTALS_ROWS]), client, domain_hints=["Totals are in EUR."]
        )

        pipeline.run("q", domain_hints=["orders.status: 1 = open, 2 = shipped"])

        system_prompt = client.conversations[0].system_prompt
        assert "orders.status: 1 = open, 2 = shipped" in system_prompt
        assert "Totals are in EUR." not in system_prompt
        assert "Use TOP n instead of LIMIT n." in system_prompt

    def test_questions_do_not_share_conversations(self):
        provider = sales_orders_provider(results=[FakeDriverError("bad"), TOTALS_ROWS, TOTALS_ROWS])
        client = ScriptedLLMClient(["SELECT total FROM sales.orders"])
        pipeline = make_pipeline(provider, client, max_retries=1)

        pipeline.run("first question")
        pipeline.run("second question")

        third = client.conversations[2]
        assert len(third) == 2
        assert third.turns[1].content == "second question"

    def test_token_usage_is_counted_per_question(self):
        provider = sales_orders_provider(results=[FakeDriverError("bad"), TOTALS_ROWS, TOTALS_ROWS])
        client = ScriptedLLMClient(["SELECT total FROM sales.orders"])
        pipeline = make_pipeline(provider, client, max_retries=1)

        first = pipeline.run("first question")
        second = pipeline.run("second question")

        assert first.token_usage == {"input": 200, "output": 40}
        assert second.token_usage == {"input": 100, "output": 20}
        assert second.to_dict()["token_usage"] == {"input": 100, "output": 20}

    def test_schema_rebuilt_for_each_question(self):
        provider = sales_orders_provider(results=[TOTALS_ROWS, TOTALS_ROWS])
        client = ScriptedLLMClient(["SELECT total FROM sales.orders"])
        pipeline = make_pipeline(provider, client)

        pipeline.run("q")
        provider.tables[("sales", "returns")] = [ColumnDescriptor("id", "int", nullable=False)]
        pipeline.run("q")

        assert "[sales].[returns]" not in client.conversations[0].system_prompt
        assert "[sales].[returns]" in client.conversations[1].system_prompt


class TestFailures:
    """Tests for infrastructure failures and the structured result"""

    def test_model_error_is_fatal_by_default(self):
        provider = sales_orders_provider()
        pipeline = make_pipeline(provider, ScriptedLLMClient([model_down()]), max_retries=3)

        with pytest.raises(ModelUnavailableError):
            pipeline.run("q")

        assert provider.executed == []

    def test_model_error_reported_by_process(self):
        pipeline = make_pipeline(sales_orders_provider(), ScriptedLLMClient([model_down()]))

        result = pipeline.process(RepairRequest(question="q"))

        assert result.state is LoopState.FAILED
        assert isinstance(result.error, ModelUnavailableError)
        assert result.error_details["error_type"] == "ModelUnavailableError"
        assert len(result.error_details["attempts"]) == 1

    def test_model_error_consumes_retry_when_enabled(self):
        provider = sales_orders_provider(results=[TOTALS_ROWS])
        client = ScriptedLLMClient([model_down(), "SELECT total FROM sales.orders"])
        pipeline = make_pipeline(provider, client, max_retries=1, retry_model_errors=True)

        result = pipeline.run("q")

        assert result.state is LoopState.SUCCEEDED
        assert result.attempts[0].outcome is AttemptOutcome.FAILED
        assert client.conversations[1] == client.conversations[0]

    def test_exhausted_reported_by_process(self):
        provider = sales_orders_provider(results=[FakeDriverError("bad a"), FakeDriverError("bad b")])
        client = ScriptedLLMClient(["SELECT a FROM t", "SELECT b FROM t"])
        pipeline = make_pipeline(provider, client, max_retries=1)

        result = pipeline.process(RepairRequest(question="q"))

        assert result.state is LoopState.EXHAUSTED
        assert not result.is_successful
        details = result.error_details
        assert details["error_type"] == "RepairExhaustedError"
        assert [(a["sql"], a["error_message"]) for a in details["attempts"]] == [
            ("SELECT a FROM t", "bad a"),
            ("SELECT b FROM t", "bad b"),
        ]
        assert result.to_dict()["state"] == "exhausted"

    def test_catalog_failure(self):
        provider = sales_orders_provider()
        provider.catalog_error = FakeDriverError("connection refused")
        client = ScriptedLLMClient(["SELECT 1"])
        pipeline = make_pipeline(provider, client)

        with pytest.raises(ProviderUnavailableError):
            pipeline.run("q")

        result = pipeline.process(RepairRequest(question="q"))
        assert result.state is LoopState.FAILED
        assert client.call_count == 0

    def test_lost_connection_is_not_repaired(self):
        provider = sales_orders_provider(results=[FakeDriverError("server closed the connection unexpectedly")])
        provider.connection_lost = True
        client = ScriptedLLMClient(["SELECT total FROM sales.orders"])
        pipeline = make_pipeline(provider, client, max_retries=3)

        with pytest.raises(ProviderUnavailableError):
            pipeline.run("q")

        assert client.call_count == 1


class TestCancellation:
    """Tests for cooperative cancellation"""

    def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        client = ScriptedLLMClient(["SELECT 1"])
        pipeline = make_pipeline(sales_orders_provider(), client)

        result = pipeline.run("q", cancel_token=token)

        assert result.state is LoopState.CANCELLED
        assert result.attempts == []
        assert client.call_count == 0

    def test_cancelled_between_draft_and_execute(self):
        token = CancellationToken()
        provider = sales_orders_provider(results=[TOTALS_ROWS])
        client = HookedLLMClient(["SELECT total FROM sales.orders"], hook=token.cancel)
        pipeline = make_pipeline(provider, client)

        result = pipeline.run("q", cancel_token=token)

        assert result.state is LoopState.CANCELLED
        assert provider.executed == []
        assert len(result.attempts) == 1
        assert result.attempts[0].sql == "SELECT total FROM sales.orders"
        assert result.attempts[0].outcome is AttemptOutcome.PENDING

    def test_cancelled_before_next_attempt(self):
        token = CancellationToken()
        provider = sales_orders_provider(results=[FakeDriverError("bad"), TOTALS_ROWS])
        client = ScriptedLLMClient(["SELECT total FROM sales.orders"])
        pipeline = make_pipeline(provider, client, max_retries=3)
        original_execute = provider.execute

        def execute_then_cancel(sql):
            try:
                return original_execute(sql)
            finally:
                token.cancel()

        provider.execute = execute_then_cancel

        result = pipeline.run("q", cancel_token=token)

        assert result.state is LoopState.CANCELLED
        assert len(result.attempts) == 1
        assert result.attempts[0].outcome is AttemptOutcome.FAILED
        assert client.call_count == 1

    def test_cancel_request_by_id(self):
        provider = sales_orders_provider(results=[TOTALS_ROWS])
        observed = {}
        request = RepairRequest(question="q", request_id="req-1")

        def cancel_from_outside():
            observed["state"] = pipeline.get_request_state("req-1").to_dict()
            observed["cancelled"] = pipeline.cancel_request("req-1")

        client = HookedLLMClient(["SELECT total FROM sales.orders"], hook=cancel_from_outside)
        pipeline = make_pipeline(provider, client)

        result = pipeline.process(request)

        assert observed["state"]["state"] == "drafting"
        assert observed["cancelled"] is True
        assert result.state is LoopState.CANCELLED
        assert pipeline.get_request_state("req-1") is None
        assert pipeline.cancel_request("req-1") is False


class TestPipelineServices:
    """Tests for health checks, metrics and construction helpers"""

    def test_health_check(self):
        provider = sales_orders_provider(results=[RowSet(columns=["1"], rows=[(1,)], row_count=1)])
        pipeline = make_pipeline(provider, ScriptedLLMClient(["OK"]))

        health = pipeline.health_check()

        assert health["status"] == "healthy"
        assert health["components"]["database"]["provider"] == "FakeSQL"
        assert health["components"]["llm"]["status"] == "healthy"

    def test_health_check_model_down(self):
        pipeline = make_pipeline(sales_orders_provider(), ScriptedLLMClient([model_down()]))
        health = pipeline.health_check()
        assert health["status"] == "unhealthy"
        assert health["components"]["llm"]["status"] == "unhealthy"

    def test_loop_metrics(self):
        provider = sales_orders_provider(results=[FakeDriverError("bad"), TOTALS_ROWS])
        pipeline = make_pipeline(provider, ScriptedLLMClient(["SELECT total FROM sales.orders"]), max_retries=1)

        pipeline.run("q")

        collector = get_metrics_collector()
        assert collector.get_counter("repair_loop_total", {"db_type": "sqlite", "state": "succeeded"}) == 1
        assert collector.get_counter("repair_attempt_total", {"db_type": "sqlite", "outcome": "failed"}) == 1
        assert collector.get_counter("repair_attempt_total", {"db_type": "sqlite", "outcome": "succeeded"}) == 1

    def test_metrics_disabled(self):
        config = SystemConfig(
            database=DatabaseConfig(db_type=DatabaseType.SQLITE),
            metrics=MetricsConfig(enabled=False),
        )
        provider = sales_orders_provider(results=[TOTALS_ROWS])
        pipeline = RepairPipeline(config, provider=provider, llm_client=ScriptedLLMClient(["SELECT 1"]))

        pipeline.run("q")

        assert get_metrics_collector().get_counter(
            "repair_loop_total", {"db_type": "sqlite", "state": "succeeded"}
        ) == 0

    def test_close_disposes_provider(self):
        provider = sales_orders_provider(results=[TOTALS_ROWS])
        pipeline = make_pipeline(provider, ScriptedLLMClient(["SELECT 1"]))
        pipeline.run("q")

        pipeline.close()

        assert provider.state.value == "disposed"

    def test_builder(self):
        provider = sales_orders_provider()
        client = ScriptedLLMClient(["SELECT 1"])

        pipeline = (
            PipelineBuilder()
            .with_database(DatabaseConfig(db_type=DatabaseType.SQLITE))
            .with_llm(LLMConfig(model_id="test-model"))
            .with_provider(provider)
            .with_llm_client(client)
            .with_max_retries(1)
            .with_domain_hints(["Totals are in EUR."])
            .with_retry_model_errors()
            .build()
        )

        assert pipeline.provider is provider
        assert pipeline.generator.llm_client is client
        assert pipeline.config.agent.max_retries == 1
        assert pipeline.config.agent.domain_hints == ["Totals are in EUR."]
        assert pipeline.config.agent.retry_model_errors is True
        assert pipeline.config.llm.model_id == "test-model"

    def test_concurrent_first_use_creates_one_provider(self):
        pipeline = create_pipeline(db_type="sqlite", database=":memory:")
        providers = []

        def use_pipeline():
            providers.append(pipeline.provider)

        threads = [threading.Thread(target=use_pipeline) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(providers) == 8
        assert all(provider is providers[0] for provider in providers)
        pipeline.close()

    def test_builder_requires_database(self):
        with pytest.raises(ConfigurationError):
            PipelineBuilder().build()

    def test_create_pipeline(self):
        pipeline = create_pipeline(
            db_type="SQLite",
            database=":memory:",
            max_retries=2,
            excluded_columns=["ssn"],
        )

        assert isinstance(pipeline.provider, SQLiteProvider)
        assert pipeline.config.agent.max_retries == 2
        assert pipeline.config.database.excluded_columns == ["ssn"]
        pipeline.close()


class TestPipelineWithSQLite:
    """End-to-end tests against a live in-memory SQLite database"""

    @pytest.fixture
    def sqlite_provider(self):
        provider = SQLiteProvider(DatabaseConfig(db_type=DatabaseType.SQLITE, database=":memory:"))
        provider.open()
        provider.execute("CREATE TABLE customers (id INTEGER NOT NULL, name VARCHAR(50), ssn CHAR(11))")
        provider.execute("CREATE TABLE orders (id INTEGER NOT NULL, customer_id INTEGER, total REAL)")
        provider.execute("INSERT INTO customers VALUES (1, 'Ada', '123-45-6789'), (2, 'Grace', '987-65-4321')")
        provider.execute("INSERT INTO orders VALUES (1, 1, 10.0), (2, 1, 15.5), (3, 2, 7.25)")
        yield provider
        provider.close()

    def test_repairs_wrong_table_name(self, sqlite_provider):
        client = ScriptedLLMClient([
            "```sql\nSELECT COUNT(*) AS n FROM [main].[order_lines]\n```",
            "```sql\nSELECT COUNT(*) AS n FROM [main].[orders]\n```",
        ])
        config = SystemConfig(
            database=DatabaseConfig(db_type=DatabaseType.SQLITE, excluded_columns=["ssn"]),
            agent=AgentConfig(max_retries=2),
        )
        pipeline = RepairPipeline(config, provider=sqlite_provider, llm_client=client)

        result = pipeline.run("How many orders are there?")

        assert result.state is LoopState.SUCCEEDED
        assert result.rowset.columns == ["n"]
        assert result.rowset.rows == [(3,)]
        assert "no such table" in result.attempts[0].error_message

        system_prompt = client.conversations[0].system_prompt
        assert "CREATE TABLE [main].[customers] ([id] INTEGER NOT NULL, [name] VARCHAR(50) NULL);" in system_prompt
        assert "ssn" not in system_prompt
        assert "no such table" in client.conversations[1].last_turn.content

    def test_join_query(self, sqlite_provider):
        client = ScriptedLLMClient([
            "SELECT c.name, SUM(o.total) AS spent\n"
            "FROM customers c JOIN orders o ON o.customer_id = c.id\n"
            "GROUP BY c.name ORDER BY spent DESC;"
        ])
        pipeline = RepairPipeline(
            SystemConfig(database=DatabaseConfig(db_type=DatabaseType.SQLITE)),
            provider=sqlite_provider,
            llm_client=client,
        )

        result = pipeline.run("How much did each customer spend?")

        assert result.rowset.as_dicts() == [
            {"name": "Ada", "spent": 25.5},
            {"name": "Grace", "spent": 7.25},
        ]
