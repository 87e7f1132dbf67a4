"""
SQL Repair Orchestration Pipeline
Drafts SQL with the generator agent, executes it through the provider and feeds
database errors back into the same conversation until a query succeeds or the
retry budget runs out
"""
from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..agents import SQLDraft, SQLGeneratorAgent
from ..config import AgentConfig, DatabaseConfig, DatabaseType, LLMConfig, SystemConfig
from ..llm_client import BaseLLMClient
from ..providers import BaseProvider, create_provider
from ..schema_catalog import SchemaCatalogBuilder, SchemaDocument
from ..schemas import (
    Conversation,
    LoopState,
    QueryAttempt,
    RepairRequest,
    RepairResult,
    RepairState,
)
from ..utils import (
    NO_QUERY_PRODUCED,
    ConfigurationError,
    ModelUnavailableError,
    ProviderUnavailableError,
    QueryExecutionError,
    RepairExhaustedError,
    RepairMetrics,
    SQLRepairError,
    get_logger,
    get_metrics_collector,
    log_context,
    log_operation,
)
from .cancellation import CancellationToken

logger = get_logger(__name__)


class RepairPipeline:
    """
    Generation / execution / repair loop

    Each question owns its conversation, attempt trail and tracking state;
    nothing is shared between questions except the provider connection,
    whose executions the provider serializes. Token usage is reported per
    question on the result.

    Usage:
        pipeline = RepairPipeline(config)
        result = pipeline.run("How many orders shipped last week?")
        for row in result.rowset:
            print(row)

        # Never raises for exhausted or infrastructure failures
        result = pipeline.process(RepairRequest(question="..."))
        print(result.to_dict())
    """

    def __init__(
        self,
        config: SystemConfig,
        provider: Optional[BaseProvider] = None,
        llm_client: Optional[BaseLLMClient] = None,
    ):
        self.config = config
        self._provider = provider
        self._llm_client = llm_client
        self._generator: Optional[SQLGeneratorAgent] = None
        self._catalog_builder = SchemaCatalogBuilder(config.database)

        if config.metrics.enabled:
            get_metrics_collector().enable()
        else:
            get_metrics_collector().disable()

        # Thread safety
        self._lock = threading.Lock()

        # State tracking
        self._active_requests: Dict[str, Tuple[RepairState, CancellationToken]] = {}

    @property
    def provider(self) -> BaseProvider:
        """Get or create database provider"""
        if self._provider is None:
            with self._lock:
                if self._provider is None:
                    self._provider = create_provider(self.config.database)
        return self._provider

    @property
    def generator(self) -> SQLGeneratorAgent:
        """Get or create SQL Generator agent"""
        if self._generator is None:
            with self._lock:
                if self._generator is None:
                    self._generator = SQLGeneratorAgent(
                        llm_config=self.config.llm,
                        agent_config=self.config.agent,
                        llm_client=self._llm_client,
                    )
        return self._generator

    def set_provider(self, provider: BaseProvider) -> None:
        """Set a custom database provider"""
        with self._lock:
            self._provider = provider

    def build_schema_document(self) -> SchemaDocument:
        """Introspect the database with the configured filter sets"""
        return self._catalog_builder.build(self.provider)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(
        self,
        question: str,
        cancel_token: Optional[CancellationToken] = None,
        max_retries: Optional[int] = None,
        domain_hints: Optional[Sequence[str]] = None,
        schema_document: Optional[SchemaDocument] = None,
    ) -> RepairResult:
        """
        Answer a question with a query that the database accepted

        Returns a result in state ``succeeded``, or ``cancelled`` with the
        partial attempt trail when the token was set.

        Raises:
            RepairExhaustedError: Every attempt failed
            ProviderUnavailableError: The database could not be reached
            ModelUnavailableError: The model did not produce a completion
        """
        request = RepairRequest(
            question=question,
            max_retries=max_retries,
            domain_hints=list(domain_hints) if domain_hints is not None else None,
        )
        result = self._run_loop(request, cancel_token or CancellationToken(), schema_document)
        if result.error is not None:
            raise result.error
        return result

    def process(
        self,
        request: RepairRequest,
        cancel_token: Optional[CancellationToken] = None,
        schema_document: Optional[SchemaDocument] = None,
    ) -> RepairResult:
        """
        Run the repair loop and report every outcome as a result

        Exhausted retries end in state ``exhausted``; an unreachable database
        or model ends in state ``failed``. Both carry structured error details
        listing every SQL candidate and the reason it failed.
        """
        return self._run_loop(request, cancel_token or CancellationToken(), schema_document)

    # ------------------------------------------------------------------
    # Repair loop
    # ------------------------------------------------------------------

    def _run_loop(
        self,
        request: RepairRequest,
        token: CancellationToken,
        schema_document: Optional[SchemaDocument],
    ) -> RepairResult:
        max_retries = request.max_retries if request.max_retries is not None else self.config.agent.max_retries
        if max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {max_retries}", config_key="max_retries")
        domain_hints = request.domain_hints if request.domain_hints is not None else self.config.agent.domain_hints

        state = RepairState(request_id=request.request_id, question=request.question, max_retries=max_retries)
        with self._lock:
            self._active_requests[request.request_id] = (state, token)

        result = RepairResult(
            request_id=request.request_id,
            question=request.question,
            state=LoopState.DRAFTING,
            started_at=state.started_at,
        )
        db_type = DatabaseType(self.config.database.db_type).value
        start_time = time.time()

        try:
            with log_context(correlation_id=request.correlation_id, request_id=request.request_id):
                with log_operation(logger, "repair_loop", max_retries=max_retries) as op:
                    db_type = self.provider.database_type.value
                    self._repair(request.question, max_retries, domain_hints, schema_document, token, state, result)
                    op["state"] = result.state.value
                    op["attempts"] = len(result.attempts)

        except (RepairExhaustedError, ProviderUnavailableError, ModelUnavailableError) as e:
            failed_state = LoopState.EXHAUSTED if isinstance(e, RepairExhaustedError) else LoopState.FAILED
            if state.state is not failed_state:
                state.transition(failed_state)
            result.state = failed_state
            result.error = e
            result.error_message = e.message
            result.error_details = e.to_dict()
            if not isinstance(e, RepairExhaustedError):
                result.error_details["attempts"] = [attempt.to_dict() for attempt in result.attempts]
            RepairMetrics.record_error(
                error_type=type(e).__name__,
                category=e.category.value,
                db_type=db_type,
            )

        finally:
            duration = time.time() - start_time
            result.completed_at = datetime.utcnow()
            result.total_duration_ms = round(duration * 1000, 2)
            RepairMetrics.record_loop_outcome(duration, db_type, result.state.value, len(result.attempts))

            with self._lock:
                self._active_requests.pop(request.request_id, None)

        return result

    def _repair(
        self,
        question: str,
        max_retries: int,
        domain_hints: Sequence[str],
        schema_document: Optional[SchemaDocument],
        token: CancellationToken,
        state: RepairState,
        result: RepairResult,
    ) -> None:
        """Drive the loop, filling ``result``; raises on exhaustion and infrastructure failures"""
        provider = self.provider
        document = schema_document or self.build_schema_document()
        conversation = self.generator.start_conversation(
            question,
            document,
            query_hints=provider.query_hints(),
            domain_hints=domain_hints,
        )
        result.conversation = conversation

        attempt_index = 0
        while True:
            state.attempt_index = attempt_index
            with log_context(attempt_index=attempt_index):
                if token.is_cancelled:
                    self._cancel(state, result)
                    return

                attempt = QueryAttempt(attempt_index=attempt_index)
                result.attempts.append(attempt)
                attempt_start = time.time()

                state.transition(LoopState.DRAFTING)
                draft = self._draft(conversation, attempt)
                if draft is not None:
                    result.token_usage["input"] += draft.input_tokens
                    result.token_usage["output"] += draft.output_tokens

                if draft is not None and draft.has_sql:
                    attempt.sql = provider.normalize_query(draft.sql)

                    if token.is_cancelled:
                        self._cancel(state, result)
                        return

                    state.transition(LoopState.EXECUTING)
                    try:
                        rowset = provider.execute(attempt.sql)
                    except QueryExecutionError as e:
                        attempt.fail(e.driver_message)
                        logger.info(f"Attempt {attempt_index} rejected by the database: {e.driver_message}")
                    else:
                        attempt.succeed()
                        attempt.duration_ms = round((time.time() - attempt_start) * 1000, 2)
                        RepairMetrics.record_attempt(provider.database_type.value, attempt.outcome.value)
                        state.transition(LoopState.SUCCEEDED)
                        result.state = LoopState.SUCCEEDED
                        result.rowset = rowset
                        result.final_sql = attempt.sql
                        logger.info(f"Query succeeded on attempt {attempt_index} with {rowset.row_count} row(s)")
                        return
                elif draft is not None:
                    attempt.fail(NO_QUERY_PRODUCED)

                attempt.duration_ms = round((time.time() - attempt_start) * 1000, 2)
                RepairMetrics.record_attempt(provider.database_type.value, attempt.outcome.value)

                if attempt_index >= max_retries:
                    state.transition(LoopState.EXHAUSTED)
                    raise RepairExhaustedError(
                        message=f"No query succeeded after {len(result.attempts)} attempt(s)",
                        attempts=result.attempts,
                        max_retries=max_retries,
                    )

                state.transition(LoopState.RETRYING)
                if draft is not None:
                    conversation = self.generator.add_execution_feedback(
                        conversation, draft.completion, attempt.sql, attempt.error_message
                    )
                    result.conversation = conversation
                attempt_index += 1

    def _draft(self, conversation: Conversation, attempt: QueryAttempt) -> Optional[SQLDraft]:
        """Ask the model for a candidate; None when a model failure consumed the attempt"""
        try:
            draft = self.generator.draft(conversation)
        except ModelUnavailableError as e:
            attempt.fail(e.message)
            if not self.config.agent.retry_model_errors:
                raise
            logger.warning(f"Model unavailable on attempt {attempt.attempt_index}, counting it as failed")
            return None
        attempt.completion = draft.completion
        return draft

    def _cancel(self, state: RepairState, result: RepairResult) -> None:
        state.transition(LoopState.CANCELLED)
        result.state = LoopState.CANCELLED
        result.error_message = "Cancelled"
        logger.info(f"Repair loop cancelled after {len(result.attempts)} attempt(s)")

    # ------------------------------------------------------------------
    # Request tracking
    # ------------------------------------------------------------------

    def get_request_state(self, request_id: str) -> Optional[RepairState]:
        """Get the current state of a request"""
        with self._lock:
            entry = self._active_requests.get(request_id)
        return entry[0] if entry else None

    def cancel_request(self, request_id: str) -> bool:
        """Cancel an active request; it stops at its next model call or execution"""
        with self._lock:
            entry = self._active_requests.get(request_id)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    def health_check(self) -> Dict[str, Any]:
        """Perform health check on all components"""
        health: Dict[str, Any] = {
            "status": "healthy",
            "components": {},
            "timestamp": datetime.utcnow().isoformat(),
        }

        try:
            db_ok = self.provider.ping()
            health["components"]["database"] = {
                "status": "healthy" if db_ok else "unhealthy",
                "provider": self.provider.name,
            }
        except SQLRepairError as e:
            db_ok = False
            health["components"]["database"] = {
                "status": "unhealthy",
                "error": str(e),
            }

        llm_ok = self.generator.llm_client.health_check()
        health["components"]["llm"] = {
            "status": "healthy" if llm_ok else "unhealthy",
        }

        if not (db_ok and llm_ok):
            health["status"] = "unhealthy"
        return health

    def close(self) -> None:
        """Close the provider and forget active requests"""
        if self._provider is not None:
            self._provider.close()

        with self._lock:
            self._active_requests.clear()


class PipelineBuilder:
    """Builder pattern for constructing RepairPipeline"""

    def __init__(self):
        self._db_config: Optional[DatabaseConfig] = None
        self._llm_config: Optional[LLMConfig] = None
        self._agent_config: Optional[AgentConfig] = None
        self._provider: Optional[BaseProvider] = None
        self._llm_client: Optional[BaseLLMClient] = None
        self._agent_overrides: Dict[str, Any] = {}

    def with_database(self, config: DatabaseConfig) -> "PipelineBuilder":
        """Set database configuration"""
        self._db_config = config
        return self

    def with_llm(self, config: LLMConfig) -> "PipelineBuilder":
        """Set LLM configuration"""
        self._llm_config = config
        return self

    def with_agent_config(self, config: AgentConfig) -> "PipelineBuilder":
        """Set agent configuration"""
        self._agent_config = config
        return self

    def with_provider(self, provider: BaseProvider) -> "PipelineBuilder":
        """Set custom database provider"""
        self._provider = provider
        return self

    def with_llm_client(self, client: BaseLLMClient) -> "PipelineBuilder":
        """Set custom LLM client"""
        self._llm_client = client
        return self

    def with_max_retries(self, max_retries: int) -> "PipelineBuilder":
        """Set the number of repair attempts after the first"""
        self._agent_overrides["max_retries"] = max_retries
        return self

    def with_domain_hints(self, hints: List[str]) -> "PipelineBuilder":
        """Set facts about coded column values, added to every prompt verbatim"""
        self._agent_overrides["domain_hints"] = list(hints)
        return self

    def with_retry_model_errors(self, enabled: bool = True) -> "PipelineBuilder":
        """Let model failures consume a retry instead of ending the loop"""
        self._agent_overrides["retry_model_errors"] = enabled
        return self

    def build(self) -> RepairPipeline:
        """Build the pipeline"""
        if self._db_config is None:
            raise ConfigurationError("Database configuration is required", config_key="database")

        agent_config = self._agent_config or AgentConfig()
        if self._agent_overrides:
            agent_config = AgentConfig.model_validate({**agent_config.model_dump(), **self._agent_overrides})

        system_config = SystemConfig(
            database=self._db_config,
            llm=self._llm_config or LLMConfig(),
            agent=agent_config,
        )

        return RepairPipeline(
            config=system_config,
            provider=self._provider,
            llm_client=self._llm_client,
        )


def create_pipeline(
    db_type: str,
    database: str = "",
    connection_string: Optional[str] = None,
    host: str = "localhost",
    port: Optional[int] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    aws_region: str = "us-east-1",
    model_id: str = "anthropic.claude-3-5-sonnet-20241022-v2:0",
    max_retries: int = 3,
    domain_hints: Optional[List[str]] = None,
    **kwargs
) -> RepairPipeline:
    """
    Create a pipeline with minimal configuration

    Args:
        db_type: Database type (sqlite, postgresql, mysql, oracle)
        database: Database name (file path for SQLite)
        connection_string: Driver connection string, used instead of host/port/database
        host: Database host
        port: Database port (uses default if not specified)
        username: Database username
        password: Database password
        aws_region: AWS region for Bedrock
        model_id: Claude model ID
        max_retries: Repair attempts after the first
        domain_hints: Facts about coded column values
        **kwargs: included_tables, excluded_tables, excluded_columns,
            max_tokens, temperature, retry_model_errors

    Returns:
        Configured RepairPipeline

    Example:
        pipeline = create_pipeline(db_type="sqlite", database="shop.db")

        pipeline = create_pipeline(
            db_type="postgresql",
            connection_string="host=localhost dbname=shop user=app",
            excluded_columns=["password_hash"],
        )
    """
    from pydantic import SecretStr

    db_config = DatabaseConfig(
        db_type=DatabaseType(db_type.lower()),
        connection_string=SecretStr(connection_string) if connection_string else None,
        host=host,
        port=port,
        database=database,
        username=username,
        password=SecretStr(password) if password else None,
        included_tables=kwargs.get("included_tables", []),
        excluded_tables=kwargs.get("excluded_tables", []),
        excluded_columns=kwargs.get("excluded_columns", []),
    )

    llm_config = LLMConfig(
        aws_region=aws_region,
        model_id=model_id,
        max_tokens=kwargs.get("max_tokens", 2048),
        temperature=kwargs.get("temperature", 0.0),
    )

    agent_config = AgentConfig(
        max_retries=max_retries,
        domain_hints=domain_hints or [],
        retry_model_errors=kwargs.get("retry_model_errors", False),
    )

    system_config = SystemConfig(
        database=db_config,
        llm=llm_config,
        agent=agent_config,
    )

    return RepairPipeline(config=system_config)
