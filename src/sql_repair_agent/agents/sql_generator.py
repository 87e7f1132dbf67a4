"""
SQL Generator Agent
Drafts SQL from natural language and extracts the candidate statement from completions
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

import sqlparse

from ..config import AgentConfig, LLMConfig
from ..llm_client import BaseLLMClient, LLMResponse
from ..schema_catalog import SchemaDocument
from ..schemas import Conversation, Role
from ..utils import format_execution_feedback, get_logger
from .base_agent import BaseAgent

logger = get_logger(__name__)

SQL_KEYWORDS = (
    "SELECT", "WITH", "INSERT", "UPDATE", "DELETE", "MERGE",
    "CREATE", "ALTER", "DROP", "VALUES", "EXPLAIN", "SHOW", "PRAGMA",
)

_SQL_START = re.compile(r"^\(*\s*(?:%s)\b" % "|".join(SQL_KEYWORDS), re.IGNORECASE)
_SQL_FENCE = re.compile(r"```sql[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_ANY_FENCE = re.compile(r"```(.*?)```", re.DOTALL)
_LANGUAGE_TAG = re.compile(r"^[A-Za-z][\w+-]*$")

# Uppercase query keyword inside a line of prose, e.g. "Here it is: SELECT ..."
_INLINE_SQL = re.compile(r"\b(?:SELECT|WITH|INSERT|UPDATE|DELETE|MERGE|VALUES|EXPLAIN)\b")

# Prose markers that end an unfenced statement
_STOP_MARKERS = ("EXPLANATION:", "NOTE:", "TABLES_USED:", "COLUMNS_USED:")


@dataclass
class SQLDraft:
    """One model completion and the SQL candidate extracted from it"""
    completion: str
    sql: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: float = 0.0

    @property
    def has_sql(self) -> bool:
        return bool(self.sql)


def _strip_language_tag(block: str) -> str:
    first_line, sep, rest = block.partition("\n")
    tag = first_line.strip()
    if sep and _LANGUAGE_TAG.match(tag) and tag.upper() not in SQL_KEYWORDS:
        return rest
    return block


def looks_like_sql(statement: str) -> bool:
    """Whether a statement starts with a SQL keyword once comments are removed"""
    code = sqlparse.format(statement, strip_comments=True).strip()
    return bool(_SQL_START.match(code))


def first_statement(text: str) -> str:
    """First non-empty statement of a script, trailing semicolons removed"""
    for statement in sqlparse.split(text):
        statement = statement.strip()
        while statement.endswith(";"):
            statement = statement[:-1].rstrip()
        if statement:
            return statement
    return ""


def _unfenced_sql(completion: str) -> str:
    lines: List[str] = []
    for line in completion.splitlines():
        stripped = line.strip()
        if not lines:
            if _SQL_START.match(stripped):
                lines.append(line)
            continue
        if not stripped or any(stripped.upper().startswith(marker) for marker in _STOP_MARKERS):
            break
        lines.append(line)
    return "\n".join(lines)


def _inline_sql(completion: str) -> str:
    match = _INLINE_SQL.search(completion)
    if match is None:
        return ""
    return _unfenced_sql(completion[match.start():])


def extract_sql(completion: str) -> str:
    """
    Extract the first SQL statement from a model completion

    Looks at ```sql fenced blocks first, then any fenced block, then at
    unfenced lines starting with a SQL keyword up to the next blank line,
    and finally at prose followed by an uppercase query keyword on the same line.
    Returns an empty string when nothing resembling SQL is found.
    """
    if not completion:
        return ""

    candidates = [m.group(1) for m in _SQL_FENCE.finditer(completion)]
    candidates += [_strip_language_tag(m.group(1)) for m in _ANY_FENCE.finditer(completion)]
    candidates.append(_unfenced_sql(completion))
    candidates.append(_inline_sql(completion))

    for candidate in candidates:
        statement = first_statement(candidate)
        if statement and looks_like_sql(statement):
            return statement
    return ""


class SQLGeneratorAgent(BaseAgent[SQLDraft]):
    """
    SQL Generator Agent

    Builds the repair conversation (instructions, schema document, dialect
    notes and domain facts) and turns each completion into a SQL candidate.
    """

    SYSTEM_PROMPT = """You are an expert {dialect} developer. Translate the user's question into a single {dialect} query against the {provider} database described below.

GUIDELINES:
1. Use only the tables and columns listed in the schema
2. Write exactly one statement
3. Only read data unless the question explicitly asks for a change
4. When a previous query failed, read the database error carefully and correct the query instead of repeating it

OUTPUT FORMAT:
Reply with the SQL query in a ```sql code block and nothing else."""

    def __init__(
        self,
        llm_config: LLMConfig,
        agent_config: AgentConfig,
        llm_client: Optional[BaseLLMClient] = None,
    ):
        super().__init__(
            name="sql_generator",
            llm_config=llm_config,
            agent_config=agent_config,
            llm_client=llm_client,
        )

    def build_system_prompt(
        self,
        schema_document: SchemaDocument,
        query_hints: Optional[str] = None,
        domain_hints: Optional[Sequence[str]] = None,
    ) -> str:
        """Assemble instructions, schema, dialect notes and domain facts"""
        instructions = self.agent_config.system_message or self.SYSTEM_PROMPT.format(
            dialect=schema_document.dialect_label,
            provider=schema_document.provider_name,
        )

        parts = [
            instructions,
            "",
            "DATABASE SCHEMA:",
            schema_document.to_prompt_text(),
        ]

        if query_hints:
            parts.extend(["", "DIALECT NOTES:", query_hints])

        if domain_hints:
            parts.extend(["", "DOMAIN FACTS:"])
            parts.extend(domain_hints)

        return "\n".join(parts)

    def start_conversation(
        self,
        question: str,
        schema_document: SchemaDocument,
        query_hints: Optional[str] = None,
        domain_hints: Optional[Sequence[str]] = None,
    ) -> Conversation:
        """Initial conversation: one system turn and the question"""
        system_prompt = self.build_system_prompt(schema_document, query_hints, domain_hints)
        return Conversation().append(Role.SYSTEM, system_prompt).append(Role.USER, question)

    def add_execution_feedback(
        self,
        conversation: Conversation,
        completion: str,
        sql: Optional[str],
        error_message: str,
    ) -> Conversation:
        """Append the model's answer and the error it produced"""
        return (
            conversation
            .append(Role.ASSISTANT, completion)
            .append(Role.USER, format_execution_feedback(sql, error_message))
        )

    def draft(self, conversation: Conversation) -> SQLDraft:
        """
        Ask the model for a query

        Raises:
            ModelUnavailableError: The model did not produce a completion
        """
        return self.execute(conversation)

    def _parse_response(self, response: LLMResponse) -> SQLDraft:
        return SQLDraft(
            completion=response.content,
            sql=extract_sql(response.content),
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            latency_ms=response.latency_ms,
        )

    def _validate_output(self, output: SQLDraft) -> bool:
        return output.has_sql

    def _handle_validation_failure(self, output: SQLDraft) -> SQLDraft:
        logger.warning(
            "Completion contained no SQL statement",
            extra={"extra_fields": {"completion": output.completion[:200]}},
        )
        return output
