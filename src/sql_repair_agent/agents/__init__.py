"""
Agents Package for SQL Repair Agent
"""
from .base_agent import BaseAgent, AgentMetadata
from .sql_generator import (
    SQLGeneratorAgent,
    SQLDraft,
    extract_sql,
    first_statement,
    looks_like_sql,
)

__all__ = [
    "BaseAgent",
    "AgentMetadata",
    "SQLGeneratorAgent",
    "SQLDraft",
    "extract_sql",
    "first_statement",
    "looks_like_sql",
]
