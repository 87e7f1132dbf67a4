"""
Schema Catalog Builder

Turns provider metadata into the textual schema document embedded in the
model prompt. The document is rebuilt for every request so that schema
changes between questions are always picked up.

Usage:
    # With explicit filter sets
    document = build_schema_document(
        provider,
        included_tables=[],
        excluded_tables=["dbo.audit"],
        excluded_columns=["password_hash"],
    )

    # With the filter sets of a DatabaseConfig
    document = SchemaCatalogBuilder(config.database).build(provider)
    prompt_text = document.to_prompt_text()
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

from ..config import DatabaseConfig
from ..providers.base import BaseProvider, TableIdentifier
from ..utils import get_logger, get_metrics_collector

logger = get_logger(__name__)


@dataclass(frozen=True)
class SchemaDocument:
    """Synthesized DDL describing the queryable part of a database"""
    statements: Tuple[str, ...]
    tables: Tuple[TableIdentifier, ...]
    provider_name: str
    dialect_label: str

    def to_prompt_text(self) -> str:
        return "\n".join(self.statements)

    @property
    def is_empty(self) -> bool:
        return not self.statements

    @property
    def table_names(self) -> Tuple[str, ...]:
        return tuple(table.qualified_name for table in self.tables)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_name": self.provider_name,
            "dialect_label": self.dialect_label,
            "tables": list(self.table_names),
            "statements": list(self.statements),
        }


def build_schema_document(
    provider: BaseProvider,
    included_tables: Optional[Iterable[str]] = None,
    excluded_tables: Optional[Iterable[str]] = None,
    excluded_columns: Optional[Iterable[str]] = None,
) -> SchemaDocument:
    """
    Build a schema document from a provider

    Args:
        provider: Provider to introspect
        included_tables: Qualified names; when non-empty only these are described
        excluded_tables: Qualified names dropped when no inclusion set is given
        excluded_columns: ``column``, ``table.column`` or ``schema.table.column``

    Raises:
        ProviderUnavailableError: The catalog could not be read
    """
    start_time = time.time()

    tables = provider.list_tables(included_tables, excluded_tables)
    rendered = provider.render_create_statements(tables, excluded_columns)

    document = SchemaDocument(
        statements=tuple(statement for _, statement in rendered),
        tables=tuple(table for table, _ in rendered),
        provider_name=provider.name,
        dialect_label=provider.dialect_label,
    )

    duration = time.time() - start_time
    get_metrics_collector().timer(
        "schema_document_duration_seconds", duration, {"db_type": provider.database_type.value}
    )
    logger.info(
        f"Built schema document with {len(document.statements)} table(s)",
        extra={"extra_fields": {
            "provider": provider.name,
            "tables": list(document.table_names),
            "duration_ms": round(duration * 1000, 2),
        }},
    )
    if document.is_empty:
        logger.warning("Schema document is empty; check the table filters")

    return document


class SchemaCatalogBuilder:
    """Builds schema documents using the filter sets of a database configuration"""

    def __init__(self, config: DatabaseConfig):
        self.config = config

    def build(self, provider: BaseProvider) -> SchemaDocument:
        return build_schema_document(
            provider,
            included_tables=self.config.included_tables,
            excluded_tables=self.config.excluded_tables,
            excluded_columns=self.config.excluded_columns,
        )
