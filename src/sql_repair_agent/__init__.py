"""
SQL Repair Agent

Translates natural-language questions into SQL for a database whose schema is
discovered at request time, executes the query and repairs it from the
database's own error messages.

Supports SQLite, PostgreSQL, MySQL and Oracle; drafts queries with Claude on
AWS Bedrock.

Example:
    from sql_repair_agent import create_pipeline

    pipeline = create_pipeline(db_type="sqlite", database="shop.db", max_retries=2)
    result = pipeline.run("Which customers placed more than five orders?")
    print(result.final_sql)
    for row in result.rowset:
        print(row)
"""
from .config import (
    AgentConfig,
    DatabaseConfig,
    DatabaseType,
    LLMConfig,
    SystemConfig,
    get_config,
    set_config,
)
from .providers import BaseProvider, RowSet, TableIdentifier, create_provider
from .schema_catalog import SchemaDocument, SchemaCatalogBuilder, build_schema_document
from .schemas import Conversation, LoopState, QueryAttempt, RepairRequest, RepairResult
from .orchestration import CancellationToken, PipelineBuilder, RepairPipeline, create_pipeline
from .utils import (
    ModelUnavailableError,
    ProviderDisposedError,
    ProviderUnavailableError,
    QueryExecutionError,
    RepairExhaustedError,
    SQLRepairError,
    setup_logging,
)

__version__ = "1.0.0"

__all__ = [
    # Configuration
    "AgentConfig",
    "DatabaseConfig",
    "DatabaseType",
    "LLMConfig",
    "SystemConfig",
    "get_config",
    "set_config",
    # Providers
    "BaseProvider",
    "RowSet",
    "TableIdentifier",
    "create_provider",
    # Schema catalog
    "SchemaDocument",
    "SchemaCatalogBuilder",
    "build_schema_document",
    # Models
    "Conversation",
    "LoopState",
    "QueryAttempt",
    "RepairRequest",
    "RepairResult",
    # Pipeline
    "CancellationToken",
    "PipelineBuilder",
    "RepairPipeline",
    "create_pipeline",
    # Errors
    "SQLRepairError",
    "ProviderUnavailableError",
    "ProviderDisposedError",
    "QueryExecutionError",
    "ModelUnavailableError",
    "RepairExhaustedError",
    # Logging
    "setup_logging",
]
