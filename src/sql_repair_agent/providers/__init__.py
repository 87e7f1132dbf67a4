"""
Database Providers Package
Schema introspection, DDL synthesis, dialect adaptation and execution per database engine
"""
from .base import (
    BaseProvider,
    ProviderRegistry,
    ProviderState,
    TableIdentifier,
    ColumnDescriptor,
    RowSet,
    filter_tables,
    is_column_excluded,
    requote_bracket_identifiers,
    register_provider,
)

# Import providers to register them
from .sqlite_provider import SQLiteProvider
from .postgresql_provider import PostgreSQLProvider
from .mysql_provider import MySQLProvider
from .oracle_provider import OracleProvider

from ..config import DatabaseConfig


def create_provider(config: DatabaseConfig) -> BaseProvider:
    """
    Factory function to create a database provider from configuration

    Args:
        config: Database configuration

    Returns:
        Provider instance; the connection is opened on first use

    Raises:
        ConfigurationError: If database type is not supported
    """
    return ProviderRegistry.create_provider(config)


def get_supported_databases() -> list:
    """Get list of supported database types"""
    return ProviderRegistry.get_supported_types()


__all__ = [
    # Base classes
    "BaseProvider",
    "ProviderRegistry",
    "ProviderState",
    "TableIdentifier",
    "ColumnDescriptor",
    "RowSet",
    "filter_tables",
    "is_column_excluded",
    "requote_bracket_identifiers",
    "register_provider",
    # Concrete providers
    "SQLiteProvider",
    "PostgreSQLProvider",
    "MySQLProvider",
    "OracleProvider",
    # Factory functions
    "create_provider",
    "get_supported_databases",
]
