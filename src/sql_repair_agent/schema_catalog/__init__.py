"""
Schema Catalog Package
Builds the prompt-ready schema document from provider metadata
"""
from .builder import SchemaDocument, SchemaCatalogBuilder, build_schema_document

__all__ = [
    "SchemaDocument",
    "SchemaCatalogBuilder",
    "build_schema_document",
]
