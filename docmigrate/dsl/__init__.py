"""Schema DSL: data model, parser and identifier normalization.

Usage:
    from docmigrate.dsl import parse_schema

    schema = parse_schema(Path("docmigrate.schema").read_text())
    for name, collection in schema.collections.items():
        print(collection.id, list(collection.attributes))
"""

from .models import (
    Attribute,
    AttributeType,
    Collection,
    Database,
    DefaultDecorator,
    Index,
    IndexType,
    OnDelete,
    RelationKind,
    Relationship,
    RelationshipDecorator,
    RequiredDecorator,
    Schema,
    SizeDecorator,
    UniqueDecorator,
    UnknownDecorator,
)
from .naming import MAX_INDEX_KEY_LENGTH, derive_index_key, kebab_case, sanitize_index_key
from .parser import SchemaParser, normalize_default, parse_decorators, parse_schema

__all__ = [
    # Models
    "Attribute",
    "AttributeType",
    "Collection",
    "Database",
    "Index",
    "IndexType",
    "OnDelete",
    "RelationKind",
    "Relationship",
    "Schema",
    # Decorators
    "DefaultDecorator",
    "RelationshipDecorator",
    "RequiredDecorator",
    "SizeDecorator",
    "UniqueDecorator",
    "UnknownDecorator",
    # Naming
    "MAX_INDEX_KEY_LENGTH",
    "derive_index_key",
    "kebab_case",
    "sanitize_index_key",
    # Parser
    "SchemaParser",
    "normalize_default",
    "parse_decorators",
    "parse_schema",
]
