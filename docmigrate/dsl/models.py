"""Structured schema produced by the DSL parser.

Defines the core data model:
- Schema: databases and collections declared in a schema file
- Collection: attributes and indexes of one collection
- Attribute: a plain field or a relationship declaration
- Index: key/unique/fulltext index over ordered fields
- Decorator variants: the closed set of known decorators plus UnknownDecorator
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .naming import derive_index_key, kebab_case


class AttributeType(str, Enum):
    """Plain attribute types supported by the remote service."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    EMAIL = "email"
    URL = "url"


class IndexType(str, Enum):
    """Index types."""

    KEY = "key"
    UNIQUE = "unique"
    FULLTEXT = "fulltext"


class RelationKind(str, Enum):
    """Relationship cardinality."""

    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"


class OnDelete(str, Enum):
    """Behaviour of a relationship when the referenced document is deleted."""

    RESTRICT = "restrict"
    CASCADE = "cascade"
    SET_NULL = "set-null"


# Scalar default value after type-aware normalization
DefaultValue = Union[str, int, float, bool]


# -------------------------------------------------------------------
# Decorators
# -------------------------------------------------------------------


@dataclass(frozen=True)
class SizeDecorator:
    """`@size(n)` - string length cap."""

    value: int


@dataclass(frozen=True)
class RequiredDecorator:
    """`@required`."""


@dataclass(frozen=True)
class UniqueDecorator:
    """`@unique`."""


@dataclass(frozen=True)
class DefaultDecorator:
    """`@default(value)` with quotes already stripped."""

    raw: str


@dataclass(frozen=True)
class RelationshipDecorator:
    """`@relationship(to: "X", type: "kind", twoWayKey: "k", onDelete: "policy")`."""

    params: tuple[tuple[str, str], ...] = ()

    def get(self, key: str) -> Optional[str]:
        for name, value in self.params:
            if name == key:
                return value
        return None


@dataclass(frozen=True)
class UnknownDecorator:
    """Any decorator the parser does not know, kept for forward compatibility."""

    name: str
    params: Union[str, bool] = True


Decorator = Union[
    SizeDecorator,
    RequiredDecorator,
    UniqueDecorator,
    DefaultDecorator,
    RelationshipDecorator,
    UnknownDecorator,
]


# -------------------------------------------------------------------
# Schema entities
# -------------------------------------------------------------------


@dataclass
class Relationship:
    """Relationship declared on an attribute."""

    to_collection: str
    kind: RelationKind = RelationKind.MANY_TO_ONE
    two_way_key: Optional[str] = None
    on_delete: OnDelete = OnDelete.RESTRICT

    @property
    def to_collection_id(self) -> str:
        """Remote identifier of the related collection."""
        return kebab_case(self.to_collection)


@dataclass
class Attribute:
    """A collection attribute.

    Attributes:
        name: Field name as declared
        type_name: Raw type token from the DSL (e.g. "String", "Post")
        type: Normalized plain type, None for relationships and unknown types
        array: Whether the field holds a list of values
        required: `@required` present
        unique: `@unique` present
        size: `@size` value for strings
        default: Normalized default value (None when absent or dropped)
        relationship: Relationship declaration, mutually exclusive with a plain type
        decorators: Every decorator in declaration order
    """

    name: str
    type_name: str
    type: Optional[AttributeType] = None
    array: bool = False
    required: bool = False
    unique: bool = False
    size: Optional[int] = None
    default: Optional[DefaultValue] = None
    relationship: Optional[Relationship] = None
    decorators: list[Decorator] = field(default_factory=list)

    @property
    def is_relationship(self) -> bool:
        return self.relationship is not None

    @property
    def unknown_decorators(self) -> dict[str, Union[str, bool]]:
        """Decorators the parser did not recognize, by name."""
        return {d.name: d.params for d in self.decorators if isinstance(d, UnknownDecorator)}


@dataclass
class Index:
    """Index over one or more fields."""

    fields: list[str]
    type: IndexType = IndexType.KEY
    orders: list[Optional[str]] = field(default_factory=list)
    name: Optional[str] = None

    @property
    def key(self) -> str:
        """Effective, sanitized index key."""
        return derive_index_key(self.fields, self.name)


@dataclass
class Collection:
    """A declared collection."""

    name: str
    attributes: dict[str, Attribute] = field(default_factory=dict)
    indexes: list[Index] = field(default_factory=list)

    @property
    def id(self) -> str:
        """Remote identifier (kebab-cased name)."""
        return kebab_case(self.name)

    @property
    def plain_attributes(self) -> list[Attribute]:
        return [a for a in self.attributes.values() if not a.is_relationship]

    @property
    def relationship_attributes(self) -> list[Attribute]:
        return [a for a in self.attributes.values() if a.is_relationship]


@dataclass
class Database:
    """A `database { ... }` block."""

    id: str
    name: Optional[str] = None
    extra: dict[str, str] = field(default_factory=dict)


@dataclass
class Schema:
    """Parse result of a schema file."""

    databases: dict[str, Database] = field(default_factory=dict)
    collections: dict[str, Collection] = field(default_factory=dict)
    diagnostics: list[str] = field(default_factory=list)

    @property
    def database_id(self) -> Optional[str]:
        """Id of the first declared database block, if any."""
        for database_id in self.databases:
            return database_id
        return None

    def to_dict(self) -> dict[str, Any]:
        """Structural view, used for equality checks and debugging output."""
        return {
            "databases": {k: {"id": v.id, "name": v.name} for k, v in self.databases.items()},
            "collections": {
                name: {
                    "id": coll.id,
                    "attributes": {
                        attr.name: {
                            "type": attr.type.value if attr.type else attr.type_name,
                            "array": attr.array,
                            "required": attr.required,
                            "unique": attr.unique,
                            "size": attr.size,
                            "default": attr.default,
                            "relationship": (
                                {
                                    "to": attr.relationship.to_collection,
                                    "kind": attr.relationship.kind.value,
                                    "two_way_key": attr.relationship.two_way_key,
                                    "on_delete": attr.relationship.on_delete.value,
                                }
                                if attr.relationship
                                else None
                            ),
                        }
                        for attr in coll.attributes.values()
                    },
                    "indexes": [
                        {
                            "key": idx.key,
                            "type": idx.type.value,
                            "fields": list(idx.fields),
                            "orders": list(idx.orders),
                        }
                        for idx in coll.indexes
                    ],
                }
                for name, coll in self.collections.items()
            },
        }
