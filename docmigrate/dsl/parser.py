"""Parser for the schema DSL.

The parser is a small line-oriented state machine with three states:
OUTSIDE, IN_DATABASE and IN_COLLECTION. Block boundaries are tracked with a
bracket-depth counter; unrecognized lines are ignored so that the DSL stays
permissive. Problems that would otherwise be dropped silently (unknown
attribute or index types, malformed decorator values) are collected as
diagnostics on the resulting Schema.

Example:
    database {
      name = "my-database"
      id   = "my-database"
    }

    collection Users {
      name   String   @size(255) @required
      email  String   @size(255) @required @unique
      posts  Post[]   @relationship(type: "one-to-many", to: "Posts")

      @@index([email])
    }
"""

import logging
import math
import re
from enum import Enum
from typing import Optional

from .models import (
    Attribute,
    AttributeType,
    Collection,
    Database,
    Decorator,
    DefaultDecorator,
    DefaultValue,
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
from .naming import kebab_case

logger = logging.getLogger(__name__)


DATABASE_RE = re.compile(r"^database\b")
COLLECTION_RE = re.compile(r"^collection\s+(\w+)")
DATABASE_FIELD_RE = re.compile(r"(\w+)\s*=\s*\"([^\"]*)\"")
ATTRIBUTE_RE = re.compile(r"^(\w+)\s+(\w+)(\[\])?\s*(.*)")
DECORATOR_RE = re.compile(r"@(\w+)(?:\(([^)]*)\))?")
BLOCK_INDEX_RE = re.compile(r"^@@(index|unique)\s*\(\s*\[([^\]]*)\]\s*(?:,(.*))?\)")

ORDER_TOKENS = {"asc", "desc"}
TRUTHY_DEFAULTS = {"true", "1", "yes", "on"}

TYPE_ALIASES = {
    "string": AttributeType.STRING,
    "integer": AttributeType.INTEGER,
    "int": AttributeType.INTEGER,
    "float": AttributeType.FLOAT,
    "double": AttributeType.FLOAT,
    "number": AttributeType.FLOAT,
    "boolean": AttributeType.BOOLEAN,
    "bool": AttributeType.BOOLEAN,
    "datetime": AttributeType.DATETIME,
    "date": AttributeType.DATETIME,
    "email": AttributeType.EMAIL,
    "url": AttributeType.URL,
}


class ParserState(str, Enum):
    """Scanner state."""

    OUTSIDE = "outside"
    IN_DATABASE = "in_database"
    IN_COLLECTION = "in_collection"


def strip_quotes(value: str) -> str:
    """Remove every single and double quote from a decorator parameter."""
    return value.replace('"', "").replace("'", "").strip()


def normalize_type(type_name: str) -> Optional[AttributeType]:
    """Map a DSL type token to an AttributeType, or None if unknown."""
    return TYPE_ALIASES.get(type_name.lower())


def normalize_default(raw: str, attr_type: Optional[AttributeType]) -> Optional[DefaultValue]:
    """Normalize a `@default(...)` value according to the attribute type.

    Args:
        raw: Default text with quotes stripped
        attr_type: Attribute type, None for relationships/unknown types

    Returns:
        Typed default value, or None when a numeric default cannot be parsed
    """
    value = raw.strip()

    if attr_type == AttributeType.BOOLEAN:
        return value.lower() in TRUTHY_DEFAULTS

    if attr_type == AttributeType.INTEGER:
        try:
            return int(value)
        except ValueError:
            pass
        try:
            number = float(value)
        except ValueError:
            return None
        if math.isfinite(number) and number.is_integer():
            return int(number)
        return None

    if attr_type == AttributeType.FLOAT:
        try:
            number = float(value)
        except ValueError:
            return None
        return number if math.isfinite(number) else None

    # datetime keeps the "now" sentinel verbatim; everything else is a string
    return str(value)


def parse_decorators(text: str) -> list[Decorator]:
    """Parse the decorator tail of an attribute line.

    Args:
        text: Everything after the type token (e.g. `@size(255) @required`)

    Returns:
        Decorators in declaration order
    """
    decorators: list[Decorator] = []

    for match in DECORATOR_RE.finditer(text):
        name, params = match.group(1), match.group(2)

        if name == "size" and params:
            try:
                decorators.append(SizeDecorator(int(params.strip())))
            except ValueError:
                decorators.append(UnknownDecorator(name, params))
        elif name == "required":
            decorators.append(RequiredDecorator())
        elif name == "unique":
            decorators.append(UniqueDecorator())
        elif name == "default":
            decorators.append(DefaultDecorator(strip_quotes(params or "")))
        elif name == "relationship":
            decorators.append(RelationshipDecorator(parse_relationship_params(params or "")))
        else:
            decorators.append(UnknownDecorator(name, params if params is not None else True))

    return decorators


def parse_relationship_params(params: str) -> tuple[tuple[str, str], ...]:
    """Parse `key: value` pairs of a `@relationship(...)` decorator."""
    pairs = []
    for part in params.split(","):
        if not part.strip():
            continue
        key, _, value = part.partition(":")
        pairs.append((key.strip(), strip_quotes(value)))
    return tuple(pairs)


class SchemaParser:
    """Line-oriented state machine that builds a Schema.

    Usage:
        schema = SchemaParser().parse(text)
    """

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self.state = ParserState.OUTSIDE
        self.depth = 0
        self.line_number = 0
        self.schema = Schema()
        self._collection: Optional[Collection] = None
        self._database_fields: dict[str, str] = {}

    def parse(self, text: str) -> Schema:
        """Parse schema source text.

        Args:
            text: DSL source

        Returns:
            Parsed Schema (never raises on unrecognized syntax)
        """
        self._reset()

        for line_number, line in enumerate(text.splitlines(), 1):
            self.line_number = line_number
            self.feed(line)

        self._close_block()
        if self.depth:
            self._diagnose(f"unbalanced braces at end of input (depth {self.depth})")

        logger.debug(
            f"Parsed schema: {len(self.schema.collections)} collections, "
            f"{len(self.schema.diagnostics)} diagnostics"
        )
        return self.schema

    def feed(self, line: str) -> None:
        """Process a single source line."""
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("//"):
            return

        self.depth += trimmed.count("{") - trimmed.count("}")
        if self.depth < 0:
            self._diagnose("unmatched '}'")
            self.depth = 0

        if self.state != ParserState.IN_COLLECTION and DATABASE_RE.match(trimmed):
            self._close_block()
            self.state = ParserState.IN_DATABASE
            self._database_fields = dict(DATABASE_FIELD_RE.findall(trimmed))
            # a bare header waits for its brace on a following line
            if self.depth == 0 and "{" in trimmed:
                self._close_block()
            return

        collection_match = COLLECTION_RE.match(trimmed)
        if collection_match:
            self._close_block()
            self._open_collection(collection_match.group(1))
            if self.depth == 0 and "}" in trimmed:
                self._close_block()
            return

        if self.state == ParserState.IN_DATABASE:
            for key, value in DATABASE_FIELD_RE.findall(trimmed):
                self._database_fields[key] = value
        elif self.state == ParserState.IN_COLLECTION and self._collection is not None:
            self._parse_collection_line(trimmed.rstrip("}").strip())

        if self.depth == 0 and "}" in trimmed:
            self._close_block()

    # -------------------------------------------------------------------
    # Block transitions
    # -------------------------------------------------------------------

    def _open_collection(self, name: str) -> None:
        if name in self.schema.collections:
            self._diagnose(f"collection {name} declared more than once; last declaration wins")
        self._collection = Collection(name=name)
        self.schema.collections[name] = self._collection
        self.state = ParserState.IN_COLLECTION

    def _close_block(self) -> None:
        if self.state == ParserState.IN_DATABASE:
            fields = self._database_fields
            database_id = fields.get("id") or fields.get("name")
            if database_id:
                extra = {k: v for k, v in fields.items() if k not in ("id", "name")}
                self.schema.databases[database_id] = Database(
                    id=database_id,
                    name=fields.get("name"),
                    extra=extra,
                )
            else:
                self._diagnose("database block without id or name ignored")
            self._database_fields = {}

        self.state = ParserState.OUTSIDE
        self._collection = None

    # -------------------------------------------------------------------
    # Collection content
    # -------------------------------------------------------------------

    def _parse_collection_line(self, line: str) -> None:
        assert self._collection is not None

        if line.startswith("@@"):
            index = self._parse_block_index(line)
            if index is not None:
                self._collection.indexes.append(index)
            return

        match = ATTRIBUTE_RE.match(line)
        if not match:
            return

        name, type_name, array_marker, decorator_text = match.groups()
        self._collection.attributes[name] = self._build_attribute(
            name, type_name, bool(array_marker), decorator_text
        )

    def _build_attribute(
        self,
        name: str,
        type_name: str,
        array: bool,
        decorator_text: str,
    ) -> Attribute:
        decorators = parse_decorators(decorator_text)
        attr = Attribute(name=name, type_name=type_name, array=array, decorators=decorators)

        relationship_decorator = next(
            (d for d in decorators if isinstance(d, RelationshipDecorator)), None
        )
        if relationship_decorator is not None:
            attr.relationship = self._build_relationship(attr, relationship_decorator)
        else:
            attr.type = normalize_type(type_name)
            if attr.type is None:
                self._diagnose(f"{self._collection_name}.{name}: unknown attribute type '{type_name}'")

        for decorator in decorators:
            if isinstance(decorator, SizeDecorator):
                attr.size = decorator.value
            elif isinstance(decorator, RequiredDecorator):
                attr.required = True
            elif isinstance(decorator, UniqueDecorator):
                attr.unique = True
            elif isinstance(decorator, DefaultDecorator):
                attr.default = normalize_default(decorator.raw, attr.type)
                if attr.default is None:
                    self._diagnose(
                        f"{self._collection_name}.{name}: default '{decorator.raw}' "
                        f"is not a valid {attr.type.value if attr.type else type_name}"
                    )
            elif isinstance(decorator, UnknownDecorator) and decorator.name == "size":
                self._diagnose(f"{self._collection_name}.{name}: invalid @size({decorator.params})")

        return attr

    def _build_relationship(self, attr: Attribute, decorator: RelationshipDecorator) -> Relationship:
        target = decorator.get("to") or attr.type_name
        relationship = Relationship(to_collection=target)

        kind = decorator.get("type") or decorator.get("kind")
        if kind:
            try:
                relationship.kind = RelationKind(kebab_case(kind))
            except ValueError:
                self._diagnose(
                    f"{self._collection_name}.{attr.name}: unknown relationship type '{kind}'"
                )

        relationship.two_way_key = decorator.get("twoWayKey") or decorator.get("two_way_key")

        on_delete = decorator.get("onDelete") or decorator.get("on_delete")
        if on_delete:
            try:
                relationship.on_delete = OnDelete(kebab_case(on_delete))
            except ValueError:
                self._diagnose(
                    f"{self._collection_name}.{attr.name}: unknown onDelete policy '{on_delete}'"
                )

        return relationship

    def _parse_block_index(self, line: str) -> Optional[Index]:
        match = BLOCK_INDEX_RE.match(line)
        if not match:
            return None

        directive, token_text, args_text = match.groups()

        fields: list[str] = []
        orders: list[Optional[str]] = []
        last: Optional[int] = None
        for token in re.split(r"[,\s]+", token_text):
            token = strip_quotes(token)
            if not token:
                continue
            if token.lower() in ORDER_TOKENS:
                if last is not None:
                    orders[last] = token.lower()
                continue
            if token in fields:
                last = None
                continue
            fields.append(token)
            orders.append(None)
            last = len(fields) - 1

        if not fields:
            self._diagnose(f"{self._collection_name}: @@{directive} without fields ignored")
            return None

        index_type = "unique" if directive == "unique" else "key"
        name: Optional[str] = None

        for arg in (args_text or "").split(","):
            arg = arg.strip()
            if not arg:
                continue
            key, sep, value = arg.partition(":")
            if sep:
                key, value = key.strip(), strip_quotes(value)
                if key in ("name", "map"):
                    name = value
                elif key == "type" and directive == "index":
                    index_type = value
                continue
            word = strip_quotes(arg)
            if word.lower() in ORDER_TOKENS:
                orders[0] = word.lower()
            elif directive == "index":
                index_type = word

        try:
            parsed_type = IndexType(index_type.lower())
        except ValueError:
            self._diagnose(
                f"{self._collection_name}: unknown index type '{index_type}' "
                f"for fields {fields}; index ignored"
            )
            return None

        return Index(fields=fields, type=parsed_type, orders=orders, name=name)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    @property
    def _collection_name(self) -> str:
        return self._collection.name if self._collection else "?"

    def _diagnose(self, message: str) -> None:
        text = f"line {self.line_number}: {message}"
        logger.debug(f"Schema diagnostic: {text}")
        self.schema.diagnostics.append(text)


def parse_schema(text: str) -> Schema:
    """Parse DSL source text into a Schema."""
    return SchemaParser().parse(text)
