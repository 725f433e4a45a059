"""DatabaseClient implementation over SurrealQL.

Maps the collection/attribute/index/document capability set onto SurrealDB:

- collections are SCHEMAFULL tables (`DEFINE TABLE`)
- attributes are typed fields (`DEFINE FIELD`), optional unless required
- relationships are `record<target>` fields; the on-delete policy is kept in
  the field comment and, when record references are enabled on the server,
  enforced with `REFERENCE ON DELETE`
- indexes are `DEFINE INDEX` (UNIQUE, or SEARCH with a BM25 analyzer)
- documents are records addressed by explicit record id; timestamps travel
  as native datetimes

SurrealDB implicitly creates a schemaless table for a field, index or record
link that names a missing one, so every definition checks its target tables
first and raises NotFoundError instead.

Inspection reads `INFO FOR DB` / `INFO FOR TABLE` and turns the stored
definitions back into attribute and index descriptions.
"""

import json
import logging
import re
from typing import Any, Optional

from surrealdb import RecordID

from .client import ConflictError, DatabaseClient, DatabaseClientError, NotFoundError
from .connection import Connection, QueryError
from .state import parse_timestamp

logger = logging.getLogger(__name__)


FULLTEXT_ANALYZER = "docmigrate_fulltext"

FIELD_TYPES = {
    "string": "string",
    "integer": "int",
    "float": "float",
    "boolean": "bool",
    "datetime": "datetime",
    "email": "string",
    "url": "string",
}

# DSL on-delete policy -> SurrealQL reference action
ON_DELETE_ACTIONS = {
    "restrict": "REJECT",
    "cascade": "CASCADE",
    "set-null": "UNSET",
}

MANY_KINDS = {"one-to-many", "many-to-many"}

# kind of the reverse field defined under a two-way key
REVERSE_KINDS = {
    "one-to-one": "one-to-one",
    "one-to-many": "many-to-one",
    "many-to-one": "one-to-many",
    "many-to-many": "many-to-many",
}

_CLAUSE_END = r"(?=\s+(?:REFERENCE|DEFAULT|VALUE|ASSERT|READONLY|PERMISSIONS|COMMENT|FLEXIBLE)\b|$)"
_TYPE_RE = re.compile(r"\bTYPE\s+(.+?)" + _CLAUSE_END)
_DEFAULT_RE = re.compile(r"\bDEFAULT\s+(.+?)" + _CLAUSE_END)
_SIZE_RE = re.compile(r"string::len\(\$value\)\s*<=\s*(\d+)")
_RECORD_RE = re.compile(r"record<\s*[`⟨]?([^`⟩>|]+?)[`⟩]?\s*>")
_REFERENCE_RE = re.compile(r"REFERENCE\s+ON\s+DELETE\s+(REJECT|CASCADE|UNSET|IGNORE)")
_COMMENT_RE = re.compile(r"\bCOMMENT\s+(?:'((?:[^'\\]|\\.)*)'|\"((?:[^\"\\]|\\.)*)\")")
_ON_DELETE_COMMENT_RE = re.compile(r"\bon_delete=([a-z-]+)")
_INDEX_FIELDS_RE = re.compile(
    r"\b(?:FIELDS|COLUMNS)\s+(.+?)(?=\s+(?:UNIQUE|SEARCH|FULLTEXT|MTREE|HNSW|COMMENT|CONCURRENTLY)\b|$)"
)
_WRAPPER_RE = re.compile(r"^(?:option|array|set)<|>$")
_BASE_TYPES = {
    "string": "string",
    "int": "integer",
    "float": "float",
    "number": "float",
    "decimal": "float",
    "bool": "boolean",
    "datetime": "datetime",
}


def quote_ident(name: str) -> str:
    """Backtick-quote an identifier (collection ids may contain hyphens)."""
    escaped = name.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


def classify_error(error: Exception) -> DatabaseClientError:
    """Map a SurrealDB error message onto the client error taxonomy."""
    message = str(error)
    lowered = message.lower()
    if "already exists" in lowered:
        return ConflictError(message)
    if "does not exist" in lowered or "not found" in lowered:
        return NotFoundError(message)
    return DatabaseClientError(message)


def _strip_ident(name: str) -> str:
    return name.strip().strip("`").strip("⟨⟩")


def _normalize_value(value: Any) -> Any:
    if isinstance(value, RecordID):
        return str(value.id)
    wrapped = getattr(value, "dt", None)
    if isinstance(wrapped, str):
        # SDK Datetime wrapper around an ISO string
        return parse_timestamp(wrapped)
    return value


def normalize_document(record: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Convert a SurrealDB record into a plain document dict.

    Record ids become their bare id component; datetimes stay datetimes.
    """
    if not record:
        return None
    return {key: _normalize_value(value) for key, value in record.items()}


def parse_field_definition(key: str, definition: str) -> dict[str, Any]:
    """Recover an attribute description from a `DEFINE FIELD` statement."""
    type_match = _TYPE_RE.search(definition)
    field_type = type_match.group(1).strip() if type_match else "any"

    attribute: dict[str, Any] = {
        "key": key,
        "required": not field_type.startswith("option<"),
        "array": "array<" in field_type or "set<" in field_type,
    }

    record_match = _RECORD_RE.search(field_type)
    if record_match:
        attribute["type"] = "relationship"
        attribute["related_collection"] = _strip_ident(record_match.group(1))
        reference = _REFERENCE_RE.search(definition)
        comment = _ON_DELETE_COMMENT_RE.search(definition)
        if reference:
            reverse = {v: k for k, v in ON_DELETE_ACTIONS.items()}
            attribute["on_delete"] = reverse.get(reference.group(1), reference.group(1).lower())
        elif comment:
            attribute["on_delete"] = comment.group(1)
        return attribute

    if "string::is::email" in definition:
        attribute["type"] = "email"
    elif "string::is::url" in definition:
        attribute["type"] = "url"
    else:
        base = field_type
        while True:
            inner = _WRAPPER_RE.sub("", base)
            if inner == base:
                break
            base = inner
        base = base.split(",")[0].strip()
        attribute["type"] = _BASE_TYPES.get(base, base)

    size = _SIZE_RE.search(definition)
    if size:
        attribute["size"] = int(size.group(1))

    default = _DEFAULT_RE.search(definition)
    if default:
        attribute["default"] = default.group(1).strip()

    return attribute


def parse_index_definition(key: str, definition: str) -> dict[str, Any]:
    """Recover an index description from a `DEFINE INDEX` statement."""
    fields_match = _INDEX_FIELDS_RE.search(definition)
    fields = (
        [_strip_ident(f) for f in fields_match.group(1).split(",") if f.strip()]
        if fields_match
        else []
    )

    if re.search(r"\bUNIQUE\b", definition):
        index_type = "unique"
    elif re.search(r"\b(?:SEARCH|FULLTEXT)\b", definition):
        index_type = "fulltext"
    else:
        index_type = "key"

    return {"key": key, "type": index_type, "attributes": fields}


class SurrealDatabaseClient(DatabaseClient):
    """DatabaseClient backed by a SurrealDB connection.

    Usage:
        async with open_connection(config, "my-database") as conn:
            client = SurrealDatabaseClient(conn)
            collection = await client.get_collection("users")
    """

    def __init__(self, conn: Connection, record_references: bool = False):
        """Initialize the client.

        Args:
            conn: Connected session for the managed database
            record_references: Emit `REFERENCE ON DELETE` on relationship fields;
                needs a server started with the record_references capability
        """
        self.conn = conn
        self.record_references = record_references
        self._analyzer_defined = False

    async def _run(self, sql: str, params: Optional[dict[str, Any]] = None) -> list[Any]:
        logger.debug(f"SurrealQL: {sql}")
        try:
            return await self.conn.execute(sql, params)
        except QueryError as e:
            raise classify_error(e) from e

    async def _table_definitions(self) -> dict[str, str]:
        results = await self._run("INFO FOR DB;")
        info = results[0] if results and isinstance(results[0], dict) else {}
        return info.get("tables") or {}

    async def _require_tables(self, *collection_ids: str) -> None:
        tables = await self._table_definitions()
        for collection_id in collection_ids:
            if collection_id not in tables:
                raise NotFoundError(f"Collection with the requested ID '{collection_id}' could not be found.")

    # -------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------

    async def _describe_table(self, collection_id: str, definition: str) -> dict[str, Any]:
        results = await self._run(f"INFO FOR TABLE {quote_ident(collection_id)};")
        info = results[0] if results and isinstance(results[0], dict) else {}

        comment = _COMMENT_RE.search(definition)
        name = (comment.group(1) or comment.group(2)) if comment else collection_id

        attributes = [
            parse_field_definition(key, text)
            for key, text in (info.get("fields") or {}).items()
            # nested element definitions such as tags[*] belong to their parent
            if "[" not in key and "." not in key
        ]
        indexes = [
            parse_index_definition(key, text)
            for key, text in (info.get("indexes") or {}).items()
        ]
        return {"id": collection_id, "name": name, "attributes": attributes, "indexes": indexes}

    async def get_collection(self, collection_id: str) -> Optional[dict[str, Any]]:
        tables = await self._table_definitions()
        if collection_id not in tables:
            return None
        return await self._describe_table(collection_id, tables[collection_id])

    async def list_collections(self) -> list[dict[str, Any]]:
        tables = await self._table_definitions()
        return [await self._describe_table(tid, definition) for tid, definition in tables.items()]

    async def create_collection(self, collection_id: str, name: str) -> None:
        await self._run(
            f"DEFINE TABLE {quote_ident(collection_id)} SCHEMAFULL COMMENT {json.dumps(name)};"
        )

    async def delete_collection(self, collection_id: str) -> None:
        await self._run(f"REMOVE TABLE {quote_ident(collection_id)};")

    # -------------------------------------------------------------------
    # Attributes
    # -------------------------------------------------------------------

    async def _define_field(
        self,
        collection_id: str,
        key: str,
        attr_type: str,
        required: bool,
        array: bool,
        default: Optional[str] = None,
        size: Optional[int] = None,
    ) -> None:
        field_type = FIELD_TYPES[attr_type]
        if array:
            field_type = f"array<{field_type}>"
        if not required:
            field_type = f"option<{field_type}>"

        await self._require_tables(collection_id)
        sql = f"DEFINE FIELD {quote_ident(key)} ON TABLE {quote_ident(collection_id)} TYPE {field_type}"

        if default is not None and not array:
            sql += f" DEFAULT {self._default_literal(attr_type, default)}"

        assertions = []
        if attr_type == "email":
            assertions.append("string::is::email($value)")
        elif attr_type == "url":
            assertions.append("string::is::url($value)")
        if size is not None and not array:
            assertions.append(f"string::len($value) <= {int(size)}")
        if assertions:
            condition = " AND ".join(assertions)
            if not required:
                condition = f"$value = NONE OR ({condition})"
            sql += f" ASSERT {condition}"
        elif size is not None:
            logger.debug(f"Size limit on array field {collection_id}.{key} not enforced")

        await self._run(sql + ";")

    @staticmethod
    def _default_literal(attr_type: str, default: str) -> str:
        if attr_type == "datetime":
            if default == "now":
                return "time::now()"
            return f"<datetime>{default}"
        return default

    async def create_string_attribute(
        self,
        collection_id: str,
        key: str,
        size: int = 255,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        await self._define_field(collection_id, key, "string", required, array, default, size)

    async def create_integer_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        await self._define_field(collection_id, key, "integer", required, array, default)

    async def create_float_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        await self._define_field(collection_id, key, "float", required, array, default)

    async def create_boolean_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        await self._define_field(collection_id, key, "boolean", required, array, default)

    async def create_datetime_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        await self._define_field(collection_id, key, "datetime", required, array, default)

    async def create_email_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        await self._define_field(collection_id, key, "email", required, array, default)

    async def create_url_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        await self._define_field(collection_id, key, "url", required, array, default)

    async def create_relationship_attribute(
        self,
        collection_id: str,
        related_collection_id: str,
        kind: str,
        key: str,
        two_way_key: Optional[str] = None,
        on_delete: str = "restrict",
    ) -> None:
        try:
            action = ON_DELETE_ACTIONS[on_delete]
        except KeyError:
            raise DatabaseClientError(f"Unsupported onDelete policy: {on_delete}") from None

        await self._require_tables(collection_id, related_collection_id)

        record_type = f"record<{quote_ident(related_collection_id)}>"
        field_type = f"array<{record_type}>" if kind in MANY_KINDS else record_type
        definition = f"DEFINE FIELD {quote_ident(key)} ON TABLE {quote_ident(collection_id)} TYPE option<{field_type}>"
        if self.record_references:
            definition += f" REFERENCE ON DELETE {action}"
        definition += f" COMMENT {json.dumps(f'relationship {kind} on_delete={on_delete}')}"
        statements = [definition + ";"]

        if two_way_key:
            reverse_type = f"record<{quote_ident(collection_id)}>"
            if REVERSE_KINDS.get(kind) in MANY_KINDS:
                reverse_type = f"array<{reverse_type}>"
            statements.append(
                f"DEFINE FIELD {quote_ident(two_way_key)} ON TABLE "
                f"{quote_ident(related_collection_id)} TYPE option<{reverse_type}>;"
            )

        await self._run("\n".join(statements))

    async def delete_attribute(self, collection_id: str, key: str) -> None:
        await self._run(f"REMOVE FIELD {quote_ident(key)} ON TABLE {quote_ident(collection_id)};")

    # -------------------------------------------------------------------
    # Indexes
    # -------------------------------------------------------------------

    async def _ensure_analyzer(self) -> None:
        if self._analyzer_defined:
            return
        await self._run(
            f"DEFINE ANALYZER IF NOT EXISTS {FULLTEXT_ANALYZER} "
            "TOKENIZERS blank, class FILTERS lowercase, ascii;"
        )
        self._analyzer_defined = True

    async def ensure_index(
        self,
        collection_id: str,
        key: str,
        type: str = "key",
        attributes: Optional[list[str]] = None,
        orders: Optional[list[Optional[str]]] = None,
    ) -> None:
        fields = attributes or []
        if not fields:
            raise DatabaseClientError(f"Index {key} on {collection_id} has no fields")
        await self._require_tables(collection_id)
        if orders and any(orders):
            logger.debug(f"Index orders ignored for {collection_id}.{key}: {orders}")

        sql = (
            f"DEFINE INDEX {quote_ident(key)} ON TABLE {quote_ident(collection_id)} "
            f"FIELDS {', '.join(quote_ident(f) for f in fields)}"
        )
        if type == "unique":
            sql += " UNIQUE"
        elif type == "fulltext":
            await self._ensure_analyzer()
            sql += f" SEARCH ANALYZER {FULLTEXT_ANALYZER} BM25"
        elif type != "key":
            raise DatabaseClientError(f"Unsupported index type: {type}")

        await self._run(sql + ";")

    async def delete_index(self, collection_id: str, key: str) -> None:
        await self._run(f"REMOVE INDEX {quote_ident(key)} ON TABLE {quote_ident(collection_id)};")

    # -------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------

    async def get_document(self, collection_id: str, document_id: str) -> Optional[dict[str, Any]]:
        try:
            record = await self.conn.select(collection_id, document_id)
        except QueryError as e:
            raise classify_error(e) from e
        return normalize_document(record)

    async def list_documents(
        self,
        collection_id: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        sql = f"SELECT * FROM {quote_ident(collection_id)}"
        params: dict[str, Any] = {}

        if filters:
            conditions = []
            for i, (field_name, value) in enumerate(filters.items()):
                params[f"p{i}"] = value
                conditions.append(f"{quote_ident(field_name)} = $p{i}")
            sql += " WHERE " + " AND ".join(conditions)
        if order_by:
            sql += f" ORDER BY {quote_ident(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"

        logger.debug(f"SurrealQL: {sql} {params}")
        try:
            records = await self.conn.query(sql + ";", params)
        except QueryError as e:
            raise classify_error(e) from e
        return [doc for doc in (normalize_document(r) for r in records) if doc]

    async def create_document(
        self,
        collection_id: str,
        document_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        # None means absent: option<T> fields reject NULL
        content = {key: value for key, value in data.items() if value is not None}
        try:
            record = await self.conn.create(collection_id, content, record_id=document_id)
        except QueryError as e:
            raise classify_error(e) from e
        return normalize_document(record) or {"id": document_id, **content}

    async def update_document(
        self,
        collection_id: str,
        document_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        content = {key: value for key, value in data.items() if value is not None}
        cleared = [key for key, value in data.items() if value is None]
        try:
            record = await self.conn.merge(collection_id, document_id, content)
        except QueryError as e:
            raise classify_error(e) from e
        document = normalize_document(record)
        if document is None:
            raise NotFoundError(f"Document {collection_id}:{document_id} not found")

        if cleared:
            await self._run(
                f"UPDATE type::thing($tb, $doc) UNSET {', '.join(quote_ident(k) for k in cleared)};",
                {"tb": collection_id, "doc": document_id},
            )
            for key in cleared:
                document.pop(key, None)
        return document

    async def delete_document(self, collection_id: str, document_id: str) -> None:
        try:
            deleted = await self.conn.delete(collection_id, document_id)
        except QueryError as e:
            raise classify_error(e) from e
        if not deleted:
            raise NotFoundError(f"Document {collection_id}:{document_id} not found")
