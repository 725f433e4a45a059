"""Tests for the SurrealQL DatabaseClient."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from surrealdb import RecordID

from docmigrate.db.client import ConflictError, DatabaseClientError, NotFoundError
from docmigrate.db.connection import QueryError
from docmigrate.db.surreal_client import (
    SurrealDatabaseClient,
    classify_error,
    normalize_document,
    parse_field_definition,
    parse_index_definition,
    quote_ident,
)


EXISTING_TABLES = {
    name: f"DEFINE TABLE `{name}` TYPE NORMAL SCHEMAFULL PERMISSIONS NONE"
    for name in ("users", "blog-posts", "posts", "events")
}


def answer_info(sql, params=None):
    """Answer INFO FOR DB with the existing tables and anything else with no rows."""
    if sql == "INFO FOR DB;":
        return [{"tables": dict(EXISTING_TABLES)}]
    return [None]


@pytest.fixture
def conn():
    """Connection double recording statements."""
    mock = MagicMock()
    mock.execute = AsyncMock(side_effect=answer_info)
    mock.query = AsyncMock(return_value=[])
    mock.create = AsyncMock(return_value={"id": RecordID("dm_state", "abc")})
    mock.select = AsyncMock(return_value=None)
    mock.merge = AsyncMock(return_value={"id": RecordID("dm_state", "abc")})
    mock.delete = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def client(conn):
    return SurrealDatabaseClient(conn)


def executed(conn) -> list[str]:
    return [c.args[0] for c in conn.execute.call_args_list]


def statements(conn) -> list[str]:
    """Executed statements other than the table lookups."""
    return [sql for sql in executed(conn) if sql != "INFO FOR DB;"]


class TestHelpers:
    """Tests for module-level helpers."""

    def test_quote_ident(self):
        """Test identifiers are backtick-quoted and escaped."""
        assert quote_ident("blog-posts") == "`blog-posts`"
        assert quote_ident("a`b") == "`a\\`b`"

    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Query failed: The table 'users' already exists", ConflictError),
            ("Query failed: The field 'x' does not exist", NotFoundError),
            ("Query failed: The index 'idx' was not found", NotFoundError),
            ("Query failed: Parse error", DatabaseClientError),
        ],
    )
    def test_classify_error(self, message, expected):
        """Test SurrealDB messages map onto the client error taxonomy."""
        error = classify_error(QueryError(message))
        assert type(error) is expected
        assert str(error) == message

    def test_normalize_document(self):
        """Test record ids become bare ids and datetimes stay datetimes."""
        doc = normalize_document(
            {
                "id": RecordID("dm_locks", "abc"),
                "created_at": datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
                "owner": "me",
            }
        )

        assert doc == {"id": "abc", "created_at": datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc), "owner": "me"}
        assert normalize_document(None) is None
        assert normalize_document({}) is None


class TestParseDefinitions:
    """Tests for recovering attributes and indexes from INFO output."""

    def test_required_sized_string(self):
        """Test a required string with a length assertion."""
        attr = parse_field_definition(
            "name", "DEFINE FIELD name ON users TYPE string ASSERT string::len($value) <= 255 PERMISSIONS FULL"
        )
        assert attr == {"key": "name", "required": True, "array": False, "type": "string", "size": 255}

    def test_optional_array(self):
        """Test option<array<...>> unwraps to the element type."""
        attr = parse_field_definition("tags", "DEFINE FIELD tags ON users TYPE option<array<string>> PERMISSIONS FULL")
        assert attr["type"] == "string"
        assert attr["required"] is False
        assert attr["array"] is True

    def test_email_and_url(self):
        """Test format assertions identify email and url attributes."""
        email = parse_field_definition(
            "email",
            "DEFINE FIELD email ON users TYPE option<string> "
            "ASSERT $value = NONE OR (string::is::email($value)) PERMISSIONS FULL",
        )
        url = parse_field_definition("site", "DEFINE FIELD site ON users TYPE string ASSERT string::is::url($value)")
        assert email["type"] == "email"
        assert url["type"] == "url"

    def test_datetime_with_default(self):
        """Test the VALUE clause does not leak into the type."""
        attr = parse_field_definition(
            "created_at",
            "DEFINE FIELD created_at ON users TYPE option<datetime> "
            "VALUE IF type::is::string($value) THEN <datetime>$value ELSE $value END "
            "DEFAULT time::now() PERMISSIONS FULL",
        )
        assert attr["type"] == "datetime"
        assert attr["default"] == "time::now()"

    @pytest.mark.parametrize("type_text,expected", [("int", "integer"), ("bool", "boolean"), ("number", "float")])
    def test_base_types(self, type_text, expected):
        """Test SurrealDB base types map back to attribute types."""
        attr = parse_field_definition("x", f"DEFINE FIELD x ON t TYPE {type_text}")
        assert attr["type"] == expected

    def test_relationship(self):
        """Test record<...> fields are relationships."""
        attr = parse_field_definition(
            "author",
            "DEFINE FIELD author ON blog_posts TYPE option<record<users>> "
            "REFERENCE ON DELETE CASCADE PERMISSIONS FULL",
        )
        assert attr["type"] == "relationship"
        assert attr["related_collection"] == "users"
        assert attr["on_delete"] == "cascade"

    def test_relationship_policy_from_comment(self):
        """Test the on-delete policy is read from the comment without REFERENCE."""
        attr = parse_field_definition(
            "author",
            "DEFINE FIELD author ON blog_posts TYPE option<record<users>> "
            "COMMENT 'relationship many-to-one on_delete=set-null' PERMISSIONS FULL",
        )
        assert attr["related_collection"] == "users"
        assert attr["on_delete"] == "set-null"

    def test_relationship_reference_wins_over_comment(self):
        """Test an enforced REFERENCE clause takes precedence over the comment."""
        attr = parse_field_definition(
            "author",
            "DEFINE FIELD author ON blog_posts TYPE option<record<users>> "
            "REFERENCE ON DELETE REJECT COMMENT 'relationship many-to-one on_delete=cascade'",
        )
        assert attr["on_delete"] == "restrict"

    def test_quoted_relationship_target(self):
        """Test quoted table names are unquoted."""
        attr = parse_field_definition(
            "posts", "DEFINE FIELD posts ON users TYPE option<array<record<⟨blog-posts⟩>>>"
        )
        assert attr["related_collection"] == "blog-posts"
        assert attr["array"] is True

    def test_indexes(self):
        """Test unique, fulltext and plain indexes."""
        unique = parse_index_definition("idx_email", "DEFINE INDEX idx_email ON users FIELDS email UNIQUE")
        search = parse_index_definition(
            "idx_title",
            "DEFINE INDEX idx_title ON posts FIELDS title SEARCH ANALYZER docmigrate_fulltext BM25(1.2,0.75)",
        )
        plain = parse_index_definition("idx_name_age", "DEFINE INDEX idx_name_age ON users FIELDS name, age")

        assert unique == {"key": "idx_email", "type": "unique", "attributes": ["email"]}
        assert search["type"] == "fulltext"
        assert plain == {"key": "idx_name_age", "type": "key", "attributes": ["name", "age"]}


class TestSchemaStatements:
    """Tests for generated SurrealQL."""

    @pytest.mark.asyncio
    async def test_create_collection(self, client, conn):
        """Test collections are schemafull tables named by comment."""
        await client.create_collection("blog-posts", "BlogPosts")
        assert statements(conn) == ['DEFINE TABLE `blog-posts` SCHEMAFULL COMMENT "BlogPosts";']

    @pytest.mark.asyncio
    async def test_required_string(self, client, conn):
        """Test required strings are typed and length-checked."""
        await client.create_string_attribute("users", "name", size=255, required=True)
        assert statements(conn) == [
            "DEFINE FIELD `name` ON TABLE `users` TYPE string ASSERT string::len($value) <= 255;"
        ]

    @pytest.mark.asyncio
    async def test_optional_email(self, client, conn):
        """Test optional fields allow NONE before the format check."""
        await client.create_email_attribute("users", "email")
        assert statements(conn) == [
            "DEFINE FIELD `email` ON TABLE `users` TYPE option<string> "
            "ASSERT $value = NONE OR (string::is::email($value));"
        ]

    @pytest.mark.asyncio
    async def test_datetime_default_now(self, client, conn):
        """Test the now sentinel becomes time::now()."""
        await client.create_datetime_attribute("users", "created_at", default="now")
        assert statements(conn) == [
            "DEFINE FIELD `created_at` ON TABLE `users` TYPE option<datetime> DEFAULT time::now();"
        ]

    @pytest.mark.asyncio
    async def test_datetime_literal_default(self, client, conn):
        """Test other datetime defaults are cast."""
        await client.create_datetime_attribute("events", "at", required=True, default='"2024-01-01T00:00:00Z"')
        assert statements(conn)[0].endswith('DEFAULT <datetime>"2024-01-01T00:00:00Z";')

    @pytest.mark.asyncio
    async def test_array_string(self, client, conn):
        """Test array fields carry no default and no length assertion."""
        await client.create_string_attribute("users", "tags", size=32, array=True, default='"x"')
        assert statements(conn) == ["DEFINE FIELD `tags` ON TABLE `users` TYPE option<array<string>>;"]

    @pytest.mark.asyncio
    async def test_boolean_and_integer_defaults(self, client, conn):
        """Test scalar defaults are emitted verbatim."""
        await client.create_boolean_attribute("users", "active", default="true")
        await client.create_integer_attribute("users", "age", required=True, default="18")
        assert statements(conn) == [
            "DEFINE FIELD `active` ON TABLE `users` TYPE option<bool> DEFAULT true;",
            "DEFINE FIELD `age` ON TABLE `users` TYPE int DEFAULT 18;",
        ]

    @pytest.mark.asyncio
    async def test_relationship_with_two_way_key(self, client, conn):
        """Test a relationship defines the reverse field on the target."""
        await client.create_relationship_attribute(
            "blog-posts", "users", "many-to-one", "author", two_way_key="posts", on_delete="cascade"
        )
        assert statements(conn) == [
            "DEFINE FIELD `author` ON TABLE `blog-posts` TYPE option<record<`users`>> "
            'COMMENT "relationship many-to-one on_delete=cascade";\n'
            "DEFINE FIELD `posts` ON TABLE `users` TYPE option<array<record<`blog-posts`>>>;"
        ]

    @pytest.mark.asyncio
    async def test_relationship_with_record_references(self, conn):
        """Test REFERENCE ON DELETE is only emitted when record references are enabled."""
        client = SurrealDatabaseClient(conn, record_references=True)

        await client.create_relationship_attribute("blog-posts", "users", "many-to-one", "author", on_delete="cascade")

        assert statements(conn) == [
            "DEFINE FIELD `author` ON TABLE `blog-posts` TYPE option<record<`users`>> "
            'REFERENCE ON DELETE CASCADE COMMENT "relationship many-to-one on_delete=cascade";'
        ]

    @pytest.mark.asyncio
    async def test_many_relationship_set_null(self, conn):
        """Test to-many relationships are arrays and set-null unsets."""
        client = SurrealDatabaseClient(conn, record_references=True)
        await client.create_relationship_attribute("users", "posts", "one-to-many", "posts", on_delete="set-null")
        assert statements(conn) == [
            "DEFINE FIELD `posts` ON TABLE `users` TYPE option<array<record<`posts`>>> "
            'REFERENCE ON DELETE UNSET COMMENT "relationship one-to-many on_delete=set-null";'
        ]

    @pytest.mark.asyncio
    async def test_relationship_to_missing_collection(self, client, conn):
        """Test a missing target is NotFoundError, not an implicit table."""
        with pytest.raises(NotFoundError, match="ghosts"):
            await client.create_relationship_attribute("users", "ghosts", "many-to-one", "ghost")
        assert statements(conn) == []

    @pytest.mark.asyncio
    async def test_relationship_on_missing_collection(self, client, conn):
        """Test a missing owning collection is NotFoundError."""
        with pytest.raises(NotFoundError, match="ghosts"):
            await client.create_relationship_attribute("ghosts", "users", "many-to-one", "owner")
        assert statements(conn) == []

    @pytest.mark.asyncio
    async def test_attribute_on_missing_collection(self, client, conn):
        """Test defining a field on a missing table is NotFoundError."""
        with pytest.raises(NotFoundError, match="ghosts"):
            await client.create_string_attribute("ghosts", "name", size=32)
        assert statements(conn) == []

    @pytest.mark.asyncio
    async def test_index_on_missing_collection(self, client, conn):
        """Test indexing a missing table is NotFoundError."""
        with pytest.raises(NotFoundError, match="ghosts"):
            await client.ensure_index("ghosts", "idx_name", "key", ["name"])
        assert statements(conn) == []

    @pytest.mark.asyncio
    async def test_unsupported_on_delete(self, client, conn):
        """Test an unknown policy is rejected before any statement."""
        with pytest.raises(DatabaseClientError, match="onDelete"):
            await client.create_relationship_attribute("a", "b", "many-to-one", "x", on_delete="explode")
        conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_unique_index(self, client, conn):
        """Test unique indexes."""
        await client.ensure_index("users", "idx_email", "unique", ["email"], [None])
        assert statements(conn) == ["DEFINE INDEX `idx_email` ON TABLE `users` FIELDS `email` UNIQUE;"]

    @pytest.mark.asyncio
    async def test_fulltext_index_defines_analyzer_once(self, client, conn):
        """Test the analyzer is defined before the first fulltext index only."""
        await client.ensure_index("posts", "idx_title", "fulltext", ["title"])
        await client.ensure_index("posts", "idx_body", "fulltext", ["body"])

        executed = statements(conn)
        assert len(executed) == 3
        assert executed[0].startswith("DEFINE ANALYZER IF NOT EXISTS docmigrate_fulltext")
        assert executed[1] == (
            "DEFINE INDEX `idx_title` ON TABLE `posts` FIELDS `title` "
            "SEARCH ANALYZER docmigrate_fulltext BM25;"
        )

    @pytest.mark.asyncio
    async def test_index_orders_ignored(self, client, conn):
        """Test index orders do not change the statement."""
        await client.ensure_index("users", "idx_name_age", "key", ["name", "age"], ["desc", None])
        assert statements(conn) == ["DEFINE INDEX `idx_name_age` ON TABLE `users` FIELDS `name`, `age`;"]

    @pytest.mark.asyncio
    async def test_index_validation(self, client, conn):
        """Test indexes without fields or with unknown types are rejected."""
        with pytest.raises(DatabaseClientError):
            await client.ensure_index("users", "idx_none", "key", [])
        with pytest.raises(DatabaseClientError, match="Unsupported index type"):
            await client.ensure_index("users", "idx_geo", "spatial", ["loc"])

    @pytest.mark.asyncio
    async def test_removals(self, client, conn):
        """Test delete calls emit REMOVE statements."""
        await client.delete_index("users", "idx_email")
        await client.delete_attribute("users", "email")
        await client.delete_collection("users")
        assert statements(conn) == [
            "REMOVE INDEX `idx_email` ON TABLE `users`;",
            "REMOVE FIELD `email` ON TABLE `users`;",
            "REMOVE TABLE `users`;",
        ]

    @pytest.mark.asyncio
    async def test_conflict_mapped(self, client, conn):
        """Test "already exists" failures become ConflictError."""
        conn.execute = AsyncMock(side_effect=QueryError("Query failed: The table 'users' already exists"))
        with pytest.raises(ConflictError):
            await client.create_collection("users", "Users")

    @pytest.mark.asyncio
    async def test_not_found_mapped(self, client, conn):
        """Test "does not exist" failures become NotFoundError."""
        conn.execute = AsyncMock(side_effect=QueryError("Query failed: The table 'users' does not exist"))
        with pytest.raises(NotFoundError):
            await client.delete_collection("users")


class TestInspection:
    """Tests for reading collections back."""

    @pytest.mark.asyncio
    async def test_get_collection(self, client, conn):
        """Test a table definition becomes a collection description."""
        conn.execute = AsyncMock(
            side_effect=[
                [{"tables": {"users": "DEFINE TABLE users TYPE NORMAL SCHEMAFULL COMMENT 'Users' PERMISSIONS NONE"}}],
                [
                    {
                        "fields": {
                            "name": "DEFINE FIELD name ON users TYPE string PERMISSIONS FULL",
                            "tags": "DEFINE FIELD tags ON users TYPE option<array<string>> PERMISSIONS FULL",
                            "tags[*]": "DEFINE FIELD tags[*] ON users TYPE string PERMISSIONS FULL",
                        },
                        "indexes": {"idx_name": "DEFINE INDEX idx_name ON users FIELDS name"},
                    }
                ],
            ]
        )

        collection = await client.get_collection("users")

        assert collection["id"] == "users"
        assert collection["name"] == "Users"
        assert [a["key"] for a in collection["attributes"]] == ["name", "tags"]
        assert collection["indexes"] == [{"key": "idx_name", "type": "key", "attributes": ["name"]}]
        assert executed(conn) == ["INFO FOR DB;", "INFO FOR TABLE `users`;"]

    @pytest.mark.asyncio
    async def test_get_missing_collection(self, client, conn):
        """Test a missing table is None without a table lookup."""
        conn.execute = AsyncMock(return_value=[{"tables": {}}])

        assert await client.get_collection("users") is None
        assert executed(conn) == ["INFO FOR DB;"]

    @pytest.mark.asyncio
    async def test_list_collections(self, client, conn):
        """Test every table is described."""
        conn.execute = AsyncMock(
            side_effect=[
                [{"tables": {"a": "DEFINE TABLE a SCHEMAFULL", "b": "DEFINE TABLE b SCHEMAFULL"}}],
                [{"fields": {}, "indexes": {}}],
                [{"fields": {}, "indexes": {}}],
            ]
        )

        collections = await client.list_collections()

        assert [(c["id"], c["name"]) for c in collections] == [("a", "a"), ("b", "b")]


class TestDocuments:
    """Tests for document operations."""

    @pytest.mark.asyncio
    async def test_list_documents_query(self, client, conn):
        """Test filters, ordering and limit are parameterized."""
        conn.query = AsyncMock(return_value=[{"id": RecordID("dm_state", "abc"), "status": "applied"}])

        docs = await client.list_documents(
            "dm_state",
            filters={"record_type": "history", "status": "applied"},
            order_by="created_at",
            descending=True,
            limit=1,
        )

        conn.query.assert_called_once_with(
            "SELECT * FROM `dm_state` WHERE `record_type` = $p0 AND `status` = $p1 "
            "ORDER BY `created_at` DESC LIMIT 1;",
            {"p0": "history", "p1": "applied"},
        )
        assert docs == [{"id": "abc", "status": "applied"}]

    @pytest.mark.asyncio
    async def test_get_document(self, client, conn):
        """Test records are normalized and missing ones are None."""
        assert await client.get_document("dm_state", "abc") is None

        conn.select = AsyncMock(return_value={"id": RecordID("dm_state", "abc"), "status": "applied"})
        assert await client.get_document("dm_state", "abc") == {"id": "abc", "status": "applied"}
        conn.select.assert_called_with("dm_state", "abc")

    @pytest.mark.asyncio
    async def test_create_document_conflict(self, client, conn):
        """Test an existing record id raises ConflictError."""
        conn.create = AsyncMock(
            side_effect=QueryError("Create failed: Database record `dm_locks:x` already exists")
        )
        with pytest.raises(ConflictError):
            await client.create_document("dm_locks", "x", {"owner": "me"})

    @pytest.mark.asyncio
    async def test_create_document(self, client, conn):
        """Test create passes the explicit record id."""
        doc = await client.create_document("dm_state", "abc", {"status": "applied"})

        conn.create.assert_called_once_with("dm_state", {"status": "applied"}, record_id="abc")
        assert doc == {"id": "abc"}

    @pytest.mark.asyncio
    async def test_create_document_leaves_out_none(self, client, conn):
        """Test None values are left out rather than written as NULL."""
        created_at = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        await client.create_document("dm_locks", "x", {"owner": "me", "created_at": created_at, "expires_at": None})

        conn.create.assert_called_once_with("dm_locks", {"owner": "me", "created_at": created_at}, record_id="x")

    @pytest.mark.asyncio
    async def test_update_document_unsets_none(self, client, conn):
        """Test None values in an update remove the field."""
        conn.merge = AsyncMock(return_value={"id": RecordID("dm_locks", "x"), "owner": "me", "expires_at": None})

        doc = await client.update_document("dm_locks", "x", {"owner": "me", "expires_at": None})

        conn.merge.assert_called_once_with("dm_locks", "x", {"owner": "me"})
        conn.execute.assert_called_once_with(
            "UPDATE type::thing($tb, $doc) UNSET `expires_at`;", {"tb": "dm_locks", "doc": "x"}
        )
        assert doc == {"id": "x", "owner": "me"}

    @pytest.mark.asyncio
    async def test_update_missing_document(self, client, conn):
        """Test updating a missing record raises NotFoundError."""
        conn.merge = AsyncMock(return_value={})
        with pytest.raises(NotFoundError):
            await client.update_document("dm_state", "missing", {"status": "x"})

    @pytest.mark.asyncio
    async def test_delete_missing_document(self, client, conn):
        """Test deleting a missing record raises NotFoundError."""
        await client.delete_document("dm_state", "abc")

        conn.delete = AsyncMock(return_value=False)
        with pytest.raises(NotFoundError):
            await client.delete_document("dm_state", "missing")
