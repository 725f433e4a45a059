"""Migration executor.

Applies change sets through a DatabaseClient in dependency order
(collections, then attributes, then indexes), treating "already exists" as
success so that any run can be repeated. Completed runs are recorded in the
state store; revert() undoes a change set in exact reverse order.
"""

import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from ..db.client import DatabaseClient, is_conflict, is_not_found
from ..db.state import PAYLOAD_SIZE, HistoryRecord, HistoryType, StateStore
from ..dsl.models import AttributeType
from ..errors import DocMigrateError
from ..reporter import LoggingReporter, Reporter
from .changes import AttributeCreate, ChangeSet, MigrationError, RelationshipCreate

logger = logging.getLogger(__name__)


# room left in the payload field for type, checksum and database id
HISTORY_CHANGES_LIMIT = PAYLOAD_SIZE - 1000


class UnknownAttributeTypeError(MigrationError):
    """Attribute type has no creation call; fatal even under --force."""

    def __init__(self, collection_id: str, key: str, attr_type: str):
        self.collection_id = collection_id
        self.key = key
        self.attr_type = attr_type
        super().__init__(f"Unknown attribute type '{attr_type}' for {collection_id}.{key}")


@dataclass
class ApplyResult:
    """Outcome of an apply or relationships run."""

    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)
    history: Optional[HistoryRecord] = None
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return not self.failed


@dataclass
class RevertResult:
    """Outcome of reverting a change set."""

    deleted: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def format_default(value: Any, attr_type: str) -> Optional[str]:
    """Render a normalized default as a literal for the creation call.

    Booleans become true/false, numbers pass through, the datetime sentinel
    "now" is kept, anything else becomes a JSON string literal.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return json.dumps(value)
    if attr_type == AttributeType.DATETIME.value and value == "now":
        return "now"
    return json.dumps(str(value))


def describe_changes(changes: ChangeSet) -> list[str]:
    """One human-readable line per planned operation."""
    lines = [f"collection {c.name} ({c.id})" for c in changes.collections]
    lines += [f"attribute {a.collection_id}.{a.key} ({a.type})" for a in changes.attributes]
    lines += [f"index {i.collection_id}.{i.key} ({i.type})" for i in changes.indexes]
    return lines


def describe_relationship(rel: RelationshipCreate) -> str:
    return f"relationship {rel.collection_id}.{rel.key} -> {rel.related_collection_id} ({rel.kind})"


def relationships_checksum(relationships: list[RelationshipCreate]) -> str:
    canonical = json.dumps([r.to_dict() for r in relationships], sort_keys=True, separators=(",", ":"))
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


class MigrationExecutor:
    """Runs change sets against the remote database."""

    def __init__(
        self,
        client: DatabaseClient,
        state: Optional[StateStore] = None,
        reporter: Optional[Reporter] = None,
        database_id: Optional[str] = None,
    ):
        """Initialize the executor.

        Args:
            client: Database client
            state: History store; history is not recorded when omitted
            reporter: Operator output (logging by default)
            database_id: Managed database id, recorded in history
        """
        self.client = client
        self.state = state
        self.reporter = reporter or LoggingReporter()
        self.database_id = database_id

    async def _create(
        self,
        description: str,
        operation: Callable[..., Awaitable[Any]],
        *args: Any,
        result: ApplyResult,
        force: bool,
        **kwargs: Any,
    ) -> None:
        try:
            await operation(*args, **kwargs)
        except UnknownAttributeTypeError:
            raise
        except Exception as e:
            if is_conflict(e):
                result.skipped.append(description)
                self.reporter.info(f"Already exists: {description}")
                return
            if force and isinstance(e, DocMigrateError):
                result.failed.append(description)
                self.reporter.warn(f"Failed to create {description}: {e} (continuing, --force)")
                return
            self.reporter.error(f"Failed to create {description}: {e}")
            raise MigrationError(f"Failed to create {description}: {e}") from e

        result.created.append(description)
        self.reporter.success(f"Created {description}")

    async def create_attribute(self, attr: AttributeCreate) -> None:
        """Dispatch attribute creation on the attribute type.

        Raises:
            UnknownAttributeTypeError: If the type has no creation call
        """
        client = self.client
        default = None if attr.array else format_default(attr.default, attr.type)
        common: dict[str, Any] = {
            "required": attr.required,
            "array": attr.array,
            "default": default,
        }

        if attr.type == AttributeType.STRING.value:
            await client.create_string_attribute(
                attr.collection_id, attr.key, size=attr.size or 255, **common
            )
        elif attr.type == AttributeType.INTEGER.value:
            await client.create_integer_attribute(attr.collection_id, attr.key, **common)
        elif attr.type == AttributeType.FLOAT.value:
            await client.create_float_attribute(attr.collection_id, attr.key, **common)
        elif attr.type == AttributeType.BOOLEAN.value:
            await client.create_boolean_attribute(attr.collection_id, attr.key, **common)
        elif attr.type == AttributeType.DATETIME.value:
            await client.create_datetime_attribute(attr.collection_id, attr.key, **common)
        elif attr.type == AttributeType.EMAIL.value:
            await client.create_email_attribute(attr.collection_id, attr.key, **common)
        elif attr.type == AttributeType.URL.value:
            await client.create_url_attribute(attr.collection_id, attr.key, **common)
        else:
            raise UnknownAttributeTypeError(attr.collection_id, attr.key, attr.type)

    async def apply(
        self,
        changes: ChangeSet,
        force: bool = False,
        dry_run: bool = False,
    ) -> ApplyResult:
        """Apply a change set.

        Args:
            changes: Ordered change set
            force: Continue past non-fatal errors
            dry_run: Report planned operations without remote calls

        Returns:
            ApplyResult with the recorded history entry

        Raises:
            UnknownAttributeTypeError: On an attribute with an unknown type
            MigrationError: On any other failure when not forced
        """
        result = ApplyResult(dry_run=dry_run)

        if changes.is_empty():
            self.reporter.success("Schema is up to date. No changes needed.")
            return result

        if dry_run:
            for line in describe_changes(changes):
                result.planned.append(line)
                self.reporter.info(f"[dry-run] Would create {line}")
            return result

        # fails before any remote call if the run could not be recorded
        compacted = changes.compact(HISTORY_CHANGES_LIMIT)
        logger.info(f"Applying {changes.total} changes")

        for coll in changes.collections:
            await self._create(
                f"collection {coll.name} ({coll.id})",
                self.client.create_collection,
                coll.id,
                coll.name,
                result=result,
                force=force,
            )

        for attr in changes.attributes:
            await self._create(
                f"attribute {attr.collection_id}.{attr.key}",
                self.create_attribute,
                attr,
                result=result,
                force=force,
            )

        for idx in changes.indexes:
            await self._create(
                f"index {idx.collection_id}.{idx.key}",
                self.client.ensure_index,
                idx.collection_id,
                idx.key,
                idx.type,
                idx.attributes,
                idx.orders,
                result=result,
                force=force,
            )

        if self.state is not None:
            result.history = await self.state.record_history(
                HistoryType.APPLY,
                self.database_id,
                changes.checksum,
                compacted,
            )
        else:
            logger.debug("No state store configured, history not recorded")

        logger.info(
            f"Apply finished: {len(result.created)} created, {len(result.skipped)} skipped, "
            f"{len(result.failed)} failed"
        )
        return result

    async def apply_relationships(
        self,
        relationships: list[RelationshipCreate],
        force: bool = False,
        dry_run: bool = False,
    ) -> ApplyResult:
        """Create relationship attributes (phase two).

        Same contract as apply(); history is recorded with type "relationships".
        """
        result = ApplyResult(dry_run=dry_run)

        if not relationships:
            self.reporter.success("No pending relationships.")
            return result

        if dry_run:
            for rel in relationships:
                line = describe_relationship(rel)
                result.planned.append(line)
                self.reporter.info(f"[dry-run] Would create {line}")
            return result

        logger.info(f"Applying {len(relationships)} relationships")

        for rel in relationships:
            await self._create(
                describe_relationship(rel),
                self.client.create_relationship_attribute,
                rel.collection_id,
                rel.related_collection_id,
                rel.kind,
                rel.key,
                two_way_key=rel.two_way_key,
                on_delete=rel.on_delete,
                result=result,
                force=force,
            )

        if self.state is not None:
            result.history = await self.state.record_history(
                HistoryType.RELATIONSHIPS,
                self.database_id,
                relationships_checksum(relationships),
                {"relationships": [r.to_dict() for r in relationships]},
            )

        return result

    async def _delete(
        self,
        description: str,
        operation: Callable[..., Awaitable[Any]],
        *args: Any,
        result: RevertResult,
        force: bool,
    ) -> None:
        try:
            await operation(*args)
        except Exception as e:
            if is_not_found(e):
                result.missing.append(description)
                self.reporter.info(f"Already absent: {description}")
                return
            if force and isinstance(e, DocMigrateError):
                result.failed.append(description)
                self.reporter.warn(f"Failed to delete {description}: {e} (continuing, --force)")
                return
            self.reporter.error(f"Failed to delete {description}: {e}")
            raise MigrationError(f"Failed to delete {description}: {e}") from e

        result.deleted.append(description)
        self.reporter.success(f"Deleted {description}")

    async def revert(self, changes: ChangeSet, force: bool = False) -> RevertResult:
        """Undo a change set: indexes, then attributes, then collections, each reversed.

        Missing targets count as already reverted.
        """
        result = RevertResult()

        for idx in reversed(changes.indexes):
            await self._delete(
                f"index {idx.collection_id}.{idx.key}",
                self.client.delete_index,
                idx.collection_id,
                idx.key,
                result=result,
                force=force,
            )

        for attr in reversed(changes.attributes):
            await self._delete(
                f"attribute {attr.collection_id}.{attr.key}",
                self.client.delete_attribute,
                attr.collection_id,
                attr.key,
                result=result,
                force=force,
            )

        for coll in reversed(changes.collections):
            await self._delete(
                f"collection {coll.id}",
                self.client.delete_collection,
                coll.id,
                result=result,
                force=force,
            )

        return result
