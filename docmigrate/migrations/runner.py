"""Migration runner: one method per CLI command.

Provides:
- plan: diff the schema against the remote database (read-only)
- apply / relationships: the two apply phases
- rollback: revert the latest applied run
- reset: clear migration history
- status: read-only summary of remote schema, history and locks

Every mutating command holds a lock scoped to its operation kind for its
whole duration; dry runs take no lock and make no remote writes.
"""

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..db.client import DatabaseClient
from ..db.config import CONFIG_FILE_NAMES, MigrateConfig
from ..db.inspector import RemoteState, SchemaInspector
from ..db.locks import Lock, LockManager
from ..db.state import HistoryRecord, HistoryStatus, HistoryType, StateStore
from ..dsl.models import Schema
from ..dsl.parser import parse_schema
from ..reporter import LoggingReporter, Reporter
from .changes import ChangeSet, MigrationError, RelationshipCreate
from .executor import ApplyResult, MigrationExecutor, describe_changes, describe_relationship
from .planner import calculate_changes, calculate_relationships
from .rollback import RollbackEngine, RollbackResult

logger = logging.getLogger(__name__)


EXAMPLE_SCHEMA = """// docmigrate schema definition
database {
  name = "my-database"
  id   = "my-database"
}

collection Users {
  name            String   @size(255) @required
  email           Email    @size(255) @required @unique
  created_at      DateTime @default(now)

  @@index([email])
}

collection Posts {
  title           String   @size(255) @required
  published       Boolean  @default(false)
  author          Users    @relationship(to: "Users", type: "many-to-one", twoWayKey: "posts", onDelete: "cascade")

  @@index([title], fulltext)
}
"""

EXAMPLE_CONFIG = {
    "url": "ws://localhost:8000/rpc",
    "namespace": "my-namespace",
    "user": "root",
    "databaseId": None,
    "schemaPath": "docmigrate.schema",
    "lockTtl": 600,
    "debug": False,
}


class LockKind:
    """Lock ids, one per mutating operation kind."""

    APPLY = "apply"
    RELATIONSHIPS = "relationships"
    ROLLBACK = "rollback"
    RESET = "reset"


def load_schema(path: Path) -> Schema:
    """Read and parse a schema file.

    Raises:
        MigrationError: If the file cannot be read
    """
    try:
        text = Path(path).read_text()
    except FileNotFoundError:
        raise MigrationError(f"Schema file not found: {path} (run 'docmigrate init')") from None
    except OSError as e:
        raise MigrationError(f"Cannot read schema file {path}: {e}") from e
    return parse_schema(text)


def init_project(
    root: Path,
    schema_path: Optional[Path] = None,
    reporter: Optional[Reporter] = None,
) -> list[Path]:
    """Write an example schema and config file, skipping existing ones.

    Args:
        root: Project directory
        schema_path: Schema file location (defaults to root/docmigrate.schema)
        reporter: Operator output

    Returns:
        Paths of the files written
    """
    reporter = reporter or LoggingReporter()
    written: list[Path] = []

    existing_config = next((root / n for n in CONFIG_FILE_NAMES if (root / n).is_file()), None)
    if existing_config:
        reporter.info(f"Config file already exists: {existing_config}")
    else:
        config_file = root / CONFIG_FILE_NAMES[0]
        config_file.write_text(json.dumps(EXAMPLE_CONFIG, indent=2) + "\n")
        written.append(config_file)
        reporter.success(f"Created example config {config_file}")
        reporter.warn("Set SURREAL_URL, SURREAL_NAMESPACE, SURREAL_USER and SURREAL_PASS")

    schema_file = schema_path or root / "docmigrate.schema"
    if schema_file.exists():
        reporter.info(f"Schema file already exists: {schema_file}")
    else:
        schema_file.parent.mkdir(parents=True, exist_ok=True)
        schema_file.write_text(EXAMPLE_SCHEMA)
        written.append(schema_file)
        reporter.success(f"Created example schema {schema_file}")

    return written


@dataclass
class PlanResult:
    """Pending work for both apply phases."""

    changes: ChangeSet
    relationships: list[RelationshipCreate]
    diagnostics: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.changes.is_empty() and not self.relationships


@dataclass
class StatusReport:
    """Read-only summary for the status command."""

    database_id: str
    collections: int
    attributes: int
    indexes: int
    history_counts: dict[str, int]
    recent: list[HistoryRecord]
    locks: list[Lock]


class MigrationRunner:
    """Runs migration commands against one database."""

    def __init__(
        self,
        client: DatabaseClient,
        config: MigrateConfig,
        database_id: str,
        reporter: Optional[Reporter] = None,
    ):
        """Initialize the runner.

        Args:
            client: Database client bound to the managed database
            config: Tool configuration (internal collection ids, lock TTL, owner)
            database_id: Managed database id
            reporter: Operator output (logging by default)
        """
        self.client = client
        self.config = config
        self.database_id = database_id
        self.reporter = reporter or LoggingReporter()

        self.state = StateStore(client, config.state_collection, config.lock_collection)
        self.locks = LockManager(
            client,
            config.lock_collection,
            owner=config.owner,
            ttl_seconds=config.lock_ttl,
        )
        self.inspector = SchemaInspector(client, exclude=self.state.internal_collections)
        self.executor = MigrationExecutor(client, self.state, self.reporter, database_id)

    def _lock_metadata(self, command: str) -> dict[str, Any]:
        return {"command": command, "database_id": self.database_id}

    def _report_diagnostics(self, schema: Schema) -> None:
        for diagnostic in schema.diagnostics:
            self.reporter.warn(f"Schema: {diagnostic}")

    async def describe_remote(self) -> RemoteState:
        return await self.inspector.describe()

    async def plan(self, schema: Schema) -> PlanResult:
        """Compute pending changes without modifying anything."""
        self._report_diagnostics(schema)
        remote = await self.describe_remote()
        result = PlanResult(
            changes=calculate_changes(schema, remote),
            relationships=calculate_relationships(schema, remote),
            diagnostics=list(schema.diagnostics),
        )

        if result.is_empty:
            self.reporter.success("Schema is up to date. No changes needed.")
            return result

        for line in describe_changes(result.changes):
            self.reporter.info(f"+ {line}")
        for rel in result.relationships:
            self.reporter.info(f"+ {describe_relationship(rel)}")
        self.reporter.info(
            f"{result.changes.total} changes and {len(result.relationships)} relationships pending"
        )
        return result

    async def apply(self, schema: Schema, force: bool = False, dry_run: bool = False) -> ApplyResult:
        """Phase one: collections, attributes and indexes."""
        self._report_diagnostics(schema)

        if dry_run:
            changes = calculate_changes(schema, await self.describe_remote())
            return await self.executor.apply(changes, force=force, dry_run=True)

        await self.state.init()
        async with self.locks.hold(LockKind.APPLY, force=force, metadata=self._lock_metadata("apply")):
            changes = calculate_changes(schema, await self.describe_remote())
            return await self.executor.apply(changes, force=force)

    async def relationships(
        self,
        schema: Schema,
        force: bool = False,
        dry_run: bool = False,
    ) -> ApplyResult:
        """Phase two: relationship attributes."""
        self._report_diagnostics(schema)

        if not any(c.relationship_attributes for c in schema.collections.values()):
            self.reporter.warn("No relationships defined in schema")
            return ApplyResult(dry_run=dry_run)

        if dry_run:
            pending = calculate_relationships(schema, await self.describe_remote())
            return await self.executor.apply_relationships(pending, force=force, dry_run=True)

        await self.state.init()
        async with self.locks.hold(
            LockKind.RELATIONSHIPS, force=force, metadata=self._lock_metadata("relationships")
        ):
            pending = calculate_relationships(schema, await self.describe_remote())
            return await self.executor.apply_relationships(pending, force=force)

    async def rollback(self, force: bool = False, dry_run: bool = False) -> RollbackResult:
        """Revert the latest applied run."""
        if dry_run:
            if await self.client.get_collection(self.state.collection_id) is None:
                self.reporter.info("Nothing to roll back")
                return RollbackResult(rolled_back=False, message="Nothing to roll back")
            record = await self.state.latest_history(HistoryStatus.APPLIED)
            if record is None or record.type != HistoryType.APPLY.value:
                self.reporter.info("Nothing to roll back")
                return RollbackResult(rolled_back=False, history=record, message="Nothing to roll back")
            changes = ChangeSet.from_compact(record.changes)
            for line in reversed(describe_changes(changes)):
                self.reporter.info(f"[dry-run] Would delete {line}")
            return RollbackResult(rolled_back=False, history=record, message="Dry run")

        engine = RollbackEngine(self.state, self.executor, self.reporter)
        await self.state.init()
        async with self.locks.hold(LockKind.ROLLBACK, force=force, metadata=self._lock_metadata("rollback")):
            return await engine.rollback(force=force)

    async def reset(self, force: bool = False) -> int:
        """Delete all migration history.

        Returns:
            Number of history records deleted
        """
        await self.state.init()
        async with self.locks.hold(LockKind.RESET, force=force, metadata=self._lock_metadata("reset")):
            deleted = await self.state.reset()
        self.reporter.success(f"Migration history reset ({deleted} records deleted)")
        return deleted

    async def status(self, recent: int = 5) -> StatusReport:
        """Collect a read-only status summary."""
        remote = await self.describe_remote()

        history: list[HistoryRecord] = []
        locks: list[Lock] = []
        if await self.client.get_collection(self.state.collection_id) is not None:
            history = await self.state.list_history()
        if await self.client.get_collection(self.locks.collection_id) is not None:
            locks = await self.locks.list_locks()

        counts: Counter[str] = Counter()
        for record in history:
            counts[record.status.value] += 1
            counts[f"type:{record.type}"] += 1

        return StatusReport(
            database_id=self.database_id,
            collections=len(remote),
            attributes=sum(len(c.attributes) for c in remote.values()),
            indexes=sum(len(c.indexes) for c in remote.values()),
            history_counts=dict(counts),
            recent=history[:recent],
            locks=locks,
        )
