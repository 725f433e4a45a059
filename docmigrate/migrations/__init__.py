"""Schema migration engine.

Provides:
- Change calculation between a parsed schema and the remote database
- Two-phase apply (collections/attributes/indexes, then relationships)
- Rollback of the most recent applied run
- Command orchestration under per-operation locks

Usage:
    from docmigrate.migrations import MigrationRunner, load_schema

    schema = load_schema(Path("docmigrate.schema"))
    runner = MigrationRunner(client, config, "my-database")
    await runner.apply(schema)
    await runner.relationships(schema)

CLI Usage:
    docmigrate plan
    docmigrate apply --dry-run
    docmigrate relationships
    docmigrate rollback
    docmigrate status
"""

from .changes import (
    AttributeCreate,
    ChangeSet,
    CollectionCreate,
    IndexCreate,
    MigrationError,
    RelationshipCreate,
)
from .executor import (
    ApplyResult,
    MigrationExecutor,
    RevertResult,
    UnknownAttributeTypeError,
    format_default,
)
from .planner import calculate_changes, calculate_relationships
from .rollback import RollbackEngine, RollbackResult
from .runner import (
    LockKind,
    MigrationRunner,
    PlanResult,
    StatusReport,
    init_project,
    load_schema,
)

__all__ = [
    # Changes
    "AttributeCreate",
    "ChangeSet",
    "CollectionCreate",
    "IndexCreate",
    "MigrationError",
    "RelationshipCreate",
    # Planner
    "calculate_changes",
    "calculate_relationships",
    # Executor
    "ApplyResult",
    "MigrationExecutor",
    "RevertResult",
    "UnknownAttributeTypeError",
    "format_default",
    # Rollback
    "RollbackEngine",
    "RollbackResult",
    # Runner
    "LockKind",
    "MigrationRunner",
    "PlanResult",
    "StatusReport",
    "init_project",
    "load_schema",
]
