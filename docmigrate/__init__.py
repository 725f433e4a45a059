"""docmigrate: declarative schema migrations for SurrealDB.

A schema file declares databases, collections, attributes, indexes and
relationships. docmigrate diffs it against the live database and applies the
difference in two idempotent phases, recording history and holding locks in
the database itself so that runs can be repeated, rolled back and run safely
from several machines.

Usage:
    from docmigrate import MigrationRunner, load_config, load_schema, open_connection
    from docmigrate import SurrealDatabaseClient

    config = load_config()
    schema = load_schema(Path(config.schema_path))
    database_id = config.resolve_database_id(schema.database_id)

    async with open_connection(config, database_id) as conn:
        runner = MigrationRunner(SurrealDatabaseClient(conn), config, database_id)
        await runner.apply(schema)
        await runner.relationships(schema)
"""

from .db import (
    ConfigurationError,
    ConflictError,
    DatabaseClient,
    DatabaseClientError,
    LockContentionError,
    LockError,
    LockManager,
    LockOwnershipError,
    MigrateConfig,
    NotFoundError,
    SchemaInspector,
    StateStore,
    SurrealDatabaseClient,
    load_config,
    open_connection,
)
from .dsl import Schema, parse_schema
from .errors import DocMigrateError
from .migrations import (
    ChangeSet,
    MigrationError,
    MigrationExecutor,
    MigrationRunner,
    RollbackEngine,
    UnknownAttributeTypeError,
    calculate_changes,
    calculate_relationships,
    load_schema,
)
from .reporter import ConsoleReporter, LoggingReporter, Reporter

__version__ = "0.1.0"

__all__ = [
    "DocMigrateError",
    # Schema
    "Schema",
    "parse_schema",
    "load_schema",
    # Database
    "MigrateConfig",
    "ConfigurationError",
    "load_config",
    "open_connection",
    "DatabaseClient",
    "DatabaseClientError",
    "ConflictError",
    "NotFoundError",
    "SurrealDatabaseClient",
    "SchemaInspector",
    "StateStore",
    "LockManager",
    "LockError",
    "LockContentionError",
    "LockOwnershipError",
    # Migrations
    "ChangeSet",
    "MigrationError",
    "MigrationExecutor",
    "MigrationRunner",
    "RollbackEngine",
    "UnknownAttributeTypeError",
    "calculate_changes",
    "calculate_relationships",
    # Output
    "Reporter",
    "ConsoleReporter",
    "LoggingReporter",
]
