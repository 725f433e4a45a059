"""Remote database access for docmigrate.

Provides:
- Configuration from environment variables and JSON config files
- SurrealDB connection management
- The DatabaseClient capability interface and its SurrealDB implementation
- Remote schema inspection
- History records and distributed locks stored in the managed database

Usage:
    from docmigrate.db import (
        load_config,
        open_connection,
        SurrealDatabaseClient,
        SchemaInspector,
        StateStore,
        LockManager,
    )

    config = load_config()
    async with open_connection(config, "my-database") as conn:
        client = SurrealDatabaseClient(conn)
        remote = await SchemaInspector(client).describe()

Environment Variables:
    SURREAL_URL: WebSocket URL (ws:// or wss://)
    SURREAL_NAMESPACE: Namespace for isolation
    SURREAL_USER: Authentication username
    SURREAL_PASS: Authentication password
    SURREAL_DATABASE: Managed database id
    DOCMIGRATE_LOCK_TTL: Lock time-to-live in seconds
    DOCMIGRATE_OWNER: Lock owner identity
"""

from .client import (
    ConflictError,
    DatabaseClient,
    DatabaseClientError,
    NotFoundError,
    is_conflict,
    is_not_found,
)
from .config import (
    ConfigurationError,
    MigrateConfig,
    get_config,
    load_config,
    set_config,
)
from .connection import (
    Connection,
    ConnectionError,
    QueryError,
    open_connection,
)
from .inspector import RemoteCollection, RemoteState, SchemaInspector
from .locks import (
    Lock,
    LockContentionError,
    LockError,
    LockManager,
    LockOwnershipError,
)
from .state import HistoryRecord, HistoryStatus, HistoryType, StateStore
from .surreal_client import SurrealDatabaseClient

__all__ = [
    # Client
    "DatabaseClient",
    "DatabaseClientError",
    "ConflictError",
    "NotFoundError",
    "is_conflict",
    "is_not_found",
    "SurrealDatabaseClient",
    # Config
    "MigrateConfig",
    "ConfigurationError",
    "get_config",
    "load_config",
    "set_config",
    # Connection
    "Connection",
    "ConnectionError",
    "QueryError",
    "open_connection",
    # Inspection
    "RemoteCollection",
    "RemoteState",
    "SchemaInspector",
    # State
    "HistoryRecord",
    "HistoryStatus",
    "HistoryType",
    "StateStore",
    # Locks
    "Lock",
    "LockError",
    "LockContentionError",
    "LockOwnershipError",
    "LockManager",
]
