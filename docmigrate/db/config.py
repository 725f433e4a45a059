"""Migration tool configuration.

Environment-based configuration for connecting to a SurrealDB server (or an
embedded mem:// or file:// engine) and locating the schema file. Environment
variables take precedence over values from a JSON config file; built-in
defaults come last.

Config file locations (first match wins):
    docmigrate.json, .docmigrate.json, config/docmigrate.json, .config/docmigrate.json
"""

import getpass
import json
import logging
import os
import socket
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..errors import DocMigrateError

logger = logging.getLogger(__name__)


CONFIG_FILE_NAMES = (
    "docmigrate.json",
    ".docmigrate.json",
    "config/docmigrate.json",
    ".config/docmigrate.json",
)

DEFAULT_SCHEMA_FILE = "docmigrate.schema"
DEFAULT_DATABASE_ID = "database"
DEFAULT_LOCK_TTL = 600

EMBEDDED_SCHEMES = ("mem://", "memory://", "file://", "surrealkv://")

# config file key -> (dataclass field, environment variable)
CONFIG_KEYS = {
    "url": ("url", "SURREAL_URL"),
    "namespace": ("namespace", "SURREAL_NAMESPACE"),
    "user": ("user", "SURREAL_USER"),
    "password": ("password", "SURREAL_PASS"),
    "databaseId": ("database_id", "SURREAL_DATABASE"),
    "connectTimeout": ("connect_timeout", "SURREAL_CONNECT_TIMEOUT"),
    "queryTimeout": ("query_timeout", "SURREAL_QUERY_TIMEOUT"),
    "schemaPath": ("schema_path", "DOCMIGRATE_SCHEMA"),
    "stateCollection": ("state_collection", "DOCMIGRATE_STATE_COLLECTION"),
    "lockCollection": ("lock_collection", "DOCMIGRATE_LOCK_COLLECTION"),
    "lockTtl": ("lock_ttl", "DOCMIGRATE_LOCK_TTL"),
    "owner": ("owner", "DOCMIGRATE_OWNER"),
    "recordReferences": ("record_references", "DOCMIGRATE_RECORD_REFERENCES"),
    "debug": ("debug", "DOCMIGRATE_DEBUG"),
}


class ConfigurationError(DocMigrateError):
    """Raised when required connection parameters are missing or invalid."""

    pass


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def default_owner() -> str:
    """Lock owner identity for this process: user@host:pid."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}:{os.getpid()}"


@dataclass
class MigrateConfig:
    """Connection and tool configuration.

    Attributes:
        url: SurrealDB WebSocket URL (ws:// or wss://) or embedded engine URL
        namespace: SurrealDB namespace
        user: Authentication username
        password: Authentication password
        database_id: Managed database; falls back to the schema's database block
        connect_timeout: Connection timeout in seconds
        query_timeout: Query timeout in seconds
        schema_path: Path of the schema DSL file
        state_collection: Internal collection holding history records
        lock_collection: Internal collection holding lock records
        lock_ttl: Lock time-to-live in seconds (0 disables expiry)
        owner: Lock owner identity
        record_references: Enforce relationship onDelete with REFERENCE clauses
            (needs a server started with experimental record references)
        debug: Verbose diagnostics
    """

    url: str = "ws://localhost:8000/rpc"
    namespace: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database_id: Optional[str] = None
    connect_timeout: float = 10.0
    query_timeout: float = 30.0
    schema_path: str = DEFAULT_SCHEMA_FILE
    state_collection: str = "dm_state"
    lock_collection: str = "dm_locks"
    lock_ttl: int = DEFAULT_LOCK_TTL
    owner: str = field(default_factory=default_owner)
    record_references: bool = False
    debug: bool = False
    config_file: Optional[Path] = None

    @property
    def is_secure(self) -> bool:
        """Check if using secure WebSocket connection."""
        return self.url.startswith("wss://")

    @property
    def is_embedded(self) -> bool:
        """Check if the URL names an in-process engine (no server, no signin)."""
        return self.url.startswith(EMBEDDED_SCHEMES)

    @property
    def environment(self) -> Environment:
        """Detect environment from URL."""
        if self.is_embedded or "localhost" in self.url or "127.0.0.1" in self.url:
            return Environment.DEVELOPMENT
        elif "staging" in self.url:
            return Environment.STAGING
        return Environment.PRODUCTION

    def resolve_database_id(self, schema_database_id: Optional[str] = None) -> str:
        """Database to manage: explicit setting, then schema block, then default."""
        return self.database_id or schema_database_id or DEFAULT_DATABASE_ID

    def validate(self) -> list[str]:
        """Validate connection settings.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.url:
            errors.append("SURREAL_URL is required")
        elif not (self.url.startswith(("ws://", "wss://")) or self.is_embedded):
            errors.append("SURREAL_URL must start with ws://, wss://, mem:// or file://")

        if not self.namespace:
            errors.append("SURREAL_NAMESPACE is required")

        if not self.user and not self.is_embedded:
            errors.append("SURREAL_USER is required")

        if self.environment == Environment.PRODUCTION and not self.password:
            errors.append("SURREAL_PASS is required in production")

        if self.lock_ttl < 0:
            errors.append("DOCMIGRATE_LOCK_TTL must not be negative")

        return errors

    def require_connection(self) -> None:
        """Raise if the connection settings are incomplete.

        Raises:
            ConfigurationError: Listing every missing or invalid parameter
        """
        errors = self.validate()
        if errors:
            raise ConfigurationError(
                "Missing or invalid connection configuration:\n  - " + "\n  - ".join(errors)
            )


def find_config_file(root: Path) -> Optional[Path]:
    """Return the first existing config file under root."""
    for name in CONFIG_FILE_NAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def _coerce(name: str, value: Any) -> Any:
    """Coerce a raw config/environment value to the dataclass field type."""
    if value is None:
        return None
    if name in ("connect_timeout", "query_timeout"):
        return float(value)
    if name == "lock_ttl":
        return int(value)
    if name in ("debug", "record_references"):
        if isinstance(value, bool):
            return value
        return str(value).lower() in ("1", "true", "yes", "on")
    return str(value)


def load_config(
    root: Optional[Path] = None,
    environ: Optional[dict[str, str]] = None,
) -> MigrateConfig:
    """Build configuration from environment and optional config file.

    Args:
        root: Directory to search for config files (defaults to cwd)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        MigrateConfig instance

    Raises:
        ConfigurationError: If a config file exists but cannot be read
    """
    root = root or Path.cwd()
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}

    config_file = find_config_file(root)
    if config_file:
        logger.debug(f"Loading config from: {config_file}")
        try:
            data = json.loads(config_file.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config file {config_file}: {e}") from e
        for key, (name, _) in CONFIG_KEYS.items():
            if data.get(key) is not None:
                values[name] = data[key]

    for name, env_var in CONFIG_KEYS.values():
        if env.get(env_var):
            values[name] = env[env_var]

    known = {f.name for f in fields(MigrateConfig)}
    try:
        kwargs = {name: _coerce(name, value) for name, value in values.items() if name in known}
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration value: {e}") from e

    config = MigrateConfig(**kwargs, config_file=config_file)
    if config.schema_path and not Path(config.schema_path).is_absolute():
        config.schema_path = str(root / config.schema_path)
    return config


# Global configuration instance
_config: Optional[MigrateConfig] = None


def get_config() -> MigrateConfig:
    """Get the global configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[MigrateConfig]) -> None:
    """Set (or clear) the global configuration."""
    global _config
    _config = config
