"""SurrealDB connection management.

Wraps the async SurrealDB SDK client: authentication, namespace/database
selection, statement execution with per-statement error checking, and record
CRUD by explicit record id.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional

import requests
from surrealdb import AsyncSurreal, RecordID

from ..errors import DocMigrateError
from .config import MigrateConfig

logger = logging.getLogger(__name__)


class ConnectionError(DocMigrateError):
    """Database connection error."""

    pass


class QueryError(DocMigrateError):
    """Database query error."""

    pass


def signin_endpoint(url: str) -> str:
    """Map an RPC WebSocket URL to the HTTP signin endpoint of the same server.

    ``wss://db.example.com/rpc`` becomes ``https://db.example.com/signin``.
    """
    base = url[: -len("/rpc")] if url.endswith("/rpc") else url.rstrip("/")
    for socket_scheme, http_scheme in (("wss://", "https://"), ("ws://", "http://")):
        if base.startswith(socket_scheme):
            base = http_scheme + base[len(socket_scheme) :]
            break
    return f"{base}/signin"


class Connection:
    """One authenticated SurrealDB session bound to a namespace and database.

    Migrations run strictly one step after another, so a single session is
    all a run needs. The session is opened lazily on first use.
    """

    def __init__(
        self,
        config: MigrateConfig,
        database: str,
    ):
        """Create an unconnected session.

        Args:
            config: Tool configuration (URL, credentials, timeouts)
            database: Managed database the session selects after signin
        """
        self.config = config
        self.database = database
        self._client: Optional[Any] = None
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._connected

    def _fetch_token(self) -> str:
        """Sign in over HTTP and return the session token."""
        endpoint = signin_endpoint(self.config.url)
        credentials = {"user": self.config.user, "pass": self.config.password}

        try:
            response = requests.post(
                endpoint,
                json=credentials,
                headers={"Accept": "application/json"},
                timeout=self.config.connect_timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise ConnectionError(f"HTTP signin request failed ({endpoint}): {e}") from e

        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            raise ConnectionError(f"HTTP signin to {endpoint} returned no token")
        return token

    async def _authenticate(self, client: Any) -> None:
        if self.config.is_embedded:
            logger.debug("Embedded engine, skipping signin")
            return

        # TLS-terminating proxies in front of wss:// servers reject RPC signin
        if self.config.is_secure:
            await client.authenticate(self._fetch_token())
            logger.debug("Authenticated with HTTP signin token")
            return

        await client.signin({"username": self.config.user, "password": self.config.password})
        logger.debug("Signed in over the RPC socket")

    async def connect(self) -> None:
        """Open the socket, authenticate and select namespace/database.

        Raises:
            ConnectionError: On timeout, bad credentials or an unreachable server
        """
        async with self._lock:
            if self._connected:
                return

            client = AsyncSurreal(self.config.url)
            try:
                await asyncio.wait_for(client.connect(), timeout=self.config.connect_timeout)
                await self._authenticate(client)
                await client.use(self.config.namespace, self.database)
            except asyncio.TimeoutError as e:
                raise ConnectionError(
                    f"Timed out connecting to {self.config.url} (timeout {self.config.connect_timeout}s)"
                ) from e
            except ConnectionError:
                raise
            except Exception as e:
                raise ConnectionError(f"Cannot connect to {self.config.url}: {e}") from e

            self._client = client
            self._connected = True
            logger.debug(f"Session open on {self.config.namespace}/{self.database}")

    async def disconnect(self) -> None:
        """Close the session. Close errors are logged, never raised."""
        async with self._lock:
            client, self._client = self._client, None
            self._connected = False
            if client is None:
                return
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Ignoring error while closing SurrealDB session: {e}")

    async def _session(self) -> Any:
        if not self.is_connected:
            await self.connect()
        return self._client

    async def execute(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
    ) -> list[Any]:
        """Execute SurrealQL and return the raw result of each statement.

        Args:
            sql: One or more SurrealQL statements
            params: Query parameters

        Returns:
            One result per statement

        Raises:
            QueryError: If any statement fails or the query times out
        """
        client = await self._session()

        try:
            response = await asyncio.wait_for(
                client.query_raw(sql, params or {}),
                timeout=self.config.query_timeout,
            )
        except asyncio.TimeoutError as e:
            raise QueryError(f"Query timeout after {self.config.query_timeout}s") from e
        except Exception as e:
            raise QueryError(f"Query failed: {e}") from e

        if isinstance(response, dict) and response.get("error"):
            error = response["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise QueryError(f"Query failed: {message}")

        statements = response.get("result", []) if isinstance(response, dict) else response
        results: list[Any] = []
        for stmt in statements or []:
            if isinstance(stmt, dict) and "status" in stmt:
                if stmt["status"] != "OK":
                    raise QueryError(f"Query failed: {stmt.get('result')}")
                results.append(stmt.get("result"))
            else:
                results.append(stmt)
        return results

    async def query(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """Execute a SurrealQL query and flatten record results.

        Args:
            sql: SurrealQL query string
            params: Query parameters

        Returns:
            List of result records
        """
        records: list[dict[str, Any]] = []
        for stmt_result in await self.execute(sql, params):
            if isinstance(stmt_result, list):
                records.extend(r for r in stmt_result if isinstance(r, dict))
            elif isinstance(stmt_result, dict):
                records.append(stmt_result)
        return records

    async def create(
        self,
        table: str,
        data: dict[str, Any],
        record_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create a record.

        Args:
            table: Table name
            data: Record data
            record_id: Optional specific record ID

        Returns:
            Created record

        Raises:
            QueryError: Including when the record id already exists
        """
        client = await self._session()
        thing = RecordID(table, record_id) if record_id else table

        try:
            result = await client.create(thing, data)
        except Exception as e:
            raise QueryError(f"Create failed: {e}") from e

        if isinstance(result, list):
            return result[0] if result and isinstance(result[0], dict) else {}
        if isinstance(result, str):
            # Some server versions return the error text instead of raising
            raise QueryError(f"Create failed: {result}")
        return result or {}

    async def select(
        self,
        table: str,
        record_id: str,
    ) -> Optional[dict[str, Any]]:
        """Select a single record by id.

        Returns:
            The record, or None if it does not exist
        """
        client = await self._session()

        try:
            result = await client.select(RecordID(table, record_id))
        except Exception as e:
            raise QueryError(f"Select failed: {e}") from e

        if isinstance(result, list):
            return result[0] if result else None
        return result or None

    async def merge(
        self,
        table: str,
        record_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge fields into an existing record.

        Returns:
            Updated record
        """
        client = await self._session()

        try:
            result = await client.merge(RecordID(table, record_id), data)
        except Exception as e:
            raise QueryError(f"Update failed: {e}") from e

        if isinstance(result, list):
            return result[0] if result else {}
        return result or {}

    async def delete(
        self,
        table: str,
        record_id: str,
    ) -> bool:
        """Delete a record.

        Returns:
            True if a record was deleted
        """
        client = await self._session()

        try:
            result = await client.delete(RecordID(table, record_id))
        except Exception as e:
            raise QueryError(f"Delete failed: {e}") from e
        return bool(result)


@asynccontextmanager
async def open_connection(
    config: MigrateConfig,
    database: str,
) -> AsyncGenerator[Connection, None]:
    """Context manager for a connected, authenticated connection.

    Usage:
        async with open_connection(config, "my-database") as conn:
            await conn.query("INFO FOR DB")

    Yields:
        Database connection
    """
    conn = Connection(config, database)
    await conn.connect()
    try:
        yield conn
    finally:
        await conn.disconnect()
