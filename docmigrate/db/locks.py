"""Distributed locks stored as documents in the lock collection.

A lock is a single document whose id is md5("lock:" + lock_id), so creating
it is the atomic test-and-set: a second creator gets a conflict. Locks carry
an owner and an optional expiry; expired locks and locks held by the same
owner may be taken over.

Usage:
    locks = LockManager(client, "dm_locks", owner=config.owner)
    async with locks.hold("apply"):
        ...
"""

import hashlib
import json
import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from ..errors import DocMigrateError
from .client import DatabaseClient, is_conflict, is_not_found
from .state import parse_timestamp, utc_now

logger = logging.getLogger(__name__)


LOCK_STATUS_LOCKED = "locked"


class LockError(DocMigrateError):
    """Base exception for lock errors."""

    pass


class LockContentionError(LockError):
    """Lock is held by another owner and has not expired."""

    def __init__(
        self,
        lock_id: str,
        holder: Optional[str],
        age_seconds: float,
        since: Optional[datetime] = None,
    ):
        self.lock_id = lock_id
        self.holder = holder or "unknown"
        self.age_seconds = age_seconds
        self.since = since
        started = since.isoformat() if since else "unknown"
        super().__init__(
            f"Lock '{lock_id}' is held by {self.holder} since {started} "
            f"({age_seconds:.0f}s ago); use --force to take it over"
        )


class LockOwnershipError(LockError):
    """Attempt to release a lock held by someone else."""

    pass


def lock_document_id(lock_id: str) -> str:
    return hashlib.md5(f"lock:{lock_id}".encode("utf-8")).hexdigest()


@dataclass
class Lock:
    """A held lock."""

    lock_id: str
    owner: Optional[str]
    status: str = LOCK_STATUS_LOCKED
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def age_seconds(self, now: datetime) -> float:
        if self.created_at is None:
            return 0.0
        return max((now - self.created_at).total_seconds(), 0.0)

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Lock":
        metadata = doc.get("metadata") or {}
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = {"raw": metadata}
        return cls(
            lock_id=doc["lock_id"],
            owner=doc.get("owner") or None,
            status=doc.get("status") or LOCK_STATUS_LOCKED,
            created_at=parse_timestamp(doc.get("created_at")),
            expires_at=parse_timestamp(doc.get("expires_at")),
            metadata=metadata,
        )


class LockManager:
    """Acquire and release named locks in the lock collection."""

    def __init__(
        self,
        client: DatabaseClient,
        collection_id: str = "dm_locks",
        owner: Optional[str] = None,
        ttl_seconds: Optional[int] = 600,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the lock manager.

        Args:
            client: Database client
            collection_id: Id of the lock collection
            owner: Default owner identity for acquire/release
            ttl_seconds: Default time-to-live; 0 or None means no expiry
            clock: Source of the current aware UTC time
        """
        self.client = client
        self.collection_id = collection_id
        self.owner = owner or "unknown"
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def _lock_data(
        self,
        lock_id: str,
        owner: str,
        ttl_seconds: Optional[int],
        metadata: Optional[dict[str, Any]],
        now: datetime,
    ) -> dict[str, Any]:
        expires_at = now + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        return {
            "lock_id": lock_id,
            "owner": owner,
            "status": LOCK_STATUS_LOCKED,
            "created_at": now,
            "expires_at": expires_at,
            "metadata": json.dumps(metadata or {}, sort_keys=True),
        }

    async def get(self, lock_id: str) -> Optional[Lock]:
        """Return the current holder of a lock, or None."""
        doc = await self.client.get_document(self.collection_id, lock_document_id(lock_id))
        return Lock.from_document(doc) if doc else None

    async def list_locks(self) -> list[Lock]:
        """All lock documents, newest first."""
        docs = await self.client.list_documents(
            self.collection_id, order_by="created_at", descending=True
        )
        return [Lock.from_document(doc) for doc in docs]

    async def acquire(
        self,
        lock_id: str,
        owner: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        force: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Lock:
        """Acquire a lock.

        Args:
            lock_id: Lock name (operation kind)
            owner: Owner identity (defaults to the manager's owner)
            ttl_seconds: Time-to-live (defaults to the manager's TTL)
            force: Take the lock over even if another owner holds it
            metadata: Extra context stored with the lock

        Returns:
            The held lock

        Raises:
            LockContentionError: If another owner holds an unexpired lock
        """
        owner = owner or self.owner
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        doc_id = lock_document_id(lock_id)

        # one retry when the conflicting lock vanishes before it can be read
        for _ in range(2):
            now = self.clock()
            data = self._lock_data(lock_id, owner, ttl, metadata, now)
            try:
                await self.client.create_document(self.collection_id, doc_id, data)
                logger.debug(f"Acquired lock '{lock_id}' for {owner}")
                return Lock.from_document(data)
            except Exception as e:
                if not is_conflict(e):
                    raise

            existing_doc = await self.client.get_document(self.collection_id, doc_id)
            if existing_doc is None:
                logger.debug(f"Lock '{lock_id}' released concurrently, retrying")
                continue

            existing = Lock.from_document(existing_doc)
            expired = existing.is_expired(now)
            if expired or existing.owner == owner or force:
                if force and not expired and existing.owner != owner:
                    logger.warning(f"Forcing lock '{lock_id}' away from {existing.owner}")
                elif expired:
                    logger.info(f"Taking over expired lock '{lock_id}' from {existing.owner}")
                await self.client.update_document(self.collection_id, doc_id, data)
                return Lock.from_document(data)

            raise LockContentionError(
                lock_id,
                existing.owner,
                existing.age_seconds(now),
                existing.created_at,
            )

        raise LockError(f"Could not acquire lock '{lock_id}'")

    async def release(self, lock_id: str, owner: Optional[str] = None) -> bool:
        """Release a lock.

        A lock document without an owner is deleted unconditionally.

        Returns:
            False if no lock existed

        Raises:
            LockOwnershipError: If the lock belongs to a different owner
        """
        owner = owner or self.owner
        doc_id = lock_document_id(lock_id)

        existing = await self.get(lock_id)
        if existing is None:
            return False
        if existing.owner and existing.owner != owner:
            raise LockOwnershipError(
                f"Lock '{lock_id}' is held by {existing.owner}, not {owner}"
            )

        try:
            await self.client.delete_document(self.collection_id, doc_id)
        except Exception as e:
            if not is_not_found(e):
                raise
            return False

        logger.debug(f"Released lock '{lock_id}'")
        return True

    @asynccontextmanager
    async def hold(
        self,
        lock_id: str,
        owner: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
        force: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AsyncGenerator[Lock, None]:
        """Hold a lock for the duration of a block.

        The lock is released on every exit path. If it was taken over by
        another owner in the meantime, the release is skipped with a warning.
        When the block raised, a failing release is logged and the block's
        exception propagates.
        """
        owner = owner or self.owner
        lock = await self.acquire(lock_id, owner, ttl_seconds, force, metadata)
        completed = False
        try:
            yield lock
            completed = True
        finally:
            try:
                await self.release(lock_id, owner)
            except LockOwnershipError as e:
                logger.warning(f"Lock not released: {e}")
            except Exception as e:
                if completed:
                    raise
                logger.error(f"Failed to release lock '{lock_id}': {e}")
