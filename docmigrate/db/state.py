"""Migration state stored inside the remote database.

All tool state lives in two internal collections:

- the state collection: generic `(record_type, record_id)` records with a JSON
  payload; migration history uses record_type "history"
- the lock collection: one document per held lock (see locks.py)

Document ids are derived deterministically so that lookups never need a query:
md5("<record_type>:<record_id>").
"""

import hashlib
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from .client import DatabaseClient, is_conflict, is_not_found

logger = logging.getLogger(__name__)


HISTORY_RECORD_TYPE = "history"
PAYLOAD_SIZE = 20000
METADATA_SIZE = 2000


class HistoryStatus(str, Enum):
    """Status of a history record."""

    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"


class HistoryType(str, Enum):
    """Which phase produced a history record."""

    APPLY = "apply"
    RELATIONSHIPS = "relationships"


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Read a stored timestamp back as an aware UTC datetime.

    Datetime fields come back from the SDK as datetime objects; ISO strings
    (with or without a Z suffix) are accepted as well. Naive values are
    taken to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"Unparseable timestamp: {value!r}")
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def document_id(record_type: str, record_id: str) -> str:
    """Deterministic document id for a state record."""
    return hashlib.md5(f"{record_type}:{record_id}".encode("utf-8")).hexdigest()


@dataclass
class HistoryRecord:
    """One completed apply/relationships run."""

    record_id: str
    type: str
    database_id: Optional[str]
    checksum: str
    changes: dict[str, Any]
    status: HistoryStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "HistoryRecord":
        payload = decode_payload(doc.get("payload"))
        return cls(
            record_id=doc["record_id"],
            type=payload.get("type", HistoryType.APPLY.value),
            database_id=payload.get("database_id"),
            checksum=payload.get("checksum", ""),
            changes=payload.get("changes") or {},
            status=HistoryStatus(doc["status"]),
            created_at=parse_timestamp(doc.get("created_at")),
            updated_at=parse_timestamp(doc.get("updated_at")),
        )


def decode_payload(raw: Any) -> dict[str, Any]:
    """Decode a stored payload (JSON string or already-decoded mapping)."""
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring undecodable state payload")
        return {}
    return value if isinstance(value, dict) else {}


class StateStore:
    """History and state records persisted in the managed database."""

    def __init__(
        self,
        client: DatabaseClient,
        collection_id: str = "dm_state",
        lock_collection_id: str = "dm_locks",
    ):
        """Initialize the store.

        Args:
            client: Database client
            collection_id: Id of the state collection
            lock_collection_id: Id of the lock collection
        """
        self.client = client
        self.collection_id = collection_id
        self.lock_collection_id = lock_collection_id

    @property
    def internal_collections(self) -> set[str]:
        return {self.collection_id, self.lock_collection_id}

    async def _tolerate_conflict(
        self,
        description: str,
        operation: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        try:
            await operation(*args, **kwargs)
        except Exception as e:
            if not is_conflict(e):
                raise
            logger.debug(f"{description} already exists")

    async def init(self) -> None:
        """Create the internal collections, attributes and indexes.

        Idempotent: anything that already exists is left untouched.
        """
        client = self.client
        state = self.collection_id
        locks = self.lock_collection_id
        ensure = self._tolerate_conflict

        await ensure(f"Collection {state}", client.create_collection, state, "Migration State")
        await ensure(
            f"{state}.record_type", client.create_string_attribute, state, "record_type", 64, required=True
        )
        await ensure(
            f"{state}.record_id", client.create_string_attribute, state, "record_id", 128, required=True
        )
        await ensure(f"{state}.status", client.create_string_attribute, state, "status", 32, required=True)
        await ensure(f"{state}.payload", client.create_string_attribute, state, "payload", PAYLOAD_SIZE)
        await ensure(
            f"{state}.created_at", client.create_datetime_attribute, state, "created_at", required=True
        )
        await ensure(
            f"{state}.updated_at", client.create_datetime_attribute, state, "updated_at", required=True
        )
        await ensure(
            f"{state}.idx_record_type",
            client.ensure_index, state, "idx_record_type", "key", ["record_type"],
        )
        await ensure(
            f"{state}.idx_record_type_id",
            client.ensure_index, state, "idx_record_type_id", "unique", ["record_type", "record_id"],
        )

        await ensure(f"Collection {locks}", client.create_collection, locks, "Migration Locks")
        await ensure(f"{locks}.lock_id", client.create_string_attribute, locks, "lock_id", 128, required=True)
        await ensure(f"{locks}.owner", client.create_string_attribute, locks, "owner", 255, required=True)
        await ensure(f"{locks}.status", client.create_string_attribute, locks, "status", 32, required=True)
        await ensure(
            f"{locks}.created_at", client.create_datetime_attribute, locks, "created_at", required=True
        )
        await ensure(f"{locks}.expires_at", client.create_datetime_attribute, locks, "expires_at")
        await ensure(f"{locks}.metadata", client.create_string_attribute, locks, "metadata", METADATA_SIZE)
        await ensure(f"{locks}.idx_lock_id", client.ensure_index, locks, "idx_lock_id", "unique", ["lock_id"])

        logger.debug(f"State collections ready: {state}, {locks}")

    # -------------------------------------------------------------------
    # Generic records
    # -------------------------------------------------------------------

    async def upsert_record(
        self,
        record_type: str,
        record_id: str,
        status: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Create or update a state record.

        Returns:
            Stored document
        """
        doc_id = document_id(record_type, record_id)
        now = utc_now()
        data: dict[str, Any] = {"status": status, "updated_at": now}
        if payload is not None:
            data["payload"] = json.dumps(payload, sort_keys=True)

        existing = await self.client.get_document(self.collection_id, doc_id)
        if existing:
            return await self.client.update_document(self.collection_id, doc_id, data)

        data.update({"record_type": record_type, "record_id": record_id, "created_at": now})
        try:
            return await self.client.create_document(self.collection_id, doc_id, data)
        except Exception as e:
            if not is_conflict(e):
                raise
            # created concurrently between the read and the write
            update = {k: v for k, v in data.items() if k != "created_at"}
            return await self.client.update_document(self.collection_id, doc_id, update)

    async def get_record(self, record_type: str, record_id: str) -> Optional[dict[str, Any]]:
        """Return a state record with its payload decoded, or None."""
        doc = await self.client.get_document(self.collection_id, document_id(record_type, record_id))
        if not doc:
            return None
        return {**doc, "payload": decode_payload(doc.get("payload"))}

    async def list_records(
        self,
        record_type: str,
        status: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """List records of a type, newest first."""
        filters: dict[str, Any] = {"record_type": record_type}
        if status:
            filters["status"] = status
        return await self.client.list_documents(
            self.collection_id,
            filters=filters,
            order_by="created_at",
            descending=True,
            limit=limit,
        )

    async def delete_record(self, record_type: str, record_id: str) -> bool:
        """Delete a record.

        Returns:
            False if the record did not exist
        """
        try:
            await self.client.delete_document(self.collection_id, document_id(record_type, record_id))
        except Exception as e:
            if not is_not_found(e):
                raise
            return False
        return True

    # -------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------

    async def record_history(
        self,
        history_type: HistoryType,
        database_id: Optional[str],
        checksum: str,
        changes: dict[str, Any],
        status: HistoryStatus = HistoryStatus.APPLIED,
    ) -> HistoryRecord:
        """Store a new history record under a fresh record id."""
        record_id = uuid.uuid4().hex
        payload = {
            "type": history_type.value,
            "database_id": database_id,
            "checksum": checksum,
            "changes": changes,
        }
        doc = await self.upsert_record(HISTORY_RECORD_TYPE, record_id, status.value, payload)
        logger.info(f"Recorded {history_type.value} history {record_id} ({checksum})")
        return HistoryRecord(
            record_id=record_id,
            type=history_type.value,
            database_id=database_id,
            checksum=checksum,
            changes=changes,
            status=status,
            created_at=parse_timestamp(doc.get("created_at")),
            updated_at=parse_timestamp(doc.get("updated_at")),
        )

    async def update_history_status(self, record_id: str, status: HistoryStatus) -> None:
        """Flip the status of an existing history record."""
        await self.client.update_document(
            self.collection_id,
            document_id(HISTORY_RECORD_TYPE, record_id),
            {"status": status.value, "updated_at": utc_now()},
        )

    async def latest_history(self, status: Optional[HistoryStatus] = None) -> Optional[HistoryRecord]:
        """Most recent history record, optionally restricted to a status."""
        docs = await self.list_records(HISTORY_RECORD_TYPE, status.value if status else None, limit=1)
        return HistoryRecord.from_document(docs[0]) if docs else None

    async def list_history(self, limit: Optional[int] = None) -> list[HistoryRecord]:
        """History records, newest first."""
        docs = await self.list_records(HISTORY_RECORD_TYPE, limit=limit)
        return [HistoryRecord.from_document(doc) for doc in docs]

    async def reset(self) -> int:
        """Delete every history record.

        Returns:
            Number of records deleted
        """
        deleted = 0
        for doc in await self.list_records(HISTORY_RECORD_TYPE):
            if await self.delete_record(HISTORY_RECORD_TYPE, doc["record_id"]):
                deleted += 1
        logger.info(f"Deleted {deleted} history records")
        return deleted
