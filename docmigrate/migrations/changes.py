"""Change set data model.

A ChangeSet is the unit of work of one apply run: collections to create,
then attributes, then indexes. Relationships are applied in a separate
phase and never appear in a ChangeSet.

Change sets are stored in history records in compacted form (empty fields
dropped) so that they fit the state collection's payload field; compacted
sets still carry everything rollback needs.
"""

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from ..errors import DocMigrateError

logger = logging.getLogger(__name__)


class MigrationError(DocMigrateError):
    """Base exception for migration errors."""

    pass


@dataclass
class CollectionCreate:
    """Collection to create, with the keys it will carry for reference."""

    id: str
    name: str
    attribute_keys: list[str] = field(default_factory=list)
    index_keys: list[str] = field(default_factory=list)


@dataclass
class AttributeCreate:
    """Plain attribute to create.

    Attributes:
        collection_id: Owning collection
        key: Attribute key
        type: Attribute type value, or the raw DSL type when it is unknown
        size: String length cap
        required: Whether a value is mandatory
        array: Whether the attribute holds a list
        default: Normalized default value
    """

    collection_id: str
    key: str
    type: str
    size: Optional[int] = None
    required: bool = False
    array: bool = False
    default: Any = None


@dataclass
class IndexCreate:
    """Index to create."""

    collection_id: str
    key: str
    type: str = "key"
    attributes: list[str] = field(default_factory=list)
    orders: list[Optional[str]] = field(default_factory=list)


@dataclass
class RelationshipCreate:
    """Relationship attribute to create in the relationships phase."""

    collection_id: str
    related_collection_id: str
    kind: str
    key: str
    two_way_key: Optional[str] = None
    on_delete: str = "restrict"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_FLAG_KEYS = {"required", "array"}


def _drop_empty(data: dict[str, Any]) -> dict[str, Any]:
    compacted = {}
    for key, value in data.items():
        if value is None or (isinstance(value, (list, str)) and not value):
            continue
        if value is False and key in _FLAG_KEYS:
            continue
        compacted[key] = value
    return compacted


@dataclass
class ChangeSet:
    """Ordered changes for one apply run."""

    collections: list[CollectionCreate] = field(default_factory=list)
    attributes: list[AttributeCreate] = field(default_factory=list)
    indexes: list[IndexCreate] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.collections or self.attributes or self.indexes)

    @property
    def total(self) -> int:
        return len(self.collections) + len(self.attributes) + len(self.indexes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collections": [asdict(c) for c in self.collections],
            "attributes": [asdict(a) for a in self.attributes],
            "indexes": [asdict(i) for i in self.indexes],
        }

    @property
    def checksum(self) -> str:
        """md5 of the canonical JSON form."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.md5(canonical.encode("utf-8")).hexdigest()

    def compact(self, max_chars: Optional[int] = None) -> dict[str, Any]:
        """Serializable form for history records.

        Empty fields are dropped. If the result is still longer than
        max_chars, only the identifiers rollback needs are kept.

        Raises:
            MigrationError: If even the minimal form exceeds max_chars
        """
        data = {
            "collections": [
                _drop_empty({"id": c.id, "name": c.name}) for c in self.collections
            ],
            "attributes": [_drop_empty(asdict(a)) for a in self.attributes],
            "indexes": [_drop_empty(asdict(i)) for i in self.indexes],
        }
        if max_chars is None or len(json.dumps(data)) <= max_chars:
            return data

        logger.debug("Change set too large for history, keeping identifiers only")
        data = {
            "collections": [{"id": c.id} for c in self.collections],
            "attributes": [{"collection_id": a.collection_id, "key": a.key} for a in self.attributes],
            "indexes": [{"collection_id": i.collection_id, "key": i.key} for i in self.indexes],
        }
        if len(json.dumps(data)) > max_chars:
            raise MigrationError(
                f"Change set with {self.total} operations is too large to record in history"
            )
        return data

    @classmethod
    def from_compact(cls, data: dict[str, Any]) -> "ChangeSet":
        """Rebuild a change set from its compacted form."""
        return cls(
            collections=[
                CollectionCreate(id=c["id"], name=c.get("name") or c["id"])
                for c in data.get("collections") or []
            ],
            attributes=[
                AttributeCreate(
                    collection_id=a["collection_id"],
                    key=a["key"],
                    type=a.get("type", ""),
                    size=a.get("size"),
                    required=a.get("required", False),
                    array=a.get("array", False),
                    default=a.get("default"),
                )
                for a in data.get("attributes") or []
            ],
            indexes=[
                IndexCreate(
                    collection_id=i["collection_id"],
                    key=i["key"],
                    type=i.get("type", "key"),
                    attributes=list(i.get("attributes") or []),
                    orders=list(i.get("orders") or []),
                )
                for i in data.get("indexes") or []
            ],
        )
