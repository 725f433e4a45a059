"""Remote schema inspection.

Builds a snapshot of the live database that the change calculator diffs
against: one RemoteCollection per collection, keyed by collection id.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Optional

from .client import DatabaseClient

logger = logging.getLogger(__name__)


@dataclass
class RemoteCollection:
    """Live state of one collection."""

    id: str
    name: str
    attributes: list[dict[str, Any]] = field(default_factory=list)
    indexes: list[dict[str, Any]] = field(default_factory=list)

    @property
    def attribute_keys(self) -> set[str]:
        return {a["key"] for a in self.attributes}

    @property
    def relationship_keys(self) -> set[str]:
        return {a["key"] for a in self.attributes if a.get("type") == "relationship"}

    @property
    def index_keys(self) -> set[str]:
        return {i["key"] for i in self.indexes}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteCollection":
        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            attributes=list(data.get("attributes") or []),
            indexes=list(data.get("indexes") or []),
        )


RemoteState = dict[str, RemoteCollection]


class SchemaInspector:
    """Reads the remote schema through a DatabaseClient."""

    def __init__(self, client: DatabaseClient, exclude: Optional[Iterable[str]] = None):
        """Initialize the inspector.

        Args:
            client: Database client
            exclude: Collection ids to leave out (the tool's internal collections)
        """
        self.client = client
        self.exclude = set(exclude or ())

    async def describe(self) -> RemoteState:
        """Return the remote state map, keyed by collection id."""
        state: RemoteState = {}
        for data in await self.client.list_collections():
            if data["id"] in self.exclude:
                continue
            collection = RemoteCollection.from_dict(data)
            state[collection.id] = collection

        logger.debug(f"Remote state: {len(state)} collections")
        return state
