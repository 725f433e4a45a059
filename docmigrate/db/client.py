"""Database client capability interface.

The migration core talks to the remote document database only through
DatabaseClient. Implementations must raise ConflictError from create/ensure
calls whose target already exists and NotFoundError from delete calls whose
target is missing. Attribute, relationship and index definitions naming a
missing collection also raise NotFoundError. get_* calls return None for
missing targets.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..errors import DocMigrateError


class DatabaseClientError(DocMigrateError):
    """Remote operation failed.

    Attributes:
        status: Transport-style status code when known (404, 409, ...)
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ConflictError(DatabaseClientError):
    """Target already exists."""

    def __init__(self, message: str):
        super().__init__(message, status=409)


class NotFoundError(DatabaseClientError):
    """Target does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status=404)


def is_conflict(error: BaseException) -> bool:
    """True if the error means "already exists"."""
    if isinstance(error, ConflictError):
        return True
    if getattr(error, "status", None) == 409:
        return True
    return "already exists" in str(error).lower()


def is_not_found(error: BaseException) -> bool:
    """True if the error means the target is missing."""
    if isinstance(error, NotFoundError):
        return True
    if getattr(error, "status", None) == 404:
        return True
    message = str(error).lower()
    return "not found" in message or "does not exist" in message


class DatabaseClient(ABC):
    """Async capability set required by the migration core.

    Collections are dictionaries shaped as
    `{"id", "name", "attributes": [{"key", "type", ...}], "indexes": [{"key", "type", "attributes"}]}`.
    Relationship attributes report `type == "relationship"`.
    Documents are dictionaries carrying their identifier under "id".
    """

    # Collections

    @abstractmethod
    async def get_collection(self, collection_id: str) -> Optional[dict[str, Any]]:
        """Return a collection description or None."""

    @abstractmethod
    async def list_collections(self) -> list[dict[str, Any]]:
        """Return descriptions of every collection in the database."""

    @abstractmethod
    async def create_collection(self, collection_id: str, name: str) -> None:
        """Create an empty collection."""

    @abstractmethod
    async def delete_collection(self, collection_id: str) -> None:
        """Delete a collection and everything it contains."""

    # Attributes

    @abstractmethod
    async def create_string_attribute(
        self,
        collection_id: str,
        key: str,
        size: int = 255,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        """Create a string attribute."""

    @abstractmethod
    async def create_integer_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        """Create an integer attribute."""

    @abstractmethod
    async def create_float_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        """Create a float attribute."""

    @abstractmethod
    async def create_boolean_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        """Create a boolean attribute."""

    @abstractmethod
    async def create_datetime_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        """Create a datetime attribute."""

    @abstractmethod
    async def create_email_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        """Create an email attribute."""

    @abstractmethod
    async def create_url_attribute(
        self,
        collection_id: str,
        key: str,
        required: bool = False,
        array: bool = False,
        default: Optional[str] = None,
    ) -> None:
        """Create a URL attribute."""

    @abstractmethod
    async def create_relationship_attribute(
        self,
        collection_id: str,
        related_collection_id: str,
        kind: str,
        key: str,
        two_way_key: Optional[str] = None,
        on_delete: str = "restrict",
    ) -> None:
        """Create a relationship attribute pointing at another collection."""

    @abstractmethod
    async def delete_attribute(self, collection_id: str, key: str) -> None:
        """Delete an attribute."""

    # Indexes

    @abstractmethod
    async def ensure_index(
        self,
        collection_id: str,
        key: str,
        type: str = "key",
        attributes: Optional[list[str]] = None,
        orders: Optional[list[Optional[str]]] = None,
    ) -> None:
        """Create an index."""

    @abstractmethod
    async def delete_index(self, collection_id: str, key: str) -> None:
        """Delete an index."""

    # Documents

    @abstractmethod
    async def get_document(self, collection_id: str, document_id: str) -> Optional[dict[str, Any]]:
        """Return a document or None."""

    @abstractmethod
    async def list_documents(
        self,
        collection_id: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """List documents, optionally filtered by field equality and ordered."""

    @abstractmethod
    async def create_document(
        self,
        collection_id: str,
        document_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Create a document with an explicit id."""

    @abstractmethod
    async def update_document(
        self,
        collection_id: str,
        document_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge fields into an existing document."""

    @abstractmethod
    async def delete_document(self, collection_id: str, document_id: str) -> None:
        """Delete a document."""
