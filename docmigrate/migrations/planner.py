"""Change calculation: declared schema vs. live remote state.

Both functions are pure; the remote state comes from SchemaInspector.describe().
"""

import logging

from ..db.inspector import RemoteState
from ..dsl.models import Attribute, Collection, Index, Schema
from .changes import (
    AttributeCreate,
    ChangeSet,
    CollectionCreate,
    IndexCreate,
    RelationshipCreate,
)

logger = logging.getLogger(__name__)


def _attribute_create(collection_id: str, attr: Attribute) -> AttributeCreate:
    return AttributeCreate(
        collection_id=collection_id,
        key=attr.name,
        type=attr.type.value if attr.type else attr.type_name,
        size=attr.size,
        required=attr.required,
        array=attr.array,
        default=attr.default,
    )


def _index_create(collection_id: str, index: Index) -> IndexCreate:
    return IndexCreate(
        collection_id=collection_id,
        key=index.key,
        type=index.type.value,
        attributes=list(index.fields),
        orders=list(index.orders),
    )


def _collection_create(collection: Collection) -> CollectionCreate:
    return CollectionCreate(
        id=collection.id,
        name=collection.name,
        attribute_keys=[a.name for a in collection.plain_attributes],
        index_keys=[i.key for i in collection.indexes],
    )


def calculate_changes(schema: Schema, remote: RemoteState) -> ChangeSet:
    """Compute the phase-one changes needed to converge remote onto schema.

    New collections are emitted with all their plain attributes and indexes.
    For existing collections only missing attribute and index keys are
    emitted. Relationship attributes are never part of the result.

    Args:
        schema: Parsed schema
        remote: Remote state map keyed by collection id

    Returns:
        Ordered change set (collections, attributes, indexes)
    """
    changes = ChangeSet()

    for collection in schema.collections.values():
        collection_id = collection.id
        existing = remote.get(collection_id)

        if existing is None:
            changes.collections.append(_collection_create(collection))
            changes.attributes.extend(
                _attribute_create(collection_id, a) for a in collection.plain_attributes
            )
            changes.indexes.extend(_index_create(collection_id, i) for i in collection.indexes)
            continue

        attribute_keys = existing.attribute_keys
        for attr in collection.plain_attributes:
            if attr.name not in attribute_keys:
                changes.attributes.append(_attribute_create(collection_id, attr))

        index_keys = existing.index_keys
        for index in collection.indexes:
            if index.key not in index_keys:
                changes.indexes.append(_index_create(collection_id, index))

    logger.debug(
        f"Calculated changes: {len(changes.collections)} collections, "
        f"{len(changes.attributes)} attributes, {len(changes.indexes)} indexes"
    )
    return changes


def calculate_relationships(schema: Schema, remote: RemoteState) -> list[RelationshipCreate]:
    """Relationships declared in schema that are missing remotely.

    A relationship is pending unless the source collection has a
    relationship-typed attribute with the same key.
    """
    pending: list[RelationshipCreate] = []

    for collection in schema.collections.values():
        existing = remote.get(collection.id)
        existing_keys = existing.relationship_keys if existing else set()

        for attr in collection.relationship_attributes:
            if attr.name in existing_keys:
                continue
            relationship = attr.relationship
            assert relationship is not None
            pending.append(
                RelationshipCreate(
                    collection_id=collection.id,
                    related_collection_id=relationship.to_collection_id,
                    kind=relationship.kind.value,
                    key=attr.name,
                    two_way_key=relationship.two_way_key,
                    on_delete=relationship.on_delete.value,
                )
            )

    logger.debug(f"Calculated {len(pending)} pending relationships")
    return pending
