"""
Google Cloud Datastore entity codec.

Datastore keeps the record keys in the entity Key (kind = partition key,
name = row key), so the property bag holds custom fields and Timestamp.
"""

import uuid
from typing import Any, Iterable, Optional

from google.cloud import datastore

from ...codec import SKIP, EntityCodec, EntityField
from ...models import TableEntity

# Datastore rejects indexed string/blob values larger than this (bytes)
INDEXED_PROPERTY_LIMIT = 1500


def exceeds_index_limit(value: Any) -> bool:
    """
    Check if a value is too large to be indexed.

    Args:
        value: Native property value

    Returns:
        True for strings longer than the limit in UTF-8 bytes, and for
        blobs longer than the limit
    """
    if isinstance(value, str):
        return len(value.encode("utf-8")) > INDEXED_PROPERTY_LIMIT
    if isinstance(value, (bytes, bytearray)):
        return len(value) > INDEXED_PROPERTY_LIMIT
    return False


class GoogleEntityCodec(EntityCodec):
    """
    Codec for the kind/name keyed document store.

    None is written as a null value. Guids are written as their string
    form, which Datastore has no dedicated type for. Timestamp is an
    ordinary stored property; only the ETag is held back.
    """

    system_fields = frozenset({"etag"})

    def to_native(self, field: EntityField, value: Any) -> Any:
        if value is None:
            return None

        checked = self.check_value(field, value)
        if checked is SKIP:
            return SKIP

        if isinstance(checked, uuid.UUID):
            return str(checked)
        return checked

    def to_datastore_entity(
        self,
        entity: TableEntity,
        key: datastore.Key,
        projection: Optional[Iterable[str]] = None
    ) -> datastore.Entity:
        """
        Build the Datastore entity for a record.

        Args:
            entity: Record to write
            key: Datastore key of the record
            projection: Optional field names to restrict to

        Returns:
            Entity with the serialized properties; oversized string and
            blob values are excluded from indexes
        """
        properties = self.serialize(entity, projection)
        excluded = [name for name, value in properties.items() if exceeds_index_limit(value)]

        native = datastore.Entity(key=key, exclude_from_indexes=tuple(excluded))
        native.update(properties)
        return native

    def apply_system_properties(self, native: Any, entity: TableEntity) -> None:
        key = getattr(native, "key", None)
        if key is None:
            return

        entity.partition_key = key.kind
        entity.row_key = key.name if key.name is not None else str(key.id)
