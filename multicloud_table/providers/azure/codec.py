"""
Azure Table Storage entity codec.

Converts records to the dict entities accepted by azure-data-tables and
back from the TableEntity objects it returns.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from azure.data.tables import EdmType as AzureEdmType
from azure.data.tables import EntityProperty

from ...codec import SKIP, EntityCodec, EntityField
from ...models import TableEntity, parse_etag_timestamp
from ...types import EdmType, is_int32

PARTITION_KEY = "PartitionKey"
ROW_KEY = "RowKey"
TIMESTAMP = "Timestamp"


class AzureEntityCodec(EntityCodec):
    """
    Codec for the partition/row keyed table store.

    ETag and Timestamp are service-managed: they travel in entity metadata,
    never as custom properties. The store has no null values, so None
    fields are left out of the written entity.
    """

    system_fields = frozenset({"etag", "timestamp"})

    def to_native(self, field: EntityField, value: Any) -> Any:
        if value is None:
            return SKIP

        checked = self.check_value(field, value)
        if checked is SKIP:
            return SKIP

        if field.edm_type.is_integer() and (field.edm_type == EdmType.INT64 or not is_int32(checked)):
            return EntityProperty(checked, AzureEdmType.INT64)

        return checked

    def to_table_entity(
        self,
        entity: TableEntity,
        projection: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        """
        Build the entity dict sent to the service.

        Args:
            entity: Record to write
            projection: Optional field names to restrict to

        Returns:
            Properties plus the PartitionKey/RowKey key slots
        """
        record = {
            PARTITION_KEY: entity.partition_key,
            ROW_KEY: entity.row_key,
        }
        record.update(self.serialize(entity, projection))
        return record

    @staticmethod
    def key_entity(entity: TableEntity) -> Dict[str, Any]:
        """Build a keys-only entity dict (used by batch deletes)."""
        return {PARTITION_KEY: entity.partition_key, ROW_KEY: entity.row_key}

    def from_native(self, field: EntityField, raw: Any) -> Any:
        # Int64 (and, depending on SDK version, Guid) values arrive wrapped
        if isinstance(raw, EntityProperty):
            raw = raw.value
            if field.edm_type is not None and field.edm_type.is_integer() and isinstance(raw, str):
                try:
                    raw = int(raw)
                except ValueError:
                    return SKIP
        return super().from_native(field, raw)

    def apply_system_properties(self, native: Any, entity: TableEntity) -> None:
        metadata = getattr(native, "metadata", None) or {}

        etag = metadata.get("etag")
        if etag:
            entity.etag = etag

        timestamp = metadata.get("timestamp") or native.get(TIMESTAMP)
        if isinstance(timestamp, datetime):
            entity.timestamp = timestamp
        else:
            entity.timestamp = parse_etag_timestamp(etag) or entity.timestamp

        entity.partition_key = native.get(PARTITION_KEY, entity.partition_key)
        entity.row_key = native.get(ROW_KEY, entity.row_key)


def timestamp_from_metadata(metadata: Optional[Dict[str, Any]]) -> datetime:
    """
    Work out the entity timestamp from a write response.

    The weak ETag embeds the entity Timestamp; the response Date header is
    the fallback, then the local clock (deletes return no metadata).

    Args:
        metadata: Response metadata returned by the SDK

    Returns:
        Timestamp of the write
    """
    metadata = metadata or {}
    parsed = parse_etag_timestamp(metadata.get("etag"))
    if parsed is not None:
        return parsed

    date = metadata.get("date")
    if isinstance(date, datetime):
        return date

    return datetime.now(timezone.utc)
