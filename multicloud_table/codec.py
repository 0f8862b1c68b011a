"""
Entity codec.

Maps TableEntity subclasses to a provider's native property bag and back.
Field enumeration uses a descriptor list built once per record class from
the pydantic field definitions; provider codecs only supply the native
value mapping and the key/system-property envelope.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Tuple, Type

from .logging_config import get_logger
from .models import TableEntity, TEntity
from .types import EdmType, resolve_edm_type, unwrap_optional

KEY_FIELDS = frozenset({"partition_key", "row_key"})

# Returned by value mappers when a value has no native representation
SKIP = object()


@dataclass(frozen=True)
class EntityField:
    """
    Serialization descriptor of one entity field.

    Attributes:
        name: Python attribute name
        wire_name: Property name used in the store
        edm_type: Mapped EDM type, None when the type is unsupported
        nullable: Field annotation allows None
        ignored: Field is excluded from serialization
        writable: Field can be assigned (not frozen)
        is_key: Field is PartitionKey or RowKey
    """
    name: str
    wire_name: str
    edm_type: Optional[EdmType]
    nullable: bool
    ignored: bool
    writable: bool
    is_key: bool


_DESCRIPTORS: Dict[type, Tuple[EntityField, ...]] = {}


def describe_entity(entity_type: Type[TableEntity]) -> Tuple[EntityField, ...]:
    """
    Get the field descriptors of a record class.

    Built on first use and cached per class.

    Args:
        entity_type: TableEntity subclass

    Returns:
        Descriptors in field declaration order
    """
    cached = _DESCRIPTORS.get(entity_type)
    if cached is not None:
        return cached

    fields = []
    for name, info in entity_type.model_fields.items():
        _, nullable = unwrap_optional(info.annotation)
        fields.append(EntityField(
            name=name,
            wire_name=info.alias or name,
            edm_type=resolve_edm_type(info.annotation, info.metadata),
            nullable=nullable,
            ignored=bool(info.exclude),
            writable=not info.frozen,
            is_key=name in KEY_FIELDS,
        ))

    descriptors = tuple(fields)
    _DESCRIPTORS[entity_type] = descriptors
    return descriptors


def normalize_projection(projection: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    """Turn a projection into a set, None when it selects everything."""
    if projection is None:
        return None
    if isinstance(projection, str):
        projection = [projection]
    columns = frozenset(projection)
    return columns or None


def projection_wire_names(
    entity_type: Type[TableEntity],
    projection: Optional[Iterable[str]]
) -> Optional[list]:
    """
    Translate a projection into store property names.

    Args:
        entity_type: Record class
        projection: Field or property names

    Returns:
        Wire names in declaration order, or None for "all properties"
    """
    columns = normalize_projection(projection)
    if columns is None:
        return None
    return [
        field.wire_name for field in describe_entity(entity_type)
        if not field.is_key and (field.name in columns or field.wire_name in columns)
    ]


def coerce_native_value(edm_type: Optional[EdmType], value: Any) -> Any:
    """
    Check a plain native value against the type a field expects.

    Args:
        edm_type: Type the target field expects
        value: Value read from the store

    Returns:
        Value to assign, or SKIP on a type mismatch
    """
    if edm_type is None:
        return SKIP

    if edm_type == EdmType.STRING:
        return value if isinstance(value, str) else SKIP

    if edm_type == EdmType.GUID:
        if isinstance(value, uuid.UUID):
            return value
        if isinstance(value, str):
            try:
                return uuid.UUID(value)
            except ValueError:
                return SKIP
        return SKIP

    if edm_type == EdmType.BINARY:
        return bytes(value) if isinstance(value, (bytes, bytearray)) else SKIP

    if edm_type == EdmType.BOOLEAN:
        return value if isinstance(value, bool) else SKIP

    if edm_type == EdmType.DATETIME:
        return value if isinstance(value, datetime) else SKIP

    if edm_type == EdmType.DOUBLE:
        if isinstance(value, float):
            return value
        return SKIP

    # Python has a single int type, so Int32 fields accept stored Int64 values
    if edm_type.is_integer():
        if not isinstance(value, int) or isinstance(value, bool):
            return SKIP
        return value

    return SKIP


class EntityCodec(ABC):
    """
    Bidirectional mapping between TableEntity instances and a provider's
    native property representation.

    Skip rules shared by serialize and deserialize:
    - key fields never become generic properties
    - provider system fields (see system_fields) are handled separately
    - fields outside a non-empty projection are skipped
    - frozen fields and fields declared with Field(exclude=True) are skipped

    Unsupported types and type mismatches are never errors: the property is
    omitted (serialize) or the field keeps its default (deserialize).
    """

    # Field names the provider manages outside the generic property bag
    system_fields: FrozenSet[str] = frozenset()

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or get_logger(__name__, enabled=False)

    # ========== Field selection ==========

    def eligible_fields(
        self,
        entity_type: Type[TableEntity],
        projection: Optional[Iterable[str]] = None
    ) -> Iterator[EntityField]:
        """
        Iterate the fields taking part in (de)serialization.

        Args:
            entity_type: Record class
            projection: Optional field names to restrict to

        Yields:
            Eligible field descriptors
        """
        columns = normalize_projection(projection)
        for field in describe_entity(entity_type):
            if not self._should_skip(field, columns):
                yield field

    def _should_skip(self, field: EntityField, columns: Optional[FrozenSet[str]]) -> bool:
        if field.is_key or field.name in self.system_fields:
            return True

        if columns is not None and field.name not in columns and field.wire_name not in columns:
            return True

        if not field.writable:
            self._logger.debug(
                "Omitting property '%s' from serialization/de-serialization "
                "because the property is not writable.",
                field.name
            )
            return True

        if field.ignored:
            self._logger.debug(
                "Omitting property '%s' from serialization/de-serialization "
                "because it is excluded.",
                field.name
            )
            return True

        return False

    # ========== Serialization ==========

    def serialize(
        self,
        entity: Optional[TableEntity],
        projection: Optional[Iterable[str]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Convert an entity into native properties (keys excluded).

        Args:
            entity: Entity to serialize
            projection: Optional field names to restrict to

        Returns:
            Mapping of wire name to native value, None for a None entity
        """
        if entity is None:
            return None

        properties: Dict[str, Any] = {}
        for field in self.eligible_fields(type(entity), projection):
            if field.edm_type is None:
                self._logger.debug(
                    "Omitting property '%s' from serialization because its type is not supported.",
                    field.name
                )
                continue

            native = self.to_native(field, getattr(entity, field.name))
            if native is SKIP:
                continue
            properties[field.wire_name] = native

        return properties

    def check_value(self, field: EntityField, value: Any) -> Any:
        """
        Check a runtime value against the field's declared type.

        Ints assigned to float fields are widened.

        Returns:
            Value to write, or SKIP when it does not fit the declared type
        """
        if field.edm_type == EdmType.DOUBLE and isinstance(value, int) and not isinstance(value, bool):
            value = float(value)

        checked = coerce_native_value(field.edm_type, value)
        if checked is SKIP:
            self._logger.debug(
                "Omitting property '%s' from serialization because its value is not %s.",
                field.name,
                field.edm_type.value if field.edm_type else "a supported type"
            )
        return checked

    @abstractmethod
    def to_native(self, field: EntityField, value: Any) -> Any:
        """
        Map a field value to its native representation.

        Returns:
            Native value, or SKIP to leave the property out
        """
        pass

    # ========== Deserialization ==========

    def deserialize(
        self,
        native: Any,
        entity_type: Type[TEntity],
        projection: Optional[Iterable[str]] = None
    ) -> Optional[TEntity]:
        """
        Materialise a record from a native entity.

        Args:
            native: Native entity as returned by the SDK
            entity_type: Record class to build
            projection: Optional field names to restrict to

        Returns:
            New record, or None when native is None
        """
        if native is None:
            return None

        properties = self.native_properties(native)
        entity = entity_type.new("", "")

        for field in self.eligible_fields(entity_type, projection):
            if field.wire_name not in properties:
                self._logger.debug(
                    "Omitting property '%s' from de-serialization because there is "
                    "no corresponding entry in the dictionary provided.",
                    field.name
                )
                continue

            raw = properties[field.wire_name]
            if self.is_null(raw):
                setattr(entity, field.name, None)
                continue

            value = self.from_native(field, raw)
            if value is SKIP:
                self._logger.debug(
                    "Omitting property '%s' from de-serialization because the stored "
                    "value does not match %s.",
                    field.name,
                    field.edm_type.value if field.edm_type else "a supported type"
                )
                continue
            setattr(entity, field.name, value)

        self.apply_system_properties(native, entity)
        return entity

    def native_properties(self, native: Any) -> Mapping[str, Any]:
        """Get the property mapping of a native entity."""
        return native

    def is_null(self, raw: Any) -> bool:
        """Check if a native value is a typed null."""
        return raw is None

    def from_native(self, field: EntityField, raw: Any) -> Any:
        """
        Map a native value onto a field.

        Returns:
            Value to assign, or SKIP on a type mismatch
        """
        return coerce_native_value(field.edm_type, raw)

    @abstractmethod
    def apply_system_properties(self, native: Any, entity: TableEntity) -> None:
        """
        Copy keys and store-managed properties onto a materialised record.

        Called after the generic pass; the store's key always wins.
        """
        pass
