"""
EDM (Entity Data Model) type table for table entities.

Maps Python field annotations and runtime values onto the fixed set of
primitive property types both backing stores understand.
"""

from __future__ import annotations

import types
import uuid
from datetime import datetime
from enum import Enum
from typing import (
    Annotated,
    Any,
    Iterable,
    Optional,
    Tuple,
    Union,
    get_args,
    get_origin,
)


INT32_MIN = -2147483648
INT32_MAX = 2147483647


class EdmType(Enum):
    """
    Entity Data Model primitive types.

    The complete set of property types the entity codecs map.
    """
    STRING = "Edm.String"
    BINARY = "Edm.Binary"
    BOOLEAN = "Edm.Boolean"
    DATETIME = "Edm.DateTime"
    DOUBLE = "Edm.Double"
    INT32 = "Edm.Int32"
    INT64 = "Edm.Int64"
    GUID = "Edm.Guid"

    def is_integer(self) -> bool:
        """Check if type is an integer type (Int32, Int64)."""
        return self in (EdmType.INT32, EdmType.INT64)


# 64-bit integer field: ``count: Int64 = 0``
Int64 = Annotated[int, EdmType.INT64]


# Python type -> EDM type. bool must be looked up before int.
_ANNOTATION_TYPES = (
    (bool, EdmType.BOOLEAN),
    (str, EdmType.STRING),
    (bytes, EdmType.BINARY),
    (datetime, EdmType.DATETIME),
    (float, EdmType.DOUBLE),
    (int, EdmType.INT32),
    (uuid.UUID, EdmType.GUID),
)


def unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
    """
    Strip ``Optional[...]`` from an annotation.

    Args:
        annotation: Field annotation

    Returns:
        Tuple of (inner annotation, nullable). Unions of more than one
        non-None member are returned unchanged.
    """
    origin = get_origin(annotation)
    union_types = (Union,)
    if hasattr(types, "UnionType"):
        union_types = (Union, types.UnionType)

    if origin in union_types:
        members = [arg for arg in get_args(annotation) if arg is not type(None)]
        nullable = len(members) != len(get_args(annotation))
        if len(members) == 1:
            return members[0], nullable
        return annotation, nullable

    return annotation, False


def resolve_edm_type(
    annotation: Any,
    metadata: Optional[Iterable[Any]] = None
) -> Optional[EdmType]:
    """
    Resolve the EDM type of a field from its annotation.

    An EdmType found in the field metadata (``Annotated[int, EdmType.INT64]``)
    wins over the annotation itself.

    Args:
        annotation: Field annotation
        metadata: Extra ``Annotated`` metadata collected for the field

    Returns:
        Resolved EDM type, or None if the type is not supported
    """
    for item in metadata or ():
        if isinstance(item, EdmType):
            return item

    inner, _ = unwrap_optional(annotation)

    if get_origin(inner) is Annotated:
        base, *extras = get_args(inner)
        return resolve_edm_type(base, extras)

    if not isinstance(inner, type):
        return None

    for python_type, edm_type in _ANNOTATION_TYPES:
        if issubclass(inner, python_type):
            return edm_type

    return None


def is_int32(value: int) -> bool:
    """Check if an integer fits the signed 32-bit range."""
    return INT32_MIN <= value <= INT32_MAX
