"""
Pydantic models for multicloud table entities and provider settings.

Defines the base entity every stored record derives from, the provider
selection options and the settings shared by all provider adapters.
"""

import logging
import re
from datetime import datetime
from typing import Callable, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# Concurrency token that disables the optimistic concurrency check
WILDCARD_ETAG = "*"

_WEAK_ETAG_PATTERN = re.compile(r"^W/\"datetime'(?P<ts>[^']+)'\"$")

TEntity = TypeVar("TEntity", bound="TableEntity")


class TableEntity(BaseModel):
    """
    Base model for records stored through a table client.

    Entities must have partition_key and row_key; together they identify
    the entity within one table. etag and timestamp are managed by the
    store (or by the adapter for stores without server-side timestamps).

    Custom properties are declared as annotated fields on subclasses and
    must have defaults so that blank instances can be materialised.
    """
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)

    # System properties
    partition_key: str = Field(..., alias="PartitionKey", description="Partition key for the entity")
    row_key: str = Field(..., alias="RowKey", description="Row key for the entity")
    etag: Optional[str] = Field(
        default=None,
        alias="ETag",
        description="ETag for optimistic concurrency, '*' to force the operation"
    )
    timestamp: Optional[datetime] = Field(
        default=None,
        alias="Timestamp",
        description="Last modification timestamp"
    )

    @field_validator("partition_key", "row_key")
    @classmethod
    def validate_keys_not_empty(cls, v: str) -> str:
        """Validate that keys are not empty."""
        if not v or not v.strip():
            raise ValueError("PartitionKey and RowKey cannot be empty")
        return v

    @classmethod
    def new(cls: Type[TEntity], partition_key: str, row_key: str) -> TEntity:
        """
        Create a blank instance of this record shape.

        Used when materialising records from store data, so key validation
        is skipped (the codecs call it with empty placeholders and copy the
        store's key afterwards). Subclasses may override it.

        Args:
            partition_key: Partition key
            row_key: Row key

        Returns:
            Instance with every other field at its default
        """
        return cls.model_construct(partition_key=partition_key, row_key=row_key)

    def has_keys(self) -> bool:
        """Check that both keys are populated."""
        return bool(self.partition_key) and bool(self.row_key)


def parse_etag_timestamp(etag: Optional[str]) -> Optional[datetime]:
    """
    Extract the timestamp embedded in a weak datetime ETag.

    Azure Table Storage ETags look like ``W/"datetime'2025-12-04T10%3A30%3A00.123456Z'"``.

    Args:
        etag: ETag string

    Returns:
        Parsed timestamp, or None if the ETag does not embed one
    """
    if not etag:
        return None

    match = _WEAK_ETAG_PATTERN.match(etag)
    if not match:
        return None

    ts_str = match.group("ts").replace("%3A", ":").replace("Z", "+00:00")
    # fromisoformat wants exactly 6 fractional digits on older interpreters
    ts_str = re.sub(r"\.(\d+)", lambda m: "." + m.group(1).ljust(6, "0")[:6], ts_str)
    try:
        return datetime.fromisoformat(ts_str)
    except ValueError:
        return None


class TableProviderOptions(BaseModel):
    """
    Provider selection.

    provider names a registered adapter (e.g. "Azure.TableStorage") and
    options carries its string settings (e.g. ConnectionString, ProjectId).
    """
    model_config = ConfigDict(frozen=True)

    provider: Optional[str] = None
    options: Optional[Dict[str, str]] = None


class TableSettings(BaseModel):
    """Settings shared by every provider adapter."""

    enable_logging: bool = Field(
        default=False,
        description="Emit diagnostic logs from the adapters and codecs"
    )
    page_size: int = Field(
        default=1000,
        ge=1,
        description="Results requested per page when enumerating a partition"
    )


def configure_settings(
    configure: Optional[Callable[[TableSettings], None]] = None,
    base: Optional[TableSettings] = None
) -> TableSettings:
    """
    Build shared settings, applying a caller callback on a best-effort basis.

    The callback mutates a copy of base (defaults when omitted). If it raises,
    its partial changes are discarded and the unmodified base is returned;
    nothing is raised to the caller. This can hide caller mistakes, so the
    failure is logged.

    Args:
        configure: Optional callback receiving the settings to adjust
        base: Settings the callback starts from

    Returns:
        Configured settings, or base if the callback failed
    """
    base = base or TableSettings()
    if configure is None:
        return base

    candidate = base.model_copy()
    try:
        configure(candidate)
        # Assignment is not validated, so re-validate the result
        return TableSettings.model_validate(candidate.model_dump())
    except Exception as e:
        logger.warning("Settings callback failed, using unmodified settings: %s", e)
        return base
