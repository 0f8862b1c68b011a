"""
Table Client Interface

Defines the contract every provider adapter implements, plus the lazy
paginated sequence returned by partition reads.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

from .exceptions import ConfigurationError, OperationCancelledError
from .logging_config import get_logger
from .models import WILDCARD_ETAG, TableEntity, TableSettings

T = TypeVar("T", bound=TableEntity)

# fetch_page(continuation_token) -> (items, next_continuation_token)
PageFetcher = Callable[[Optional[Any]], Awaitable[Tuple[List[T], Optional[Any]]]]


def raise_if_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    """
    Raise OperationCancelledError if cancellation has been requested.

    Args:
        cancel_event: Caller-supplied cancellation signal, may be None
    """
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError()


class EntityPager(Generic[T]):
    """
    Lazy, restartable sequence of entities read page by page.

    Nothing is fetched until iteration starts; every ``async for`` runs the
    query again from the first page. Pages are fetched strictly one after
    another. Cancellation is checked before each page fetch and before each
    yielded entity.

    Example:
        ```python
        async for customer in client.get_entities("customers", "P1", Customer):
            print(customer.name)
        ```
    """

    def __init__(self, fetch_page: PageFetcher, cancel_event: Optional[asyncio.Event] = None):
        self._fetch_page = fetch_page
        self._cancel_event = cancel_event

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        continuation_token = None
        while True:
            raise_if_cancelled(self._cancel_event)
            items, continuation_token = await self._fetch_page(continuation_token)

            for item in items:
                raise_if_cancelled(self._cancel_event)
                yield item

            if continuation_token is None:
                break

        raise_if_cancelled(self._cancel_event)

    async def to_list(self) -> List[T]:
        """Collect every entity into a list."""
        return [item async for item in self]


class TableClient(ABC):
    """
    Abstract base class for table provider adapters.

    Every adapter exposes the same operations regardless of how the backing
    store batches, transacts or paginates.

    **Concurrency tokens**:
    insert, update and delete force the wildcard ETag ("*", last write wins)
    unless the caller already set one. upsert leaves the ETag untouched.

    **Side effects**:
    every successful write updates the entity's timestamp in place, and its
    etag when the store returns one.

    **Cancellation**:
    operations take an optional asyncio.Event. Batches check it before
    staging each entity and send nothing once it is set; enumeration checks
    it at page and item boundaries. Observing it raises
    OperationCancelledError.

    **Error Handling**:
    point reads return None for missing entities; every other store fault
    propagates unchanged, without retries.
    """

    # Static provider tag, set by @table_provider
    provider_name: str = ""

    def __init__(self, options: Mapping[str, str], settings: Optional[TableSettings] = None):
        """
        Initialize adapter with provider options.

        Args:
            options: Provider option map
            settings: Shared settings (logging, page size)

        Raises:
            ConfigurationError: If options is None
        """
        if options is None:
            raise ConfigurationError("options can't be null.")

        self.settings = settings or TableSettings()
        self.page_size = self._read_page_size(options)
        self._logger = get_logger(type(self).__module__, enabled=self.settings.enable_logging)

    @staticmethod
    def require_option(options: Mapping[str, str], key: str) -> str:
        """
        Read a required option.

        Raises:
            ConfigurationError: If the key is missing or empty
        """
        value = options.get(key)
        if not value:
            raise ConfigurationError(f"{key} is required.", option=key)
        return value

    def _read_page_size(self, options: Mapping[str, str]) -> int:
        raw = options.get("PageSize")
        if raw is None:
            return self.settings.page_size
        try:
            page_size = int(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"PageSize must be an integer, got {raw!r}.", option="PageSize") from e
        if page_size < 1:
            raise ConfigurationError("PageSize must be at least 1.", option="PageSize")
        return page_size

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    # ========== Reads ==========

    @abstractmethod
    async def get_entity(
        self,
        table_name: str,
        partition_key: str,
        row_key: str,
        entity_type: Type[T] = TableEntity,
        projection: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Optional[T]:
        """
        Get an entity by partition and row keys.

        Args:
            table_name: Name of the table
            partition_key: Partition key
            row_key: Row key
            entity_type: Record class to materialise
            projection: Optional field names to read
            cancel_event: Optional cancellation signal

        Returns:
            Entity, or None if no entity exists at that key
        """
        pass

    @abstractmethod
    def get_entities(
        self,
        table_name: str,
        partition_key: str,
        entity_type: Type[T] = TableEntity,
        projection: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> EntityPager[T]:
        """
        Read every entity of a partition.

        Args:
            table_name: Name of the table
            partition_key: Partition key
            entity_type: Record class to materialise
            projection: Optional field names to read
            cancel_event: Optional cancellation signal

        Returns:
            Lazy paginated sequence of entities
        """
        pass

    # ========== Writes ==========

    @abstractmethod
    async def insert_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Insert a new entity."""
        pass

    @abstractmethod
    async def insert_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Insert entities as one batch."""
        pass

    @abstractmethod
    async def update_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Merge entity properties into the stored entity."""
        pass

    @abstractmethod
    async def update_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Merge entities as one batch."""
        pass

    @abstractmethod
    async def upsert_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Insert the entity or merge it into the stored one."""
        pass

    @abstractmethod
    async def upsert_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Upsert entities as one batch."""
        pass

    @abstractmethod
    async def delete_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Delete an entity."""
        pass

    @abstractmethod
    async def delete_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Delete entities as one batch."""
        pass

    async def close(self) -> None:
        """Release SDK resources."""
        pass

    async def __aenter__(self) -> "TableClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ========== Helpers ==========

    @staticmethod
    def ensure_keys(entity: TableEntity) -> None:
        """
        Reject entities without both keys.

        Raises:
            ValueError: If PartitionKey or RowKey is empty
        """
        if entity is None:
            raise ValueError("entity can't be null.")
        if not entity.has_keys():
            raise ValueError("PartitionKey and RowKey cannot be empty")

    @staticmethod
    def apply_default_etag(entity: TableEntity) -> None:
        """Force the wildcard ETag unless the caller supplied one."""
        if entity.etag is None:
            entity.etag = WILDCARD_ETAG

    def stage_entities(
        self,
        entities: Iterable[TableEntity],
        cancel_event: Optional[asyncio.Event],
        force_etag: bool
    ) -> Sequence[TableEntity]:
        """
        Materialise a batch in caller order.

        Cancellation is checked before each entity, so a cancelled batch is
        abandoned before anything reaches the store. The ETag default is
        applied only once the whole batch is staged, leaving the caller's
        entities untouched when staging fails.

        Args:
            entities: Entities supplied by the caller
            cancel_event: Optional cancellation signal
            force_etag: Apply the wildcard ETag default

        Returns:
            Entities in submission order
        """
        if entities is None:
            raise ValueError("entities can't be null.")

        staged = []
        for entity in entities:
            raise_if_cancelled(cancel_event)
            self.ensure_keys(entity)
            staged.append(entity)

        if force_etag:
            for entity in staged:
                self.apply_default_etag(entity)
        return staged
