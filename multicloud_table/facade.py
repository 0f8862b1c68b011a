"""
Provider-agnostic table client.

MulticloudTableClient is what applications hold on to: it selects the
adapter once at construction and forwards every call to it.
"""

import asyncio
import logging
from typing import Iterable, Optional, Type

from .client import EntityPager, T, TableClient
from .config import ConfigManager, MulticloudTableConfig
from .models import TableEntity, TableProviderOptions, TableSettings
from .registry import ConfigureSettings, TableClientFactory

logger = logging.getLogger(__name__)


class MulticloudTableClient:
    """
    Table client bound to the provider named in its options.

    Example:
        ```python
        options = TableProviderOptions(
            provider="Azure.TableStorage",
            options={"ConnectionString": connection_string},
        )
        async with MulticloudTableClient(options) as client:
            await client.insert_entity("customers", customer)
            found = await client.get_entity("customers", "P1", "R1", Customer)
        ```
    """

    def __init__(
        self,
        options: Optional[TableProviderOptions],
        settings: Optional[TableSettings] = None,
        factory: Optional[TableClientFactory] = None,
        configure: Optional[ConfigureSettings] = None
    ):
        """
        Initialize client.

        Args:
            options: Provider name and option map
            settings: Shared settings, used when no factory is given
            factory: Factory override
            configure: Best-effort settings callback, used when no factory
                       is given

        Raises:
            ConfigurationError: If the provider cannot be configured
        """
        self._factory = factory or TableClientFactory(settings, configure=configure)
        self._client: TableClient = self._factory.create(options)
        self._provider = options.provider

    @classmethod
    def from_config(cls, config: MulticloudTableConfig) -> "MulticloudTableClient":
        """Build a client from loaded configuration."""
        return cls(config.table, settings=config.settings)

    @classmethod
    def from_file(cls, config_file: Optional[str] = None) -> "MulticloudTableClient":
        """
        Build a client from a configuration file plus environment overrides.

        Args:
            config_file: YAML or JSON file, environment only when omitted
        """
        return cls.from_config(ConfigManager().load(config_file=config_file))

    @property
    def provider(self) -> str:
        """Name of the provider serving this client."""
        return self._provider

    @property
    def adapter(self) -> TableClient:
        return self._client

    async def get_entity(
        self,
        table_name: str,
        partition_key: str,
        row_key: str,
        entity_type: Type[T] = TableEntity,
        projection: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Optional[T]:
        return await self._client.get_entity(
            table_name, partition_key, row_key, entity_type, projection, cancel_event
        )

    def get_entities(
        self,
        table_name: str,
        partition_key: str,
        entity_type: Type[T] = TableEntity,
        projection: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> EntityPager[T]:
        return self._client.get_entities(table_name, partition_key, entity_type, projection, cancel_event)

    async def insert_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._client.insert_entity(table_name, entity, cancel_event)

    async def insert_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._client.insert_entities(table_name, entities, cancel_event)

    async def update_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._client.update_entity(table_name, entity, cancel_event)

    async def update_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._client.update_entities(table_name, entities, cancel_event)

    async def upsert_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._client.upsert_entity(table_name, entity, cancel_event)

    async def upsert_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._client.upsert_entities(table_name, entities, cancel_event)

    async def delete_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._client.delete_entity(table_name, entity, cancel_event)

    async def delete_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._client.delete_entities(table_name, entities, cancel_event)

    async def close(self) -> None:
        """Release the adapter's SDK resources."""
        await self._client.close()
        logger.debug("Table client closed (provider=%s)", self._provider)

    async def __aenter__(self) -> "MulticloudTableClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
