"""
Azure Table Storage adapter.

Implements the TableClient contract on top of the azure-data-tables async
client. Single-entity writes are one service call each; batches are sent
as one entity group transaction.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type

from azure.core import MatchConditions
from azure.core.exceptions import ResourceNotFoundError
from azure.data.tables import UpdateMode
from azure.data.tables.aio import TableServiceClient

from ...client import EntityPager, T, TableClient, raise_if_cancelled
from ...codec import projection_wire_names
from ...exceptions import ConfigurationError
from ...models import WILDCARD_ETAG, TableEntity, TableSettings
from ...registry import Providers, table_provider
from .codec import PARTITION_KEY, ROW_KEY, TIMESTAMP, AzureEntityCodec, timestamp_from_metadata


@table_provider(Providers.AZURE_TABLE_STORAGE)
class AzureTableStorageAdapter(TableClient):
    """
    Azure Table Storage backed TableClient.

    Options:
        ConnectionString: Storage account connection string (required)
        PageSize: Results per page when enumerating a partition
    """

    CONNECTION_STRING_KEY = "ConnectionString"

    def __init__(
        self,
        options: Mapping[str, str],
        settings: Optional[TableSettings] = None,
        service_client: Optional[Any] = None
    ):
        """
        Initialize adapter.

        Args:
            options: Provider option map
            settings: Shared settings
            service_client: Pre-built TableServiceClient (mainly for tests)

        Raises:
            ConfigurationError: If ConnectionString is missing or malformed
        """
        super().__init__(options, settings)
        connection_string = self.require_option(options, self.CONNECTION_STRING_KEY)

        if service_client is None:
            try:
                service_client = TableServiceClient.from_connection_string(connection_string)
            except ValueError as e:
                raise ConfigurationError(
                    f"{self.CONNECTION_STRING_KEY} is invalid: {e}",
                    option=self.CONNECTION_STRING_KEY
                ) from e

        self._service = service_client
        self._codec = AzureEntityCodec(self.logger)

    def _table(self, table_name: str) -> Any:
        return self._service.get_table_client(table_name)

    def _select(self, entity_type: Type[TableEntity], projection: Optional[Iterable[str]]) -> Optional[List[str]]:
        columns = projection_wire_names(entity_type, projection)
        if columns is None:
            return None
        # Keys and Timestamp are needed to rebuild the record
        return [PARTITION_KEY, ROW_KEY, TIMESTAMP] + columns

    @staticmethod
    def _match_condition(entity: TableEntity) -> Dict[str, Any]:
        if entity.etag is None or entity.etag == WILDCARD_ETAG:
            return {"etag": WILDCARD_ETAG, "match_condition": MatchConditions.Unconditionally}
        return {"etag": entity.etag, "match_condition": MatchConditions.IfNotModified}

    @staticmethod
    def _apply_metadata(entity: TableEntity, metadata: Optional[Mapping[str, Any]]) -> None:
        etag = (metadata or {}).get("etag")
        if etag:
            entity.etag = etag
        entity.timestamp = timestamp_from_metadata(metadata)

    # ========== Reads ==========

    async def get_entity(
        self,
        table_name: str,
        partition_key: str,
        row_key: str,
        entity_type: Type[T] = TableEntity,
        projection: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Optional[T]:
        raise_if_cancelled(cancel_event)
        table = self._table(table_name)

        try:
            raw = await table.get_entity(
                partition_key,
                row_key,
                select=self._select(entity_type, projection)
            )
        except ResourceNotFoundError:
            self.logger.debug(
                "Entity not found (table=%s, partition=%s, row=%s)", table_name, partition_key, row_key
            )
            return None

        entity = self._codec.deserialize(raw, entity_type, projection)
        if entity is not None and not entity.has_keys():
            entity.partition_key = partition_key
            entity.row_key = row_key
        return entity

    def get_entities(
        self,
        table_name: str,
        partition_key: str,
        entity_type: Type[T] = TableEntity,
        projection: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> EntityPager[T]:
        table = self._table(table_name)
        select = self._select(entity_type, projection)

        async def fetch_page(continuation_token: Optional[Any]) -> Tuple[List[T], Optional[Any]]:
            pager = table.query_entities(
                "PartitionKey eq @pk",
                parameters={"pk": partition_key},
                select=select,
                results_per_page=self.page_size
            )
            pages = pager.by_page(continuation_token=continuation_token)
            try:
                page = await pages.__anext__()
            except StopAsyncIteration:
                return [], None

            items = [self._codec.deserialize(raw, entity_type, projection) async for raw in page]
            self.logger.debug(
                "Fetched %d entities (table=%s, partition=%s)", len(items), table_name, partition_key
            )
            return items, pages.continuation_token

        return EntityPager(fetch_page, cancel_event)

    # ========== Single-entity writes ==========

    async def insert_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self.ensure_keys(entity)
        raise_if_cancelled(cancel_event)
        self.apply_default_etag(entity)

        metadata = await self._table(table_name).create_entity(
            entity=self._codec.to_table_entity(entity)
        )
        self._apply_metadata(entity, metadata)

    async def update_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self.ensure_keys(entity)
        raise_if_cancelled(cancel_event)
        self.apply_default_etag(entity)

        metadata = await self._table(table_name).update_entity(
            entity=self._codec.to_table_entity(entity),
            mode=UpdateMode.MERGE,
            **self._match_condition(entity)
        )
        self._apply_metadata(entity, metadata)

    async def upsert_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self.ensure_keys(entity)
        raise_if_cancelled(cancel_event)

        metadata = await self._table(table_name).upsert_entity(
            entity=self._codec.to_table_entity(entity),
            mode=UpdateMode.MERGE
        )
        self._apply_metadata(entity, metadata)

    async def delete_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self.ensure_keys(entity)
        raise_if_cancelled(cancel_event)
        self.apply_default_etag(entity)

        await self._table(table_name).delete_entity(
            partition_key=entity.partition_key,
            row_key=entity.row_key,
            **self._match_condition(entity)
        )
        self._apply_metadata(entity, None)

    # ========== Batch writes ==========

    async def _submit(
        self,
        table_name: str,
        staged: List[TableEntity],
        operations: List[tuple]
    ) -> None:
        if not operations:
            return

        results = await self._table(table_name).submit_transaction(operations)
        self.logger.debug("Submitted transaction of %d operations (table=%s)", len(operations), table_name)

        results = list(results or [])
        for index, entity in enumerate(staged):
            self._apply_metadata(entity, results[index] if index < len(results) else None)

    async def insert_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        staged = self.stage_entities(entities, cancel_event, force_etag=True)
        operations = [("create", self._codec.to_table_entity(entity)) for entity in staged]
        await self._submit(table_name, staged, operations)

    async def update_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        staged = self.stage_entities(entities, cancel_event, force_etag=True)
        operations = [
            (
                "update",
                self._codec.to_table_entity(entity),
                {"mode": UpdateMode.MERGE, **self._match_condition(entity)},
            )
            for entity in staged
        ]
        await self._submit(table_name, staged, operations)

    async def upsert_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        staged = self.stage_entities(entities, cancel_event, force_etag=False)
        operations = [
            ("upsert", self._codec.to_table_entity(entity), {"mode": UpdateMode.MERGE})
            for entity in staged
        ]
        await self._submit(table_name, staged, operations)

    async def delete_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        staged = self.stage_entities(entities, cancel_event, force_etag=True)
        operations = [
            ("delete", self._codec.key_entity(entity), self._match_condition(entity))
            for entity in staged
        ]
        await self._submit(table_name, staged, operations)

    async def close(self) -> None:
        await self._service.close()
