"""
Google Cloud Datastore adapter.

Implements the TableClient contract on top of google-cloud-datastore.
The SDK is synchronous, so every call runs in the default executor.
Every write, single or batch, is committed in one transaction.
"""

import asyncio
import functools
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Type

from google.api_core.exceptions import AlreadyExists, NotFound
from google.cloud import datastore

from ...client import EntityPager, T, TableClient, raise_if_cancelled
from ...models import TableEntity, TableSettings
from ...registry import Providers, table_provider
from .codec import GoogleEntityCodec

INSERT = "insert"
UPDATE = "update"
UPSERT = "upsert"
DELETE = "delete"


@table_provider(Providers.GOOGLE_DATASTORE)
class GoogleDatastoreAdapter(TableClient):
    """
    Google Cloud Datastore backed TableClient.

    The table name maps to the namespace, the partition key to the kind and
    the row key to the key name.

    Options:
        ProjectId: GCP project (required)
        DatabaseId: Named database, default database when omitted
        PageSize: Results per page when enumerating a partition
    """

    PROJECT_ID_KEY = "ProjectId"
    DATABASE_ID_KEY = "DatabaseId"

    def __init__(
        self,
        options: Mapping[str, str],
        settings: Optional[TableSettings] = None,
        client: Optional[Any] = None
    ):
        """
        Initialize adapter.

        Args:
            options: Provider option map
            settings: Shared settings
            client: Pre-built datastore.Client (mainly for tests)

        Raises:
            ConfigurationError: If ProjectId is missing
        """
        super().__init__(options, settings)
        project_id = self.require_option(options, self.PROJECT_ID_KEY)
        database_id = options.get(self.DATABASE_ID_KEY)

        if client is None:
            kwargs: Dict[str, Any] = {"project": project_id}
            if database_id:
                kwargs["database"] = database_id
            client = datastore.Client(**kwargs)

        self._client = client
        self._codec = GoogleEntityCodec(self.logger)

    async def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    def _key(self, table_name: str, partition_key: str, row_key: str) -> datastore.Key:
        return self._client.key(partition_key, row_key, namespace=table_name)

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

        native = await self._run(self._client.get, self._key(table_name, partition_key, row_key))
        if native is None:
            self.logger.debug(
                "Entity not found (table=%s, partition=%s, row=%s)", table_name, partition_key, row_key
            )
            return None

        return self._codec.deserialize(native, entity_type, projection)

    def _fetch_page(
        self,
        table_name: str,
        partition_key: str,
        cursor: Optional[Any]
    ) -> Tuple[List[datastore.Entity], Optional[Any]]:
        query = self._client.query(kind=partition_key, namespace=table_name)
        iterator = query.fetch(start_cursor=cursor, limit=self.page_size)

        page = next(iterator.pages, None)
        items = list(page) if page is not None else []
        if not items:
            return [], None
        return items, iterator.next_page_token

    def get_entities(
        self,
        table_name: str,
        partition_key: str,
        entity_type: Type[T] = TableEntity,
        projection: Optional[Iterable[str]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> EntityPager[T]:

        async def fetch_page(cursor: Optional[Any]) -> Tuple[List[T], Optional[Any]]:
            natives, next_cursor = await self._run(self._fetch_page, table_name, partition_key, cursor)
            self.logger.debug(
                "Fetched %d entities (table=%s, partition=%s)", len(natives), table_name, partition_key
            )
            items = [self._codec.deserialize(native, entity_type, projection) for native in natives]
            return items, next_cursor

        return EntityPager(fetch_page, cancel_event)

    # ========== Writes ==========

    def _to_native(self, table_name: str, entity: TableEntity) -> datastore.Entity:
        key = self._key(table_name, entity.partition_key, entity.row_key)
        return self._codec.to_datastore_entity(entity, key)

    @staticmethod
    def _merge(current: datastore.Entity, record: datastore.Entity) -> datastore.Entity:
        exclude = (set(current.exclude_from_indexes) - set(record.keys())) | set(record.exclude_from_indexes)
        merged = datastore.Entity(key=record.key, exclude_from_indexes=tuple(exclude))
        merged.update(current)
        merged.update(record)
        return merged

    def _commit(self, operation: str, records: List[datastore.Entity]) -> None:
        """
        Apply staged records in one transaction.

        Raises:
            AlreadyExists: Insert of an existing key
            NotFound: Update of a missing key
        """
        with self._client.transaction() as transaction:
            if operation == DELETE:
                for record in records:
                    transaction.delete(record.key)
                return

            found = self._client.get_multi([record.key for record in records], transaction=transaction)
            existing = {entity.key: entity for entity in found}

            for record in records:
                current = existing.get(record.key)

                if operation == INSERT:
                    if current is not None:
                        raise AlreadyExists(f"Entity already exists: {record.key.flat_path}")
                    transaction.put(record)
                    continue

                if current is None:
                    if operation == UPDATE:
                        raise NotFound(f"Entity not found: {record.key.flat_path}")
                    transaction.put(record)
                    continue

                transaction.put(self._merge(current, record))

    async def _write(
        self,
        operation: str,
        table_name: str,
        entities: Iterable[TableEntity],
        cancel_event: Optional[asyncio.Event]
    ) -> None:
        staged = self.stage_entities(entities, cancel_event, force_etag=operation != UPSERT)
        if not staged:
            return

        now = datetime.now(timezone.utc)
        for entity in staged:
            entity.timestamp = now

        records = [self._to_native(table_name, entity) for entity in staged]
        await self._run(self._commit, operation, records)
        self.logger.debug(
            "Committed %s of %d entities (table=%s)", operation, len(records), table_name
        )

    async def insert_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self.ensure_keys(entity)
        await self._write(INSERT, table_name, [entity], cancel_event)

    async def insert_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._write(INSERT, table_name, entities, cancel_event)

    async def update_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self.ensure_keys(entity)
        await self._write(UPDATE, table_name, [entity], cancel_event)

    async def update_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._write(UPDATE, table_name, entities, cancel_event)

    async def upsert_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self.ensure_keys(entity)
        await self._write(UPSERT, table_name, [entity], cancel_event)

    async def upsert_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._write(UPSERT, table_name, entities, cancel_event)

    async def delete_entity(
        self, table_name: str, entity: TableEntity, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        self.ensure_keys(entity)
        await self._write(DELETE, table_name, [entity], cancel_event)

    async def delete_entities(
        self, table_name: str, entities: Iterable[TableEntity], cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        await self._write(DELETE, table_name, entities, cancel_event)

    async def close(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            close()
