"""
Shared fixtures: in-memory stand-ins for the Azure Tables and Datastore
SDK clients, plus the record classes used across the suite.
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
from azure.core import MatchConditions
from azure.core.exceptions import ResourceExistsError, ResourceModifiedError, ResourceNotFoundError
from google.cloud import datastore
from pydantic import Field

from multicloud_table.models import TableEntity, TableSettings
from multicloud_table.providers.azure.adapter import AzureTableStorageAdapter
from multicloud_table.providers.google.adapter import GoogleDatastoreAdapter
from multicloud_table.types import Int64

CONNECTION_STRING = (
    "DefaultEndpointsProtocol=https;AccountName=devaccount;"
    "AccountKey=c2VjcmV0;EndpointSuffix=core.windows.net"
)

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


class Customer(TableEntity):
    """Record used by most tests."""
    name: Optional[str] = Field(default=None, alias="Name")
    age: int = Field(default=0, alias="Age")


class Account(TableEntity):
    """Record covering every supported property type."""
    name: str = ""
    balance: float = 0.0
    visits: int = 0
    total: Int64 = 0
    active: bool = False
    avatar: bytes = b""
    joined: Optional[datetime] = None
    reference: Optional[Any] = None


# ========== Azure Tables ==========


class FakeAzureEntity(dict):
    """Entity dict carrying service metadata, like azure.data.tables.TableEntity."""

    def __init__(self, properties: Dict[str, Any], metadata: Dict[str, Any]):
        super().__init__(properties)
        self.metadata = metadata


class FakePage:
    def __init__(self, items: List[Any]):
        self._items = list(items)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self._items:
            yield item


class FakePageIterator:
    """Mimics the AsyncItemPaged.by_page() iterator: one page per __anext__."""

    def __init__(self, items: List[Any], page_size: int, continuation_token: Optional[int]):
        self._items = items
        self._page_size = page_size
        self._offset = continuation_token or 0
        self._done = False
        self.continuation_token = continuation_token

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._done:
            raise StopAsyncIteration

        chunk = self._items[self._offset:self._offset + self._page_size]
        next_offset = self._offset + self._page_size
        self.continuation_token = next_offset if next_offset < len(self._items) else None
        self._done = self.continuation_token is None
        self._offset = next_offset
        return FakePage(chunk)


class FakeQueryPager:
    def __init__(self, items: List[Any], page_size: int, table: "FakeTableClient"):
        self._items = items
        self._page_size = page_size
        self._table = table

    def by_page(self, continuation_token: Optional[int] = None) -> FakePageIterator:
        self._table.page_tokens.append(continuation_token)
        return FakePageIterator(self._items, self._page_size, continuation_token)


class FakeTableClient:
    """In-memory table implementing the subset of TableClient the adapter uses."""

    def __init__(self, name: str):
        self.name = name
        self.rows: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.page_tokens: List[Optional[int]] = []
        self._version = 0

    def _next_metadata(self) -> Dict[str, Any]:
        self._version += 1
        moment = BASE_TIME + timedelta(seconds=self._version)
        stamp = moment.strftime("%Y-%m-%dT%H%%3A%M%%3A%S") + ".1234567Z"
        return {
            "etag": f"W/\"datetime'{stamp}'\"",
            "date": moment,
            "version": "2019-02-02",
        }

    @staticmethod
    def _key(entity: Dict[str, Any]) -> Tuple[str, str]:
        return entity["PartitionKey"], entity["RowKey"]

    def _store(self, key: Tuple[str, str], properties: Dict[str, Any]) -> Dict[str, Any]:
        metadata = self._next_metadata()
        self.rows[key] = {
            "properties": properties,
            "etag": metadata["etag"],
            "timestamp": metadata["date"],
        }
        return metadata

    def _check_etag(self, key, etag, match_condition) -> None:
        if match_condition == MatchConditions.IfNotModified and self.rows[key]["etag"] != etag:
            raise ResourceModifiedError("The update condition specified in the request was not satisfied.")

    def _create(self, entity):
        key = self._key(entity)
        if key in self.rows:
            raise ResourceExistsError("The specified entity already exists.")
        return self._store(key, dict(entity))

    def _update(self, entity, etag=None, match_condition=None, mode=None):
        key = self._key(entity)
        if key not in self.rows:
            raise ResourceNotFoundError("The specified resource does not exist.")
        self._check_etag(key, etag, match_condition)
        merged = dict(self.rows[key]["properties"])
        merged.update(entity)
        return self._store(key, merged)

    def _upsert(self, entity, mode=None):
        key = self._key(entity)
        merged = dict(self.rows[key]["properties"]) if key in self.rows else {}
        merged.update(entity)
        return self._store(key, merged)

    def _delete(self, partition_key, row_key, etag=None, match_condition=None):
        key = (partition_key, row_key)
        if key in self.rows:
            self._check_etag(key, etag, match_condition)
            del self.rows[key]
        return None

    def _materialise(self, row: Dict[str, Any], select: Optional[List[str]]) -> FakeAzureEntity:
        properties = row["properties"]
        if select is not None:
            properties = {name: value for name, value in properties.items() if name in select}
        return FakeAzureEntity(
            copy.deepcopy(properties),
            {"etag": row["etag"], "timestamp": row["timestamp"]},
        )

    async def create_entity(self, entity, **kwargs):
        self.calls.append(("create_entity", {"entity": entity, **kwargs}))
        return self._create(entity)

    async def update_entity(self, entity, mode=None, **kwargs):
        self.calls.append(("update_entity", {"entity": entity, "mode": mode, **kwargs}))
        return self._update(entity, mode=mode, **kwargs)

    async def upsert_entity(self, entity, mode=None, **kwargs):
        self.calls.append(("upsert_entity", {"entity": entity, "mode": mode, **kwargs}))
        return self._upsert(entity, mode=mode)

    async def delete_entity(self, partition_key, row_key, **kwargs):
        self.calls.append(("delete_entity", {"partition_key": partition_key, "row_key": row_key, **kwargs}))
        return self._delete(partition_key, row_key, **kwargs)

    async def submit_transaction(self, operations):
        operations = list(operations)
        self.calls.append(("submit_transaction", {"operations": operations}))

        snapshot = copy.deepcopy(self.rows)
        results = []
        try:
            for operation in operations:
                kind, entity = operation[0], operation[1]
                kwargs = operation[2] if len(operation) > 2 else {}
                if kind == "create":
                    results.append(self._create(entity))
                elif kind == "update":
                    results.append(self._update(entity, **kwargs))
                elif kind == "upsert":
                    results.append(self._upsert(entity, **kwargs))
                elif kind == "delete":
                    self._delete(entity["PartitionKey"], entity["RowKey"], **kwargs)
                    results.append({})
                else:
                    raise ValueError(f"Unknown transaction operation: {kind}")
        except Exception:
            self.rows = snapshot
            raise
        return results

    async def get_entity(self, partition_key, row_key, select=None, **kwargs):
        self.calls.append(("get_entity", {"partition_key": partition_key, "row_key": row_key, "select": select}))
        row = self.rows.get((partition_key, row_key))
        if row is None:
            raise ResourceNotFoundError("The specified resource does not exist.")
        return self._materialise(row, select)

    def query_entities(self, query_filter, parameters=None, select=None, results_per_page=None, **kwargs):
        self.calls.append(("query_entities", {
            "query_filter": query_filter,
            "parameters": parameters,
            "select": select,
            "results_per_page": results_per_page,
        }))
        partition_key = (parameters or {}).get("pk")
        items = [
            self._materialise(row, select)
            for key, row in sorted(self.rows.items())
            if key[0] == partition_key
        ]
        return FakeQueryPager(items, results_per_page or 1000, self)

    def seed(self, partition_key: str, row_key: str, **properties: Any) -> None:
        """Store an entity directly, bypassing the adapter."""
        self._store(
            (partition_key, row_key),
            {"PartitionKey": partition_key, "RowKey": row_key, **properties},
        )


class FakeTableService:
    """Stand-in for azure.data.tables.aio.TableServiceClient."""

    def __init__(self):
        self.tables: Dict[str, FakeTableClient] = {}
        self.closed = False

    def get_table_client(self, table_name: str) -> FakeTableClient:
        if table_name not in self.tables:
            self.tables[table_name] = FakeTableClient(table_name)
        return self.tables[table_name]

    async def close(self) -> None:
        self.closed = True


# ========== Google Datastore ==========


def copy_datastore_entity(entity: datastore.Entity) -> datastore.Entity:
    duplicate = datastore.Entity(key=entity.key, exclude_from_indexes=tuple(entity.exclude_from_indexes))
    duplicate.update(copy.deepcopy(dict(entity)))
    return duplicate


class FakeTransaction:
    """Buffers mutations and applies them on a clean exit."""

    def __init__(self, client: "FakeDatastoreClient"):
        self._client = client
        self._mutations: List[Tuple[str, Any]] = []

    def __enter__(self):
        self._client.transactions_begun += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            for kind, value in self._mutations:
                if kind == "put":
                    self._client.store[value.key] = copy_datastore_entity(value)
                else:
                    self._client.store.pop(value, None)
            self._client.commits += 1
        else:
            self._client.rollbacks += 1
        return False

    def put(self, entity: datastore.Entity) -> None:
        self._mutations.append(("put", entity))

    def delete(self, key: datastore.Key) -> None:
        self._mutations.append(("delete", key))


class FakePagedIterator:
    def __init__(self, items: List[datastore.Entity], start: int, limit: int):
        self._chunk = items[start:start + limit]
        # Like Datastore, a full page always reports a cursor, even at the end
        self.next_page_token = str(start + limit) if len(self._chunk) == limit else None
        self.pages = iter([self._chunk])


class FakeQuery:
    def __init__(self, client: "FakeDatastoreClient", kind: str, namespace: Optional[str]):
        self._client = client
        self.kind = kind
        self.namespace = namespace

    def fetch(self, start_cursor=None, limit=None):
        self._client.fetches.append(start_cursor)
        items = [
            copy_datastore_entity(entity)
            for key, entity in sorted(self._client.store.items(), key=lambda item: item[0].flat_path)
            if key.kind == self.kind and key.namespace == self.namespace
        ]
        start = int(start_cursor) if start_cursor else 0
        return FakePagedIterator(items, start, limit or len(items) or 1)


class FakeDatastoreClient:
    """Stand-in for google.cloud.datastore.Client."""

    def __init__(self, project: str = "test-project"):
        self.project = project
        self.store: Dict[datastore.Key, datastore.Entity] = {}
        self.transactions_begun = 0
        self.commits = 0
        self.rollbacks = 0
        self.fetches: List[Optional[str]] = []
        self.closed = False

    def key(self, *path, namespace=None):
        return datastore.Key(*path, project=self.project, namespace=namespace)

    def get(self, key):
        entity = self.store.get(key)
        return copy_datastore_entity(entity) if entity is not None else None

    def get_multi(self, keys, transaction=None):
        return [copy_datastore_entity(self.store[key]) for key in keys if key in self.store]

    def transaction(self):
        return FakeTransaction(self)

    def query(self, kind=None, namespace=None):
        return FakeQuery(self, kind, namespace)

    def close(self):
        self.closed = True


# ========== Fixtures ==========


@pytest.fixture
def azure_service():
    """Empty fake table service."""
    return FakeTableService()


@pytest.fixture
def azure_adapter(azure_service):
    """Azure adapter wired to the fake service."""
    return AzureTableStorageAdapter(
        {"ConnectionString": CONNECTION_STRING, "PageSize": "2"},
        TableSettings(enable_logging=True),
        service_client=azure_service,
    )


@pytest.fixture
def datastore_client():
    """Empty fake Datastore client."""
    return FakeDatastoreClient()


@pytest.fixture
def google_adapter(datastore_client):
    """Google adapter wired to the fake Datastore client."""
    return GoogleDatastoreAdapter(
        {"ProjectId": "test-project", "PageSize": "2"},
        TableSettings(enable_logging=True),
        client=datastore_client,
    )
