"""
Tests for the Azure Table Storage adapter against an in-memory service.
"""

import asyncio
from datetime import datetime, timezone

import pytest
from azure.core import MatchConditions
from azure.core.exceptions import ResourceExistsError, ResourceModifiedError, ResourceNotFoundError
from azure.data.tables import UpdateMode

from multicloud_table.exceptions import ConfigurationError, OperationCancelledError
from multicloud_table.providers.azure.adapter import AzureTableStorageAdapter
from multicloud_table.registry import Providers
from conftest import CONNECTION_STRING, Customer


def first_etag_time(seconds: int) -> datetime:
    return datetime(2026, 1, 1, 0, 0, seconds, 123456, tzinfo=timezone.utc)


class TestAzureAdapterConstruction:
    """Test option validation."""

    def test_provider_name(self):
        assert AzureTableStorageAdapter.provider_name == Providers.AZURE_TABLE_STORAGE

    def test_missing_connection_string(self):
        """Test construction fails naming the missing key."""
        with pytest.raises(ConfigurationError) as exc_info:
            AzureTableStorageAdapter({})

        assert str(exc_info.value) == "ConnectionString is required."
        assert exc_info.value.option == "ConnectionString"

    def test_malformed_connection_string(self):
        with pytest.raises(ConfigurationError) as exc_info:
            AzureTableStorageAdapter({"ConnectionString": "not a connection string"})

        assert exc_info.value.option == "ConnectionString"

    def test_page_size_option(self, azure_adapter):
        assert azure_adapter.page_size == 2

    @pytest.mark.asyncio
    async def test_close(self, azure_service):
        async with AzureTableStorageAdapter({"ConnectionString": CONNECTION_STRING}, service_client=azure_service):
            pass

        assert azure_service.closed


class TestAzureReads:
    """Test point reads and partition enumeration."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, azure_adapter):
        """Test the not-found contract."""
        assert await azure_adapter.get_entity("customers", "P1", "missing", Customer) is None

    @pytest.mark.asyncio
    async def test_insert_then_get(self, azure_adapter):
        """Test P1/R1 with Name "a" reads back with keys and name."""
        await azure_adapter.insert_entity("customers", Customer(PartitionKey="P1", RowKey="R1", Name="a"))

        entity = await azure_adapter.get_entity("customers", "P1", "R1", Customer)

        assert entity.partition_key == "P1"
        assert entity.row_key == "R1"
        assert entity.name == "a"
        assert entity.etag.startswith("W/\"datetime'")

    @pytest.mark.asyncio
    async def test_get_with_projection(self, azure_adapter, azure_service):
        """Test the select list and unprojected defaults."""
        azure_service.get_table_client("customers").seed("P1", "R1", Name="a", Age=30)

        entity = await azure_adapter.get_entity("customers", "P1", "R1", Customer, ["Name"])

        assert entity.name == "a"
        assert entity.age == 0
        _, call = azure_service.tables["customers"].calls[-1]
        assert call["select"] == ["PartitionKey", "RowKey", "Timestamp", "Name"]

    @pytest.mark.asyncio
    async def test_get_entities_pages(self, azure_adapter, azure_service):
        """Test enumeration follows continuation tokens page by page."""
        table = azure_service.get_table_client("customers")
        for row in ("R1", "R2", "R3"):
            table.seed("P1", row, Name=row)
        table.seed("P2", "R9", Name="other")

        entities = await azure_adapter.get_entities("customers", "P1", Customer).to_list()

        assert [entity.row_key for entity in entities] == ["R1", "R2", "R3"]
        assert table.page_tokens == [None, 2]
        _, call = table.calls[0]
        assert call["query_filter"] == "PartitionKey eq @pk"
        assert call["parameters"] == {"pk": "P1"}
        assert call["results_per_page"] == 2

    @pytest.mark.asyncio
    async def test_get_entities_projection(self, azure_adapter, azure_service):
        """Test partition P1 with projection ["Name"] leaves Age at its default."""
        table = azure_service.get_table_client("customers")
        table.seed("P1", "R1", Name="a", Age=30)
        table.seed("P1", "R2", Name="b", Age=40)

        entities = await azure_adapter.get_entities("customers", "P1", Customer, ["Name"]).to_list()

        assert [(entity.name, entity.age) for entity in entities] == [("a", 0), ("b", 0)]

    @pytest.mark.asyncio
    async def test_get_entities_lazy(self, azure_adapter, azure_service):
        azure_adapter.get_entities("customers", "P1", Customer)

        assert azure_service.get_table_client("customers").calls == []

    @pytest.mark.asyncio
    async def test_get_entities_cancelled_mid_enumeration(self, azure_adapter, azure_service):
        """Test cancellation between items stops enumeration."""
        table = azure_service.get_table_client("customers")
        for row in ("R1", "R2", "R3"):
            table.seed("P1", row)
        event = asyncio.Event()
        seen = []

        with pytest.raises(OperationCancelledError):
            async for entity in azure_adapter.get_entities("customers", "P1", Customer, cancel_event=event):
                seen.append(entity.row_key)
                event.set()

        assert seen == ["R1"]
        assert table.page_tokens == [None]


class TestAzureSingleWrites:
    """Test single entity operations."""

    @pytest.mark.asyncio
    async def test_insert_applies_default_etag(self, azure_adapter, azure_service):
        """Test insert defaults the ETag and stamps the timestamp."""
        entity = Customer(PartitionKey="P1", RowKey="R1", Name="a")

        await azure_adapter.insert_entity("customers", entity)

        name, call = azure_service.tables["customers"].calls[0]
        assert name == "create_entity"
        assert call["entity"] == {"PartitionKey": "P1", "RowKey": "R1", "Name": "a", "Age": 0}
        assert entity.timestamp == first_etag_time(1)
        assert entity.etag.startswith("W/\"datetime'")

    @pytest.mark.asyncio
    async def test_insert_existing_raises(self, azure_adapter, azure_service):
        """Test provider faults propagate unchanged."""
        azure_service.get_table_client("customers").seed("P1", "R1")

        with pytest.raises(ResourceExistsError):
            await azure_adapter.insert_entity("customers", Customer(PartitionKey="P1", RowKey="R1"))

    @pytest.mark.asyncio
    async def test_insert_without_keys(self, azure_adapter, azure_service):
        with pytest.raises(ValueError):
            await azure_adapter.insert_entity("customers", Customer.new("", "R1"))

        assert azure_service.tables == {}

    @pytest.mark.asyncio
    async def test_update_is_unconditional_merge_by_default(self, azure_adapter, azure_service):
        table = azure_service.get_table_client("customers")
        table.seed("P1", "R1", Name="a", Age=30)
        entity = Customer(PartitionKey="P1", RowKey="R1", Name="b")

        await azure_adapter.update_entity("customers", entity)

        _, call = table.calls[-1]
        assert call["mode"] == UpdateMode.MERGE
        assert call["etag"] == "*"
        assert call["match_condition"] == MatchConditions.Unconditionally
        assert table.rows[("P1", "R1")]["properties"]["Name"] == "b"

    @pytest.mark.asyncio
    async def test_update_with_stale_etag(self, azure_adapter, azure_service):
        """Test a caller supplied ETag is enforced by the service."""
        azure_service.get_table_client("customers").seed("P1", "R1")
        entity = Customer(PartitionKey="P1", RowKey="R1", ETag="W/\"stale\"")

        with pytest.raises(ResourceModifiedError):
            await azure_adapter.update_entity("customers", entity)

    @pytest.mark.asyncio
    async def test_update_with_current_etag(self, azure_adapter):
        await azure_adapter.insert_entity("customers", Customer(PartitionKey="P1", RowKey="R1", Name="a"))
        entity = await azure_adapter.get_entity("customers", "P1", "R1", Customer)
        entity.name = "b"

        await azure_adapter.update_entity("customers", entity)

        assert (await azure_adapter.get_entity("customers", "P1", "R1", Customer)).name == "b"

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, azure_adapter):
        with pytest.raises(ResourceNotFoundError):
            await azure_adapter.update_entity("customers", Customer(PartitionKey="P1", RowKey="R1"))

    @pytest.mark.asyncio
    async def test_upsert_leaves_etag_untouched(self, azure_adapter, azure_service):
        entity = Customer(PartitionKey="P1", RowKey="R1", Name="a")

        await azure_adapter.upsert_entity("customers", entity)

        name, call = azure_service.tables["customers"].calls[0]
        assert name == "upsert_entity"
        assert call["mode"] == UpdateMode.MERGE
        assert "etag" not in call
        assert entity.timestamp == first_etag_time(1)

    @pytest.mark.asyncio
    async def test_delete(self, azure_adapter, azure_service):
        """Test delete is unconditional by default and stamps the timestamp."""
        table = azure_service.get_table_client("customers")
        table.seed("P1", "R1")
        entity = Customer(PartitionKey="P1", RowKey="R1")

        await azure_adapter.delete_entity("customers", entity)

        _, call = table.calls[-1]
        assert call["partition_key"] == "P1"
        assert call["match_condition"] == MatchConditions.Unconditionally
        assert entity.etag == "*"
        assert entity.timestamp is not None
        assert table.rows == {}

    @pytest.mark.asyncio
    async def test_cancelled_before_send(self, azure_adapter, azure_service):
        event = asyncio.Event()
        event.set()

        with pytest.raises(OperationCancelledError):
            await azure_adapter.insert_entity("customers", Customer(PartitionKey="P1", RowKey="R1"), event)

        assert azure_service.tables == {}


class TestAzureBatchWrites:
    """Test entity group transactions."""

    @pytest.mark.asyncio
    async def test_insert_batch_single_transaction(self, azure_adapter, azure_service):
        """Test a batch is sent as one transaction in caller order."""
        entities = [Customer(PartitionKey="P1", RowKey=f"R{i}", Name=str(i)) for i in range(3)]

        await azure_adapter.insert_entities("customers", entities)

        table = azure_service.tables["customers"]
        assert [name for name, _ in table.calls] == ["submit_transaction"]
        operations = table.calls[0][1]["operations"]
        assert [op[0] for op in operations] == ["create", "create", "create"]
        assert [op[1]["RowKey"] for op in operations] == ["R0", "R1", "R2"]
        assert all(entity.etag.startswith("W/") for entity in entities)
        assert [entity.timestamp for entity in entities] == [first_etag_time(i) for i in (1, 2, 3)]

    @pytest.mark.asyncio
    async def test_batch_atomicity(self, azure_adapter, azure_service):
        """Test a failing batch leaves no partial writes."""
        table = azure_service.get_table_client("customers")
        table.seed("P1", "R2")
        entities = [Customer(PartitionKey="P1", RowKey=row) for row in ("R1", "R2", "R3")]

        with pytest.raises(ResourceExistsError):
            await azure_adapter.insert_entities("customers", entities)

        assert list(table.rows) == [("P1", "R2")]

    @pytest.mark.asyncio
    async def test_update_batch(self, azure_adapter, azure_service):
        table = azure_service.get_table_client("customers")
        table.seed("P1", "R1", Name="a", Age=3)

        await azure_adapter.update_entities("customers", [Customer(PartitionKey="P1", RowKey="R1", Name="b")])

        kind, _, kwargs = table.calls[-1][1]["operations"][0]
        assert kind == "update"
        assert kwargs["mode"] == UpdateMode.MERGE
        assert kwargs["match_condition"] == MatchConditions.Unconditionally
        assert table.rows[("P1", "R1")]["properties"]["Name"] == "b"

    @pytest.mark.asyncio
    async def test_upsert_batch(self, azure_adapter, azure_service):
        entities = [Customer(PartitionKey="P1", RowKey="R1")]

        await azure_adapter.upsert_entities("customers", entities)

        kind, _, kwargs = azure_service.tables["customers"].calls[-1][1]["operations"][0]
        assert kind == "upsert"
        assert kwargs == {"mode": UpdateMode.MERGE}
        assert entities[0].etag.startswith("W/")

    @pytest.mark.asyncio
    async def test_delete_batch(self, azure_adapter, azure_service):
        table = azure_service.get_table_client("customers")
        table.seed("P1", "R1")
        table.seed("P1", "R2")

        await azure_adapter.delete_entities(
            "customers",
            [Customer(PartitionKey="P1", RowKey="R1"), Customer(PartitionKey="P1", RowKey="R2")],
        )

        operations = table.calls[-1][1]["operations"]
        assert operations[0][1] == {"PartitionKey": "P1", "RowKey": "R1"}
        assert table.rows == {}

    @pytest.mark.asyncio
    async def test_empty_batch_is_noop(self, azure_adapter, azure_service):
        await azure_adapter.insert_entities("customers", [])

        assert azure_service.get_table_client("customers").calls == []

    @pytest.mark.asyncio
    async def test_batch_cancelled_mid_staging(self, azure_adapter, azure_service):
        """Test cancellation while staging sends nothing."""
        event = asyncio.Event()

        def entities():
            yield Customer(PartitionKey="P1", RowKey="R1")
            event.set()
            yield Customer(PartitionKey="P1", RowKey="R2")

        with pytest.raises(OperationCancelledError):
            await azure_adapter.insert_entities("customers", entities(), event)

        assert azure_service.get_table_client("customers").calls == []

    @pytest.mark.asyncio
    async def test_batch_without_keys(self, azure_adapter, azure_service):
        with pytest.raises(ValueError):
            await azure_adapter.insert_entities("customers", [Customer.new("P1", "")])

        assert azure_service.get_table_client("customers").calls == []
