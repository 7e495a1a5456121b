"""
Tests for QuickBooks customer sync.
"""

import httpx
import pytest
from sqlalchemy import select

from sleekinvoices.models import Client
from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.customer_sync import (
    client_to_qb_customer,
    get_client_sync_status,
    sync_all_clients_to_qb,
    sync_client_to_qb,
)
from sleekinvoices.quickbooks.models import QuickBooksCustomerMapping, QuickBooksSyncLog

from fake_quickbooks import fault


async def _mappings(db):
    return (await db.execute(select(QuickBooksCustomerMapping))).scalars().all()


async def _logs(db):
    return (await db.execute(select(QuickBooksSyncLog))).scalars().all()


# =============================================================================
# Payload mapping
# =============================================================================

class TestClientToQbCustomer:
    """Tests for client_to_qb_customer."""

    def test_full_client(self):
        client = Client(
            id="client_1",
            name="Alice Smith",
            email="alice@acme.com",
            company_name="Acme Ltd",
            phone="+1 555 0100",
            address="1 Main St\nSuite 4\nSpringfield",
        )

        assert client_to_qb_customer(client) == {
            "DisplayName": "Acme Ltd",
            "Active": True,
            "CompanyName": "Acme Ltd",
            "PrimaryEmailAddr": {"Address": "alice@acme.com"},
            "PrimaryPhone": {"FreeFormNumber": "+1 555 0100"},
            "BillAddr": {"Line1": "1 Main St"},
        }

    def test_display_name_falls_back_to_name(self):
        client = Client(id="client_1", name="Alice Smith")

        assert client_to_qb_customer(client) == {"DisplayName": "Alice Smith", "Active": True}

    def test_display_name_falls_back_to_id(self):
        client = Client(id="client_1", name="")

        assert client_to_qb_customer(client)["DisplayName"] == "Client client_1"

    def test_long_values_are_truncated(self):
        client = Client(id="client_1", name="x", company_name="C" * 150, address="A" * 600)

        customer = client_to_qb_customer(client)

        assert len(customer["DisplayName"]) == 100
        assert len(customer["CompanyName"]) == 100
        assert len(customer["BillAddr"]["Line1"]) == 500


# =============================================================================
# Single client sync
# =============================================================================

class TestSyncClientToQb:
    """Tests for sync_client_to_qb."""

    @pytest.mark.asyncio
    async def test_creates_customer_and_mapping(self, db, user, records, qb_client, fake_qb):
        client = await records.client()

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert result.success is True
        assert fake_qb.creates("Customer") == [{
            "DisplayName": "Alice Smith",
            "Active": True,
            "PrimaryEmailAddr": {"Address": "a@x.com"},
        }]

        mappings = await _mappings(db)
        assert len(mappings) == 1
        assert mappings[0].qb_customer_id == result.qb_entity_id
        assert mappings[0].qb_display_name == "Alice Smith"
        assert mappings[0].sync_version == 1

        logs = await _logs(db)
        assert [(l.entity_type, l.action, l.status) for l in logs] == [("customer", "create", "success")]
        assert logs[0].qb_entity_id == result.qb_entity_id

    @pytest.mark.asyncio
    async def test_lookup_runs_by_email_then_display_name(self, db, user, records, qb_client, fake_qb):
        client = await records.client()

        await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert fake_qb.queries() == [
            "SELECT * FROM Customer WHERE PrimaryEmailAddr = 'a@x.com'",
            "SELECT * FROM Customer WHERE DisplayName = 'Alice Smith'",
        ]

    @pytest.mark.asyncio
    async def test_resync_updates_existing_customer(self, db, user, records, qb_client, fake_qb):
        client = await records.client()
        first = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        client.phone = "+1 555 0199"
        await db.commit()
        second = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert second.success is True
        assert second.qb_entity_id == first.qb_entity_id
        assert len(fake_qb.creates("Customer")) == 1

        update = fake_qb.updates("Customer")[0]
        assert update["Id"] == first.qb_entity_id
        assert update["SyncToken"] == "0"
        assert update["sparse"] is True
        assert update["PrimaryPhone"] == {"FreeFormNumber": "+1 555 0199"}

        mappings = await _mappings(db)
        assert len(mappings) == 1
        assert mappings[0].sync_version == 2

    @pytest.mark.asyncio
    async def test_matches_existing_customer_by_email(self, db, user, records, qb_client, fake_qb):
        existing = fake_qb.add_entity("Customer", {
            "DisplayName": "Alice S.",
            "PrimaryEmailAddr": {"Address": "a@x.com"},
        })
        client = await records.client()

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert result.success is True
        assert result.qb_entity_id == existing["Id"]
        assert fake_qb.creates("Customer") == []
        assert len(fake_qb.queries()) == 1

        mappings = await _mappings(db)
        assert mappings[0].qb_customer_id == existing["Id"]
        assert mappings[0].qb_display_name == "Alice S."

        logs = await _logs(db)
        assert logs[0].request_payload == {"matched": True}

    @pytest.mark.asyncio
    async def test_matches_existing_customer_by_display_name(self, db, user, records, qb_client, fake_qb):
        existing = fake_qb.add_entity("Customer", {"DisplayName": "O'Brien & Co"})
        client = await records.client(name="Pat O'Brien", email=None, company_name="O'Brien & Co")

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert result.success is True
        assert result.qb_entity_id == existing["Id"]
        assert fake_qb.creates("Customer") == []
        assert fake_qb.queries() == ["SELECT * FROM Customer WHERE DisplayName = 'O\\'Brien & Co'"]

    @pytest.mark.asyncio
    async def test_failed_lookup_does_not_create(self, db, user, records, qb_client, fake_qb):
        fake_qb.fail_when(lambda r: r.url.path.endswith("/query"), lambda: httpx.Response(503, text="busy"))
        client = await records.client()

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert result.success is False
        assert result.error_code == "HTTP_503"
        assert fake_qb.creates("Customer") == []
        assert await _mappings(db) == []

    @pytest.mark.asyncio
    async def test_create_fault_is_logged(self, db, user, records, qb_client, fake_qb):
        fake_qb.fail_when(
            lambda r: r.method == "POST",
            lambda: fault("6240", "Duplicate Name Exists Error"),
        )
        client = await records.client()

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert result.success is False
        assert result.error_code == "6240"
        assert await _mappings(db) == []

        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].status == "failed"
        assert logs[0].error_message == "Duplicate Name Exists Error"
        assert logs[0].request_payload["DisplayName"] == "Alice Smith"

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_caller_objects_loaded(self, db, user, records, qb_client, fake_qb):
        # A created customer without an Id
        fake_qb.fail_when(
            lambda r: r.method == "POST",
            lambda: httpx.Response(200, json={"Customer": {"DisplayName": "Alice Smith"}}),
        )
        client = await records.client()

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert result.success is False
        assert result.error_code == "SYNC_ERROR"
        assert client.name == "Alice Smith"
        assert user.id == "user_test"
        assert await _mappings(db) == []

        logs = await _logs(db)
        assert [(l.status, l.entity_id) for l in logs] == [("failed", client.id)]

    @pytest.mark.asyncio
    async def test_failed_update_leaves_mapping_unchanged(self, db, user, records, qb_client, fake_qb):
        customer = fake_qb.add_entity("Customer", {"DisplayName": "Alice Smith"})
        client = await records.client()
        db.add(QuickBooksCustomerMapping(
            user_id=user.id, client_id=client.id, qb_customer_id=customer["Id"], qb_display_name="Alice Smith",
        ))
        await db.commit()
        fake_qb.fail_when(
            lambda r: r.url.params.get("operation") == "update",
            lambda: fault("6000", "A business validation error has occurred"),
        )

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert result.success is False
        mappings = await _mappings(db)
        assert mappings[0].sync_version == 1

        logs = await _logs(db)
        assert [(l.action, l.status) for l in logs] == [("update", "failed")]
        assert logs[0].qb_entity_id == customer["Id"]
        assert logs[0].request_payload["Id"] == customer["Id"]

    @pytest.mark.asyncio
    async def test_stale_sync_token_is_reported(self, db, user, records, qb_client, fake_qb):
        customer = fake_qb.add_entity("Customer", {"DisplayName": "Alice Smith"})
        client = await records.client()
        db.add(QuickBooksCustomerMapping(user_id=user.id, client_id=client.id, qb_customer_id=customer["Id"]))
        await db.commit()
        fake_qb.fail_when(
            lambda r: r.url.params.get("operation") == "update",
            lambda: fault("5010", "Stale Object Error"),
        )

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert result.success is False
        assert result.error_code == "CONCURRENCY_CONFLICT"

    @pytest.mark.asyncio
    async def test_mapped_customer_missing_in_quickbooks(self, db, user, records, qb_client, fake_qb):
        client = await records.client()
        db.add(QuickBooksCustomerMapping(user_id=user.id, client_id=client.id, qb_customer_id="999"))
        await db.commit()

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        assert result.success is False
        assert result.error_code == "610"
        assert fake_qb.updates("Customer") == []

    @pytest.mark.asyncio
    async def test_client_not_found(self, db, user, qb_client, fake_qb):
        result = await sync_client_to_qb(db, user.id, "client_missing", qb_client=qb_client)

        assert result.success is False
        assert result.error == "Client not found"
        assert result.error_code == "NOT_FOUND"
        assert fake_qb.requests == []
        assert await _logs(db) == []

    @pytest.mark.asyncio
    async def test_not_connected(self, db, user, records, qb_config, fake_qb, transport):
        client = await records.client()
        qb = QuickBooksClient(db, user.id, config=qb_config, transport=transport)

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb)

        assert result.success is False
        assert result.error_code == "NOT_CONNECTED"
        assert fake_qb.requests == []

        logs = await _logs(db)
        assert logs[0].status == "failed"

    @pytest.mark.asyncio
    async def test_successful_sync_updates_connection_last_sync(self, db, user, records, connection, qb_client):
        client = await records.client()

        await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        await db.refresh(connection)
        assert connection.last_sync_at is not None


# =============================================================================
# Batch / status
# =============================================================================

class TestSyncAllClients:
    """Tests for sync_all_clients_to_qb and get_client_sync_status."""

    @pytest.mark.asyncio
    async def test_partial_failure_does_not_stop_batch(self, db, user, records, qb_client, fake_qb):
        await records.client(name="Alice", email="alice@x.com")
        bob = await records.client(name="Bob", email="bob@x.com")
        await records.client(name="Carol", email="carol@x.com")
        fake_qb.fail_when(
            lambda r: r.method == "POST" and b"Bob" in r.content,
            lambda: httpx.Response(500, text="Internal Server Error"),
        )

        batch = await sync_all_clients_to_qb(db, user.id, qb_client=qb_client)

        assert batch.synced == 2
        assert batch.failed == 1
        assert len(batch.errors) == 1
        assert batch.errors[0].startswith(f"Client {bob.id}: ")
        assert len(await _mappings(db)) == 2

    @pytest.mark.asyncio
    async def test_no_clients(self, db, user, qb_client):
        batch = await sync_all_clients_to_qb(db, user.id, qb_client=qb_client)

        assert batch.to_dict() == {"synced": 0, "failed": 0, "errors": []}

    @pytest.mark.asyncio
    async def test_sync_status(self, db, user, records, qb_client):
        client = await records.client()

        status = await get_client_sync_status(db, user.id, client.id)
        assert status["synced"] is False
        assert status["qb_customer_id"] is None

        result = await sync_client_to_qb(db, user.id, client.id, qb_client=qb_client)

        status = await get_client_sync_status(db, user.id, client.id)
        assert status["synced"] is True
        assert status["qb_customer_id"] == result.qb_entity_id
        assert status["sync_version"] == 1
        assert status["last_synced_at"].tzinfo is not None
