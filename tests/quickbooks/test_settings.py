"""
Tests for sync settings, the auto-sync policy and the scheduled payment poll.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from sleekinvoices.models import User
from sleekinvoices.quickbooks.auto_sync import auto_sync_invoice, auto_sync_payment
from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.jobs import get_due_user_ids, is_poll_due, poll_due_payments
from sleekinvoices.quickbooks.models import QuickBooksConnection, QuickBooksSyncSettings
from sleekinvoices.quickbooks.settings import (
    get_sync_settings,
    should_auto_sync,
    sync_settings_to_dict,
    update_sync_settings,
)
from sleekinvoices.quickbooks.utils import utcnow


# =============================================================================
# Settings
# =============================================================================

class TestSyncSettings:
    """Tests for get_sync_settings and update_sync_settings."""

    @pytest.mark.asyncio
    async def test_defaults_are_created_on_first_read(self, db, user):
        settings = await get_sync_settings(db, user.id)

        assert sync_settings_to_dict(settings) == {
            "auto_sync_invoices": True,
            "auto_sync_payments": True,
            "sync_payments_from_qb": True,
            "min_invoice_amount": None,
            "sync_draft_invoices": False,
            "last_payment_poll_at": None,
            "poll_interval_minutes": 60,
        }
        assert (await get_sync_settings(db, user.id)).id == settings.id

    @pytest.mark.asyncio
    async def test_partial_update(self, db, user):
        result = await update_sync_settings(db, user.id, {
            "auto_sync_payments": False,
            "min_invoice_amount": 250,
            "poll_interval_minutes": 30,
        })

        assert result.success is True
        settings = await get_sync_settings(db, user.id)
        assert settings.auto_sync_payments is False
        assert settings.auto_sync_invoices is True
        assert settings.min_invoice_amount == Decimal("250")
        assert settings.poll_interval_minutes == 30

    @pytest.mark.asyncio
    async def test_min_invoice_amount_can_be_cleared(self, db, user):
        await update_sync_settings(db, user.id, {"min_invoice_amount": Decimal("100.00")})

        await update_sync_settings(db, user.id, {"min_invoice_amount": None})

        assert (await get_sync_settings(db, user.id)).min_invoice_amount is None

    @pytest.mark.asyncio
    async def test_none_leaves_other_fields_alone(self, db, user):
        await update_sync_settings(db, user.id, {"auto_sync_invoices": None})

        assert (await get_sync_settings(db, user.id)).auto_sync_invoices is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("interval", [5, 14, 1441])
    async def test_poll_interval_out_of_range(self, db, user, interval):
        result = await update_sync_settings(db, user.id, {"poll_interval_minutes": interval})

        assert result.success is False
        assert result.error_code == "INVALID_SETTINGS"
        assert (await get_sync_settings(db, user.id)).poll_interval_minutes == 60

    @pytest.mark.asyncio
    @pytest.mark.parametrize("interval", ["30", 30.0, True])
    async def test_poll_interval_must_be_an_integer(self, db, user, interval):
        result = await update_sync_settings(db, user.id, {"poll_interval_minutes": interval})

        assert result.success is False
        assert result.error_code == "INVALID_SETTINGS"
        assert (await get_sync_settings(db, user.id)).poll_interval_minutes == 60

    @pytest.mark.asyncio
    async def test_invalid_min_invoice_amount(self, db, user):
        result = await update_sync_settings(db, user.id, {"min_invoice_amount": "lots"})

        assert result.success is False
        assert result.error == "Invalid minimum invoice amount: lots"
        assert (await get_sync_settings(db, user.id)).min_invoice_amount is None

    @pytest.mark.asyncio
    async def test_unknown_field(self, db, user):
        result = await update_sync_settings(db, user.id, {"last_payment_poll_at": utcnow()})

        assert result.success is False
        assert result.error == "Unknown sync settings: last_payment_poll_at"


# =============================================================================
# Auto-sync policy
# =============================================================================

class TestShouldAutoSync:
    """Tests for should_auto_sync."""

    @pytest.mark.asyncio
    async def test_defaults(self, db, user):
        assert await should_auto_sync(db, user.id, "invoice", Decimal("10"), "sent") is True
        assert await should_auto_sync(db, user.id, "payment") is True
        assert await should_auto_sync(db, user.id, "customer") is False

    @pytest.mark.asyncio
    async def test_drafts_are_skipped_by_default(self, db, user):
        assert await should_auto_sync(db, user.id, "invoice", Decimal("10"), "draft") is False

        await update_sync_settings(db, user.id, {"sync_draft_invoices": True})

        assert await should_auto_sync(db, user.id, "invoice", Decimal("10"), "draft") is True

    @pytest.mark.asyncio
    async def test_minimum_amount(self, db, user):
        await update_sync_settings(db, user.id, {"min_invoice_amount": Decimal("100.00")})

        assert await should_auto_sync(db, user.id, "invoice", Decimal("99.99"), "sent") is False
        assert await should_auto_sync(db, user.id, "invoice", Decimal("100.00"), "sent") is True

    @pytest.mark.asyncio
    async def test_toggles(self, db, user):
        await update_sync_settings(db, user.id, {"auto_sync_invoices": False, "auto_sync_payments": False})

        assert await should_auto_sync(db, user.id, "invoice", Decimal("500"), "sent") is False
        assert await should_auto_sync(db, user.id, "payment") is False


class TestAutoSyncHooks:
    """Tests for auto_sync_invoice and auto_sync_payment."""

    @pytest.mark.asyncio
    async def test_invoice_is_synced(self, db, user, records, qb_client, fake_qb):
        client = await records.client()
        invoice = await records.invoice(client.id)

        result = await auto_sync_invoice(db, user.id, invoice.id, qb_client=qb_client)

        assert result.success is True
        assert len(fake_qb.creates("Invoice")) == 1

    @pytest.mark.asyncio
    async def test_draft_invoice_is_not_synced(self, db, user, records, qb_client, fake_qb):
        client = await records.client()
        invoice = await records.invoice(client.id, status="draft")

        assert await auto_sync_invoice(db, user.id, invoice.id, qb_client=qb_client) is None
        assert fake_qb.requests == []

    @pytest.mark.asyncio
    async def test_without_connection_nothing_happens(self, db, user, records, qb_config, fake_qb, transport):
        client = await records.client()
        invoice = await records.invoice(client.id)
        qb = QuickBooksClient(db, user.id, config=qb_config, transport=transport)

        assert await auto_sync_invoice(db, user.id, invoice.id, qb_client=qb) is None
        assert fake_qb.requests == []

    @pytest.mark.asyncio
    async def test_inactive_connection_nothing_happens(self, db, user, connection, records, qb_client, fake_qb):
        connection.is_active = False
        await db.commit()
        client = await records.client()
        invoice = await records.invoice(client.id)

        assert await auto_sync_invoice(db, user.id, invoice.id, qb_client=qb_client) is None

    @pytest.mark.asyncio
    async def test_failed_payment_sync_is_returned(self, db, user, records, qb_client):
        client = await records.client()
        invoice = await records.invoice(client.id)
        payment = await records.payment(invoice.id)

        result = await auto_sync_payment(db, user.id, payment.id, qb_client=qb_client)

        assert result.success is False
        assert result.error_code == "PRECONDITION_FAILED"

    @pytest.mark.asyncio
    async def test_payment_toggle_off(self, db, user, records, qb_client, fake_qb):
        await update_sync_settings(db, user.id, {"auto_sync_payments": False})
        client = await records.client()
        invoice = await records.invoice(client.id)
        payment = await records.payment(invoice.id)

        assert await auto_sync_payment(db, user.id, payment.id, qb_client=qb_client) is None


# =============================================================================
# Scheduled poll
# =============================================================================

class TestPaymentPollJob:
    """Tests for the interval check and poll_due_payments."""

    def test_never_polled_is_due(self):
        settings = QuickBooksSyncSettings(sync_payments_from_qb=True, poll_interval_minutes=60)

        assert is_poll_due(settings, utcnow()) is True

    def test_interval(self):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        settings = QuickBooksSyncSettings(
            sync_payments_from_qb=True,
            poll_interval_minutes=60,
            last_payment_poll_at=now - timedelta(minutes=59),
        )
        assert is_poll_due(settings, now) is False

        settings.last_payment_poll_at = now - timedelta(minutes=60)
        assert is_poll_due(settings, now) is True

    def test_disabled_is_never_due(self):
        settings = QuickBooksSyncSettings(sync_payments_from_qb=False, poll_interval_minutes=60)

        assert is_poll_due(settings, utcnow()) is False

    @pytest.mark.asyncio
    async def test_due_users(self, db, user, connection):
        other = User(id="user_other", email="other@example.com", name="Other")
        db.add(other)
        db.add(QuickBooksConnection(
            user_id=other.id, realm_id="realm-2", access_token="a", refresh_token="r",
            token_expires_at=utcnow(), refresh_token_expires_at=utcnow(),
        ))
        await db.commit()
        other_settings = await get_sync_settings(db, other.id)
        other_settings.last_payment_poll_at = utcnow() - timedelta(minutes=5)
        await db.commit()

        assert await get_due_user_ids(db) == [user.id]

    @pytest.mark.asyncio
    async def test_poll_due_payments(self, db, user, connection, qb_config, transport, fake_qb):
        def factory(session, user_id):
            return QuickBooksClient(session, user_id, config=qb_config, transport=transport)

        results = await poll_due_payments(db, client_factory=factory)

        assert list(results) == [user.id]
        assert results[user.id].success is True
        assert len(fake_qb.queries()) == 1

        # Just polled, so nothing is due until the interval passes
        assert await poll_due_payments(db, client_factory=factory) == {}

        later = utcnow() + timedelta(minutes=61)
        assert list(await poll_due_payments(db, client_factory=factory, now=later)) == [user.id]

    @pytest.mark.asyncio
    async def test_single_user_ignores_interval(self, db, user, connection, qb_config, transport, fake_qb):
        def factory(session, user_id):
            return QuickBooksClient(session, user_id, config=qb_config, transport=transport)

        await poll_due_payments(db, client_factory=factory)
        results = await poll_due_payments(db, user_id=user.id, client_factory=factory)

        assert list(results) == [user.id]
        assert len(fake_qb.queries()) == 2
