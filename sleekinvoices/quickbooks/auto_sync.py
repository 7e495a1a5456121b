"""Hooks the invoice and payment code paths call after a local create/update.

Each hook checks that QuickBooks is configured and connected, consults
``should_auto_sync`` and then runs the sync. They return None when nothing
was attempted.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.models import Invoice
from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.config import is_quickbooks_configured
from sleekinvoices.quickbooks.invoice_sync import sync_invoice_to_qb
from sleekinvoices.quickbooks.models import QuickBooksConnection
from sleekinvoices.quickbooks.payment_sync import sync_payment_to_qb
from sleekinvoices.quickbooks.results import SyncResult
from sleekinvoices.quickbooks.settings import should_auto_sync

logger = logging.getLogger(__name__)


async def _is_connected(db: AsyncSession, user_id: str) -> bool:
    result = await db.execute(
        select(QuickBooksConnection.id).where(
            QuickBooksConnection.user_id == user_id,
            QuickBooksConnection.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none() is not None


async def auto_sync_invoice(
    db: AsyncSession,
    user_id: str,
    invoice_id: str,
    qb_client: Optional[QuickBooksClient] = None,
) -> Optional[SyncResult]:
    """Sync an invoice if the user's settings ask for it."""
    if qb_client is None and not is_quickbooks_configured():
        return None
    if not await _is_connected(db, user_id):
        return None

    result = await db.execute(
        select(Invoice.total, Invoice.status).where(
            Invoice.id == invoice_id,
            Invoice.user_id == user_id,
        )
    )
    row = result.one_or_none()
    if row is None:
        return None

    total, status = row
    if not await should_auto_sync(db, user_id, "invoice", invoice_amount=total, invoice_status=status):
        return None

    sync_result = await sync_invoice_to_qb(db, user_id, invoice_id, qb_client=qb_client)
    if not sync_result.success:
        logger.warning(f"Auto-sync of invoice {invoice_id} failed: {sync_result.error}")
    return sync_result


async def auto_sync_payment(
    db: AsyncSession,
    user_id: str,
    payment_id: str,
    qb_client: Optional[QuickBooksClient] = None,
) -> Optional[SyncResult]:
    """Sync a payment if the user's settings ask for it."""
    if qb_client is None and not is_quickbooks_configured():
        return None
    if not await _is_connected(db, user_id):
        return None
    if not await should_auto_sync(db, user_id, "payment"):
        return None

    sync_result = await sync_payment_to_qb(db, user_id, payment_id, qb_client=qb_client)
    if not sync_result.success:
        logger.warning(f"Auto-sync of payment {payment_id} failed: {sync_result.error}")
    return sync_result
