"""QuickBooks invoice sync.

Pushes local invoices to QuickBooks. The invoice's client must be linked to a
QuickBooks customer first; if it is not, the client is synced on the way.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.models import Invoice, InvoiceLineItem
from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.customer_sync import get_customer_mapping, sync_client_to_qb
from sleekinvoices.quickbooks.errors import NotFoundError, QuickBooksError, SyncPreconditionError
from sleekinvoices.quickbooks.models import QuickBooksInvoiceMapping
from sleekinvoices.quickbooks.results import BatchSyncResult, SyncResult
from sleekinvoices.quickbooks.sync_log import log_sync
from sleekinvoices.quickbooks.utils import as_utc, qb_date, truncate, utcnow

logger = logging.getLogger(__name__)

DOC_NUMBER_MAX_LENGTH = 21
CUSTOMER_MEMO_MAX_LENGTH = 4000


# ============================================================================
# MAPPING HELPERS
# ============================================================================

def invoice_to_qb_invoice(
    invoice: Invoice,
    line_items: List[InvoiceLineItem],
    qb_customer_id: str,
) -> Dict[str, Any]:
    """Build the QuickBooks Invoice payload for a local invoice."""
    lines = []
    for index, item in enumerate(line_items):
        quantity = Decimal(str(item.quantity))
        rate = Decimal(str(item.rate))
        lines.append({
            "LineNum": index + 1,
            "Description": item.description or "",
            "Amount": float(quantity * rate),
            "DetailType": "SalesItemLineDetail",
            "SalesItemLineDetail": {
                "UnitPrice": float(rate),
                "Qty": float(quantity),
            },
        })

    qb_invoice: Dict[str, Any] = {
        "CustomerRef": {"value": qb_customer_id},
        "TxnDate": qb_date(invoice.issue_date),
        "Line": lines,
    }
    if invoice.due_date:
        qb_invoice["DueDate"] = qb_date(invoice.due_date)
    if invoice.invoice_number:
        qb_invoice["DocNumber"] = truncate(invoice.invoice_number, DOC_NUMBER_MAX_LENGTH)
    if invoice.notes:
        qb_invoice["CustomerMemo"] = {"value": truncate(invoice.notes, CUSTOMER_MEMO_MAX_LENGTH)}
    return qb_invoice


async def get_invoice_mapping(
    db: AsyncSession,
    user_id: str,
    invoice_id: str,
) -> Optional[QuickBooksInvoiceMapping]:
    result = await db.execute(
        select(QuickBooksInvoiceMapping).where(
            QuickBooksInvoiceMapping.user_id == user_id,
            QuickBooksInvoiceMapping.invoice_id == invoice_id,
        )
    )
    return result.scalar_one_or_none()


async def _get_invoice(db: AsyncSession, user_id: str, invoice_id: str) -> Optional[Invoice]:
    result = await db.execute(
        select(Invoice).where(Invoice.id == invoice_id, Invoice.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def _get_line_items(db: AsyncSession, invoice_id: str) -> List[InvoiceLineItem]:
    result = await db.execute(
        select(InvoiceLineItem)
        .where(InvoiceLineItem.invoice_id == invoice_id)
        .order_by(InvoiceLineItem.sort_order)
    )
    return list(result.scalars().all())


# ============================================================================
# SYNC
# ============================================================================

async def sync_invoice_to_qb(
    db: AsyncSession,
    user_id: str,
    invoice_id: str,
    qb_client: Optional[QuickBooksClient] = None,
) -> SyncResult:
    """
    Push one invoice to QuickBooks, syncing its client first if needed.

    Args:
        db: Database session
        user_id: Owner of the invoice and the QuickBooks connection
        invoice_id: Local invoice ID
        qb_client: API client to use (one is built for ``user_id`` if omitted)

    Returns:
        SyncResult with the QuickBooks invoice ID on success
    """
    invoice = await _get_invoice(db, user_id, invoice_id)
    if invoice is None:
        return SyncResult.from_error(NotFoundError("Invoice not found"))

    mapping = await get_invoice_mapping(db, user_id, invoice_id)
    mapped_qb_id = mapping.qb_invoice_id if mapping else None
    action = "update" if mapping else "create"

    try:
        if not invoice.client_id:
            raise SyncPreconditionError("Invoice has no client assigned")

        qb = qb_client or QuickBooksClient(db, user_id)

        customer_mapping = await get_customer_mapping(db, user_id, invoice.client_id)
        if customer_mapping is None:
            customer_result = await sync_client_to_qb(db, user_id, invoice.client_id, qb_client=qb)
            if not customer_result.success:
                raise SyncPreconditionError(
                    f"Failed to sync client: {customer_result.error}",
                    customer_result.error_code,
                )
            customer_mapping = await get_customer_mapping(db, user_id, invoice.client_id)
            if customer_mapping is None:
                raise SyncPreconditionError("Failed to get customer mapping after sync")

        line_items = await _get_line_items(db, invoice_id)
        invoice_data = invoice_to_qb_invoice(invoice, line_items, customer_mapping.qb_customer_id)

        if mapping:
            return await _update_invoice(db, qb, user_id, invoice_id, mapping, invoice_data)
        return await _create_invoice(db, qb, user_id, invoice_id, invoice_data)

    except QuickBooksError as e:
        await log_sync(db, user_id, "invoice", invoice_id, mapped_qb_id, action, "failed", e.message)
        return SyncResult.from_error(e)

    except Exception as e:
        logger.exception(f"Error syncing invoice {invoice_id} to QuickBooks")
        await log_sync(db, user_id, "invoice", invoice_id, mapped_qb_id, action, "failed", str(e))
        return SyncResult.failure(str(e), "SYNC_ERROR")


async def _update_invoice(
    db: AsyncSession,
    qb: QuickBooksClient,
    user_id: str,
    invoice_id: str,
    mapping: QuickBooksInvoiceMapping,
    invoice_data: Dict[str, Any],
) -> SyncResult:
    qb_invoice_id = mapping.qb_invoice_id
    sync_token = await qb.get_sync_token("Invoice", qb_invoice_id)

    update_data = {
        **invoice_data,
        "Id": qb_invoice_id,
        "SyncToken": sync_token,
        "sparse": True,
    }
    response = await qb.update_entity("Invoice", update_data)
    if not response.success:
        await log_sync(
            db, user_id, "invoice", invoice_id, qb_invoice_id, "update", "failed",
            response.error, request_payload=update_data,
        )
        return SyncResult.failure(response.error, response.error_code)

    async with db.begin_nested():
        mapping.qb_doc_number = (response.data or {}).get("DocNumber", mapping.qb_doc_number)
        mapping.sync_version = mapping.sync_version + 1
        mapping.last_synced_at = utcnow()
    await db.commit()

    await log_sync(
        db, user_id, "invoice", invoice_id, qb_invoice_id, "update", "success",
        request_payload=update_data, response_payload=response.data,
    )
    await qb.oauth.update_last_sync_time(user_id)
    return SyncResult.ok(qb_invoice_id)


async def _create_invoice(
    db: AsyncSession,
    qb: QuickBooksClient,
    user_id: str,
    invoice_id: str,
    invoice_data: Dict[str, Any],
) -> SyncResult:
    response = await qb.create_entity("Invoice", invoice_data)
    if not response.success or not response.data:
        error = response.error or "QuickBooks returned no invoice"
        await log_sync(
            db, user_id, "invoice", invoice_id, None, "create", "failed",
            error, request_payload=invoice_data,
        )
        return SyncResult.failure(error, response.error_code)

    qb_invoice_id = response.data["Id"]
    async with db.begin_nested():
        db.add(QuickBooksInvoiceMapping(
            user_id=user_id,
            invoice_id=invoice_id,
            qb_invoice_id=qb_invoice_id,
            qb_doc_number=response.data.get("DocNumber"),
            sync_version=1,
            last_synced_at=utcnow(),
        ))
    await db.commit()

    await log_sync(
        db, user_id, "invoice", invoice_id, qb_invoice_id, "create", "success",
        request_payload=invoice_data, response_payload=response.data,
    )
    await qb.oauth.update_last_sync_time(user_id)
    return SyncResult.ok(qb_invoice_id)


async def sync_all_invoices_to_qb(
    db: AsyncSession,
    user_id: str,
    qb_client: Optional[QuickBooksClient] = None,
) -> BatchSyncResult:
    """Sync every invoice of a user, one at a time. A failure never stops the batch."""
    result = await db.execute(
        select(Invoice.id, Invoice.invoice_number)
        .where(Invoice.user_id == user_id)
        .order_by(Invoice.issue_date, Invoice.id)
    )
    invoices = list(result.all())

    batch = BatchSyncResult()
    for invoice_id, invoice_number in invoices:
        sync_result = await sync_invoice_to_qb(db, user_id, invoice_id, qb_client=qb_client)
        if sync_result.success:
            batch.synced += 1
        else:
            batch.failed += 1
            batch.errors.append(f"Invoice {invoice_number or invoice_id}: {sync_result.error}")

    logger.info(
        f"QuickBooks invoice sync for user {user_id}: "
        f"{batch.synced} synced, {batch.failed} failed"
    )
    return batch


async def get_invoice_sync_status(
    db: AsyncSession,
    user_id: str,
    invoice_id: str,
) -> Dict[str, Any]:
    mapping = await get_invoice_mapping(db, user_id, invoice_id)
    if mapping is None:
        return {
            "synced": False,
            "qb_invoice_id": None,
            "qb_doc_number": None,
            "last_synced_at": None,
            "sync_version": None,
        }
    return {
        "synced": True,
        "qb_invoice_id": mapping.qb_invoice_id,
        "qb_doc_number": mapping.qb_doc_number,
        "last_synced_at": as_utc(mapping.last_synced_at),
        "sync_version": mapping.sync_version,
    }
