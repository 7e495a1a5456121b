"""QuickBooks payment sync (both directions).

Outbound: a local payment is pushed once, linked to its already-synced
invoice. Payments are treated as immutable, so a mapped payment is never
re-sent.

Inbound: ``poll_payments_from_qb`` asks QuickBooks for payments updated since
the last poll and records the ones that pay invoices we manage.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.models import Invoice, Payment
from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.errors import (
    NotFoundError,
    QuickBooksError,
    QuickBooksFault,
    SyncPreconditionError,
)
from sleekinvoices.quickbooks.invoice_sync import get_invoice_mapping
from sleekinvoices.quickbooks.models import QuickBooksInvoiceMapping, QuickBooksPaymentMapping
from sleekinvoices.quickbooks.results import PollResult, SyncResult
from sleekinvoices.quickbooks.settings import get_sync_settings
from sleekinvoices.quickbooks.sync_log import log_sync
from sleekinvoices.quickbooks.utils import as_utc, qb_date, qb_timestamp, truncate, utcnow

logger = logging.getLogger(__name__)

PRIVATE_NOTE_MAX_LENGTH = 4000

# First poll looks back this far
DEFAULT_POLL_LOOKBACK = timedelta(hours=24)
POLL_MAX_RESULTS = 100

# QuickBooks does not reliably report how a payment was made
IMPORTED_PAYMENT_METHOD = "bank_transfer"


# ============================================================================
# MAPPING HELPERS
# ============================================================================

async def get_payment_mapping(
    db: AsyncSession,
    user_id: str,
    payment_id: str,
) -> Optional[QuickBooksPaymentMapping]:
    result = await db.execute(
        select(QuickBooksPaymentMapping).where(
            QuickBooksPaymentMapping.user_id == user_id,
            QuickBooksPaymentMapping.payment_id == payment_id,
        )
    )
    return result.scalar_one_or_none()


async def get_payment_mapping_by_qb_id(
    db: AsyncSession,
    user_id: str,
    qb_payment_id: str,
) -> Optional[QuickBooksPaymentMapping]:
    result = await db.execute(
        select(QuickBooksPaymentMapping).where(
            QuickBooksPaymentMapping.user_id == user_id,
            QuickBooksPaymentMapping.qb_payment_id == qb_payment_id,
        )
    )
    return result.scalar_one_or_none()


def payment_to_qb_payment(payment: Payment, qb_invoice_id: str) -> Dict[str, Any]:
    """Build the QuickBooks Payment payload, minus the CustomerRef."""
    amount = float(payment.amount)
    qb_payment: Dict[str, Any] = {
        "TxnDate": qb_date(payment.payment_date),
        "TotalAmt": amount,
        "Line": [
            {
                "Amount": amount,
                "LinkedTxn": [{"TxnId": qb_invoice_id, "TxnType": "Invoice"}],
            }
        ],
    }
    if payment.notes:
        qb_payment["PrivateNote"] = truncate(payment.notes, PRIVATE_NOTE_MAX_LENGTH)
    return qb_payment


def find_linked_invoice_line(qb_payment: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Return the first payment line that is linked to an invoice."""
    for line in qb_payment.get("Line") or []:
        for txn in line.get("LinkedTxn") or []:
            if txn.get("TxnType") == "Invoice" and txn.get("TxnId"):
                return {"Amount": line.get("Amount", 0), "TxnId": txn["TxnId"]}
    return None


def _parse_txn_date(value: Optional[str]) -> datetime:
    if not value:
        return utcnow()
    return datetime.combine(date.fromisoformat(value[:10]), time.min, tzinfo=timezone.utc)


# ============================================================================
# OUTBOUND
# ============================================================================

async def sync_payment_to_qb(
    db: AsyncSession,
    user_id: str,
    payment_id: str,
    qb_client: Optional[QuickBooksClient] = None,
) -> SyncResult:
    """
    Push one local payment to QuickBooks.

    The payment's invoice must already be synced; nothing is sent to
    QuickBooks otherwise.

    Returns:
        SyncResult with the QuickBooks payment ID on success
    """
    result = await db.execute(
        select(Payment).where(Payment.id == payment_id, Payment.user_id == user_id)
    )
    payment = result.scalar_one_or_none()
    if payment is None:
        return SyncResult.from_error(NotFoundError("Payment not found"))

    qb_payment_data: Optional[Dict[str, Any]] = None
    try:
        invoice_mapping = await get_invoice_mapping(db, user_id, payment.invoice_id)
        if invoice_mapping is None:
            raise SyncPreconditionError("Invoice not synced to QuickBooks - sync invoice first")

        existing = await get_payment_mapping(db, user_id, payment_id)
        if existing:
            return SyncResult.ok(existing.qb_payment_id)

        qb_invoice_id = invoice_mapping.qb_invoice_id
        qb_payment_data = payment_to_qb_payment(payment, qb_invoice_id)

        qb = qb_client or QuickBooksClient(db, user_id)

        # A QuickBooks payment needs the customer, not just the invoice
        qb_invoice = (await qb.get_entity("Invoice", qb_invoice_id)).raise_for_error()
        if not qb_invoice.data:
            raise QuickBooksFault("Failed to fetch invoice from QuickBooks")
        qb_payment_data["CustomerRef"] = qb_invoice.data.get("CustomerRef")

        response = await qb.create_entity("Payment", qb_payment_data)
        if not response.success or not response.data:
            error = response.error or "QuickBooks returned no payment"
            await log_sync(
                db, user_id, "payment", payment_id, None, "create", "failed",
                error, request_payload=qb_payment_data,
            )
            return SyncResult.failure(error, response.error_code)

        qb_payment_id = response.data["Id"]
        async with db.begin_nested():
            db.add(QuickBooksPaymentMapping(
                user_id=user_id,
                payment_id=payment_id,
                qb_payment_id=qb_payment_id,
                qb_invoice_id=qb_invoice_id,
                sync_direction="to_qb",
                sync_version=1,
                last_synced_at=utcnow(),
            ))
        await db.commit()

        await log_sync(
            db, user_id, "payment", payment_id, qb_payment_id, "create", "success",
            request_payload=qb_payment_data, response_payload=response.data,
        )
        await qb.oauth.update_last_sync_time(user_id)
        return SyncResult.ok(qb_payment_id)

    except QuickBooksError as e:
        await log_sync(
            db, user_id, "payment", payment_id, None, "create", "failed",
            e.message, request_payload=qb_payment_data,
        )
        return SyncResult.from_error(e)

    except Exception as e:
        logger.exception(f"Error syncing payment {payment_id} to QuickBooks")
        await log_sync(db, user_id, "payment", payment_id, None, "create", "failed", str(e))
        return SyncResult.failure(str(e), "SYNC_ERROR")


# ============================================================================
# INBOUND
# ============================================================================

async def poll_payments_from_qb(
    db: AsyncSession,
    user_id: str,
    qb_client: Optional[QuickBooksClient] = None,
) -> PollResult:
    """
    Import payments recorded in QuickBooks since the last poll.

    Payments already mapped, not linked to an invoice, or linked to an
    invoice we did not sync are skipped. One payment failing does not stop
    the others; the poll watermark moves forward at the end of every pass.
    """
    sync_settings = await get_sync_settings(db, user_id)
    if not sync_settings.sync_payments_from_qb:
        return PollResult(success=True)

    synced = 0
    errors = []

    try:
        qb = qb_client or QuickBooksClient(db, user_id)

        since = as_utc(sync_settings.last_payment_poll_at) or utcnow() - DEFAULT_POLL_LOOKBACK
        query = (
            "SELECT * FROM Payment "
            f"WHERE MetaData.LastUpdatedTime > '{qb_timestamp(since)}' "
            f"ORDERBY MetaData.LastUpdatedTime DESC MAXRESULTS {POLL_MAX_RESULTS}"
        )
        response = await qb.query(query)
        if not response.success:
            return PollResult(
                success=False,
                errors=[response.error or "Failed to query payments"],
            )

        for qb_payment in response.data or []:
            # A savepoint per payment; a failure undoes only that payment
            try:
                async with db.begin_nested():
                    payment_id = await _import_payment(db, user_id, qb_payment)
            except Exception as e:
                logger.error(f"Error importing QuickBooks payment {qb_payment.get('Id')}: {e}")
                errors.append(f"Payment {qb_payment.get('Id')}: {e}")
                continue

            if payment_id is None:
                continue
            await db.commit()
            await log_sync(
                db, user_id, "payment", payment_id, qb_payment["Id"], "create", "success",
                response_payload=qb_payment,
            )
            synced += 1

        sync_settings = await get_sync_settings(db, user_id)
        sync_settings.last_payment_poll_at = utcnow()
        await db.commit()

        await qb.oauth.update_last_sync_time(user_id)

    except QuickBooksError as e:
        return PollResult(success=False, synced=synced, errors=[e.message])

    except Exception as e:
        logger.exception(f"Error polling QuickBooks payments for user {user_id}")
        return PollResult(success=False, synced=synced, errors=[str(e)])

    logger.info(
        f"QuickBooks payment poll for user {user_id}: "
        f"{synced} imported, {len(errors)} errors"
    )
    return PollResult(success=True, synced=synced, errors=errors)


async def _import_payment(db: AsyncSession, user_id: str, qb_payment: Dict[str, Any]) -> Optional[str]:
    """Stage one QuickBooks payment locally. Returns the new payment ID, or None when skipped."""
    qb_payment_id = qb_payment["Id"]

    if await get_payment_mapping_by_qb_id(db, user_id, qb_payment_id):
        return None

    linked = find_linked_invoice_line(qb_payment)
    if linked is None:
        return None

    qb_invoice_id = linked["TxnId"]
    result = await db.execute(
        select(QuickBooksInvoiceMapping).where(
            QuickBooksInvoiceMapping.user_id == user_id,
            QuickBooksInvoiceMapping.qb_invoice_id == qb_invoice_id,
        )
    )
    invoice_mapping = result.scalars().first()
    if invoice_mapping is None:
        logger.warning(
            f"Skipping QuickBooks payment {qb_payment_id}: invoice {qb_invoice_id} is not synced"
        )
        return None

    result = await db.execute(
        select(Invoice).where(
            Invoice.id == invoice_mapping.invoice_id,
            Invoice.user_id == user_id,
        )
    )
    invoice = result.scalar_one_or_none()
    if invoice is None:
        return None

    amount = Decimal(str(linked["Amount"]))
    payment = Payment(
        invoice_id=invoice.id,
        user_id=user_id,
        amount=amount,
        currency=invoice.currency,
        payment_method=IMPORTED_PAYMENT_METHOD,
        payment_date=_parse_txn_date(qb_payment.get("TxnDate")),
        status="completed",
        notes=qb_payment.get("PrivateNote") or f"Synced from QuickBooks (ID: {qb_payment_id})",
    )
    db.add(payment)
    await db.flush()
    payment_id = payment.id

    db.add(QuickBooksPaymentMapping(
        user_id=user_id,
        payment_id=payment_id,
        qb_payment_id=qb_payment_id,
        qb_invoice_id=qb_invoice_id,
        sync_direction="from_qb",
        sync_version=1,
        last_synced_at=utcnow(),
    ))

    amount_paid = Decimal(str(invoice.amount_paid or 0)) + amount
    invoice.amount_paid = amount_paid
    if amount_paid >= Decimal(str(invoice.total)):
        invoice.status = "paid"
        invoice.paid_at = utcnow()

    return payment_id
