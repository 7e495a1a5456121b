"""Per-user QuickBooks sync settings and the auto-sync policy."""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.quickbooks.models import QuickBooksSyncSettings
from sleekinvoices.quickbooks.results import SyncResult

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL_MINUTES = 15
MAX_POLL_INTERVAL_MINUTES = 1440

UPDATABLE_FIELDS = (
    "auto_sync_invoices",
    "auto_sync_payments",
    "sync_payments_from_qb",
    "min_invoice_amount",
    "sync_draft_invoices",
    "poll_interval_minutes",
)


async def get_sync_settings(db: AsyncSession, user_id: str) -> QuickBooksSyncSettings:
    """Return the user's sync settings, creating the defaults on first read."""
    result = await db.execute(
        select(QuickBooksSyncSettings).where(QuickBooksSyncSettings.user_id == user_id)
    )
    sync_settings = result.scalar_one_or_none()
    if sync_settings is None:
        sync_settings = QuickBooksSyncSettings(
            user_id=user_id,
            auto_sync_invoices=True,
            auto_sync_payments=True,
            sync_payments_from_qb=True,
            min_invoice_amount=None,
            sync_draft_invoices=False,
            poll_interval_minutes=60,
        )
        db.add(sync_settings)
        await db.commit()
    return sync_settings


def sync_settings_to_dict(sync_settings: QuickBooksSyncSettings) -> Dict[str, Any]:
    return {
        "auto_sync_invoices": sync_settings.auto_sync_invoices,
        "auto_sync_payments": sync_settings.auto_sync_payments,
        "sync_payments_from_qb": sync_settings.sync_payments_from_qb,
        "min_invoice_amount": sync_settings.min_invoice_amount,
        "sync_draft_invoices": sync_settings.sync_draft_invoices,
        "last_payment_poll_at": sync_settings.last_payment_poll_at,
        "poll_interval_minutes": sync_settings.poll_interval_minutes,
    }


async def update_sync_settings(
    db: AsyncSession,
    user_id: str,
    changes: Dict[str, Any],
) -> SyncResult:
    """
    Apply a partial settings update.

    Only keys present in ``changes`` are written; ``min_invoice_amount`` may
    be set to None to clear the threshold.
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        return SyncResult.failure(
            f"Unknown sync settings: {', '.join(sorted(unknown))}", "INVALID_SETTINGS"
        )

    interval = changes.get("poll_interval_minutes")
    if interval is not None and (
        not isinstance(interval, int)
        or isinstance(interval, bool)
        or not MIN_POLL_INTERVAL_MINUTES <= interval <= MAX_POLL_INTERVAL_MINUTES
    ):
        return SyncResult.failure(
            f"Poll interval must be between {MIN_POLL_INTERVAL_MINUTES} "
            f"and {MAX_POLL_INTERVAL_MINUTES} minutes",
            "INVALID_SETTINGS",
        )

    min_amount = changes.get("min_invoice_amount")
    if min_amount is not None:
        try:
            changes = {**changes, "min_invoice_amount": Decimal(str(min_amount))}
        except InvalidOperation:
            return SyncResult.failure(
                f"Invalid minimum invoice amount: {min_amount}", "INVALID_SETTINGS"
            )

    sync_settings = await get_sync_settings(db, user_id)
    for key, value in changes.items():
        if value is None and key != "min_invoice_amount":
            continue
        setattr(sync_settings, key, value)
    await db.commit()

    logger.info(f"QuickBooks sync settings updated for user {user_id}: {sorted(changes)}")
    return SyncResult.ok()


async def should_auto_sync(
    db: AsyncSession,
    user_id: str,
    sync_type: str,
    invoice_amount: Optional[Decimal] = None,
    invoice_status: Optional[str] = None,
) -> bool:
    """
    Decide whether a local create/update should be pushed automatically.

    Invoices honor the auto-sync toggle, the minimum amount and the draft
    setting; payments only honor their toggle.
    """
    sync_settings = await get_sync_settings(db, user_id)

    if sync_type == "invoice":
        if not sync_settings.auto_sync_invoices:
            return False
        if invoice_status == "draft" and not sync_settings.sync_draft_invoices:
            return False
        if sync_settings.min_invoice_amount is not None and invoice_amount is not None:
            if Decimal(str(invoice_amount)) < Decimal(str(sync_settings.min_invoice_amount)):
                return False
        return True

    if sync_type == "payment":
        return bool(sync_settings.auto_sync_payments)

    return False
