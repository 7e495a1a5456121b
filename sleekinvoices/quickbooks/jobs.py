"""Scheduled QuickBooks work, run from cron (see scripts/poll_quickbooks_payments.py)."""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.models import QuickBooksConnection, QuickBooksSyncSettings
from sleekinvoices.quickbooks.payment_sync import poll_payments_from_qb
from sleekinvoices.quickbooks.results import PollResult
from sleekinvoices.quickbooks.settings import get_sync_settings
from sleekinvoices.quickbooks.utils import as_utc, utcnow

logger = logging.getLogger(__name__)

ClientFactory = Callable[[AsyncSession, str], QuickBooksClient]


def is_poll_due(sync_settings: QuickBooksSyncSettings, now: datetime) -> bool:
    """True when inbound sync is on and the poll interval has elapsed."""
    if not sync_settings.sync_payments_from_qb:
        return False
    last_poll = as_utc(sync_settings.last_payment_poll_at)
    if last_poll is None:
        return True
    return last_poll + timedelta(minutes=sync_settings.poll_interval_minutes) <= now


async def get_due_user_ids(db: AsyncSession, now: Optional[datetime] = None) -> List[str]:
    """Users with an active connection whose payment poll is due."""
    now = now or utcnow()
    result = await db.execute(
        select(QuickBooksConnection.user_id)
        .where(QuickBooksConnection.is_active.is_(True))
        .order_by(QuickBooksConnection.user_id)
    )
    due = []
    for user_id in result.scalars().all():
        sync_settings = await get_sync_settings(db, user_id)
        if is_poll_due(sync_settings, now):
            due.append(user_id)
    return due


async def poll_due_payments(
    db: AsyncSession,
    user_id: Optional[str] = None,
    client_factory: Optional[ClientFactory] = None,
    now: Optional[datetime] = None,
) -> Dict[str, PollResult]:
    """
    Poll QuickBooks payments for every due user, one at a time.

    Args:
        db: Database session
        user_id: Poll only this user, regardless of the interval
        client_factory: Builds the API client per user (tests inject a fake transport)
        now: Reference time for the interval check

    Returns:
        Poll result per user ID
    """
    user_ids = [user_id] if user_id else await get_due_user_ids(db, now)
    results: Dict[str, PollResult] = {}

    for due_user_id in user_ids:
        qb_client = client_factory(db, due_user_id) if client_factory else None
        results[due_user_id] = await poll_payments_from_qb(db, due_user_id, qb_client=qb_client)

    logger.info(f"QuickBooks payment poll ran for {len(results)} user(s)")
    return results
