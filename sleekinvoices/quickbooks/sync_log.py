"""Append-only QuickBooks sync log."""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.quickbooks.models import QuickBooksSyncLog
from sleekinvoices.quickbooks.utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


async def log_sync(
    db: AsyncSession,
    user_id: str,
    entity_type: str,
    entity_id: str,
    qb_entity_id: Optional[str],
    action: str,
    status: str,
    error_message: Optional[str] = None,
    request_payload: Optional[Dict[str, Any]] = None,
    response_payload: Optional[Dict[str, Any]] = None,
) -> QuickBooksSyncLog:
    """
    Record one sync attempt.

    Args:
        entity_type: "customer" | "invoice" | "payment"
        entity_id: Local entity ID
        qb_entity_id: QuickBooks entity ID, if one is known
        action: "create" | "update" | "delete"
        status: "success" | "failed" | "pending"
    """
    entry = QuickBooksSyncLog(
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        qb_entity_id=qb_entity_id,
        action=action,
        status=status,
        error_message=error_message,
        request_payload=request_payload,
        response_payload=response_payload,
        synced_at=utcnow(),
    )
    db.add(entry)
    await db.commit()

    if status == "failed":
        logger.error(
            f"QuickBooks {entity_type} {action} failed for {entity_id}: {error_message}"
        )
    return entry


async def get_sync_history(
    db: AsyncSession,
    user_id: str,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> List[QuickBooksSyncLog]:
    """Most recent sync log entries for a user, newest first."""
    result = await db.execute(
        select(QuickBooksSyncLog)
        .where(QuickBooksSyncLog.user_id == user_id)
        .order_by(QuickBooksSyncLog.synced_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
