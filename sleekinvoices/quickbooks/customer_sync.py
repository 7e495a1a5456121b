"""QuickBooks customer sync.

Pushes local clients to QuickBooks customers. A client is linked to at most
one customer through ``QuickBooksCustomerMapping``; before creating a new
customer we look for an existing one by email and then by display name, so
customers entered by hand in QuickBooks are reused instead of duplicated.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.models import Client
from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.errors import NotFoundError, QuickBooksError
from sleekinvoices.quickbooks.models import QuickBooksCustomerMapping
from sleekinvoices.quickbooks.results import BatchSyncResult, SyncResult
from sleekinvoices.quickbooks.sync_log import log_sync
from sleekinvoices.quickbooks.utils import as_utc, escape_query_value, truncate, utcnow

logger = logging.getLogger(__name__)

# QuickBooks field length limits
DISPLAY_NAME_MAX_LENGTH = 100
COMPANY_NAME_MAX_LENGTH = 100
ADDRESS_LINE_MAX_LENGTH = 500


# ============================================================================
# MAPPING HELPERS
# ============================================================================

def client_to_qb_customer(client: Client) -> Dict[str, Any]:
    """Build the QuickBooks Customer payload for a local client."""
    display_name = client.company_name or client.name or f"Client {client.id}"
    customer: Dict[str, Any] = {
        "DisplayName": truncate(display_name, DISPLAY_NAME_MAX_LENGTH),
        "Active": True,
    }
    if client.company_name:
        customer["CompanyName"] = truncate(client.company_name, COMPANY_NAME_MAX_LENGTH)
    if client.email:
        customer["PrimaryEmailAddr"] = {"Address": client.email}
    if client.phone:
        customer["PrimaryPhone"] = {"FreeFormNumber": client.phone}
    if client.address:
        # Only the first line of the local address is sent
        first_line = client.address.split("\n")[0]
        customer["BillAddr"] = {"Line1": truncate(first_line, ADDRESS_LINE_MAX_LENGTH)}
    return customer


async def find_qb_customer(
    qb_client: QuickBooksClient,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Look for an existing QuickBooks customer, by email first, then by display name.

    Raises:
        QuickBooksError: If a lookup query fails. A failed lookup is not
            treated as "no match", since that could create a duplicate.
    """
    if email:
        response = await qb_client.query(
            f"SELECT * FROM Customer WHERE PrimaryEmailAddr = '{escape_query_value(email)}'"
        )
        response.raise_for_error()
        if response.data:
            return response.data[0]

    if display_name:
        response = await qb_client.query(
            f"SELECT * FROM Customer WHERE DisplayName = '{escape_query_value(display_name)}'"
        )
        response.raise_for_error()
        if response.data:
            return response.data[0]

    return None


async def get_customer_mapping(
    db: AsyncSession,
    user_id: str,
    client_id: str,
) -> Optional[QuickBooksCustomerMapping]:
    result = await db.execute(
        select(QuickBooksCustomerMapping).where(
            QuickBooksCustomerMapping.user_id == user_id,
            QuickBooksCustomerMapping.client_id == client_id,
        )
    )
    return result.scalar_one_or_none()


async def _get_client(db: AsyncSession, user_id: str, client_id: str) -> Optional[Client]:
    result = await db.execute(
        select(Client).where(Client.id == client_id, Client.user_id == user_id)
    )
    return result.scalar_one_or_none()


# ============================================================================
# SYNC
# ============================================================================

async def sync_client_to_qb(
    db: AsyncSession,
    user_id: str,
    client_id: str,
    qb_client: Optional[QuickBooksClient] = None,
) -> SyncResult:
    """
    Push one client to QuickBooks.

    Updates the mapped customer if the client was synced before; otherwise
    links to a matching existing customer, or creates a new one.

    If the lookup for an existing customer fails, the sync fails rather than
    risk a duplicate, so a QuickBooks query outage blocks new customers.

    Args:
        db: Database session
        user_id: Owner of the client and the QuickBooks connection
        client_id: Local client ID
        qb_client: API client to use (one is built for ``user_id`` if omitted)

    Returns:
        SyncResult with the QuickBooks customer ID on success
    """
    client = await _get_client(db, user_id, client_id)
    if client is None:
        return SyncResult.from_error(NotFoundError("Client not found"))

    mapping = await get_customer_mapping(db, user_id, client_id)
    mapped_qb_id = mapping.qb_customer_id if mapping else None
    action = "update" if mapping else "create"
    customer_data = client_to_qb_customer(client)

    try:
        qb = qb_client or QuickBooksClient(db, user_id)
        if mapping:
            return await _update_customer(db, qb, user_id, client_id, mapping, customer_data)
        return await _create_customer(db, qb, user_id, client, customer_data)

    except QuickBooksError as e:
        await log_sync(db, user_id, "customer", client_id, mapped_qb_id, action, "failed", e.message)
        return SyncResult.from_error(e)

    except Exception as e:
        logger.exception(f"Error syncing client {client_id} to QuickBooks")
        await log_sync(db, user_id, "customer", client_id, mapped_qb_id, action, "failed", str(e))
        return SyncResult.failure(str(e), "SYNC_ERROR")


async def _update_customer(
    db: AsyncSession,
    qb: QuickBooksClient,
    user_id: str,
    client_id: str,
    mapping: QuickBooksCustomerMapping,
    customer_data: Dict[str, Any],
) -> SyncResult:
    qb_customer_id = mapping.qb_customer_id
    sync_token = await qb.get_sync_token("Customer", qb_customer_id)

    update_data = {
        **customer_data,
        "Id": qb_customer_id,
        "SyncToken": sync_token,
        "sparse": True,
    }
    response = await qb.update_entity("Customer", update_data)
    if not response.success:
        await log_sync(
            db, user_id, "customer", client_id, qb_customer_id, "update", "failed",
            response.error, request_payload=update_data,
        )
        return SyncResult.failure(response.error, response.error_code)

    async with db.begin_nested():
        mapping.qb_display_name = (response.data or {}).get("DisplayName", mapping.qb_display_name)
        mapping.sync_version = mapping.sync_version + 1
        mapping.last_synced_at = utcnow()
    await db.commit()

    await log_sync(
        db, user_id, "customer", client_id, qb_customer_id, "update", "success",
        request_payload=update_data, response_payload=response.data,
    )
    await qb.oauth.update_last_sync_time(user_id)
    return SyncResult.ok(qb_customer_id)


async def _create_customer(
    db: AsyncSession,
    qb: QuickBooksClient,
    user_id: str,
    client: Client,
    customer_data: Dict[str, Any],
) -> SyncResult:
    client_id = client.id

    existing = await find_qb_customer(qb, client.email, customer_data["DisplayName"])
    if existing:
        async with db.begin_nested():
            db.add(QuickBooksCustomerMapping(
                user_id=user_id,
                client_id=client_id,
                qb_customer_id=existing["Id"],
                qb_display_name=existing.get("DisplayName"),
                sync_version=1,
                last_synced_at=utcnow(),
            ))
        await db.commit()

        await log_sync(
            db, user_id, "customer", client_id, existing["Id"], "create", "success",
            request_payload={"matched": True}, response_payload=existing,
        )
        await qb.oauth.update_last_sync_time(user_id)
        logger.info(f"Matched client {client_id} to existing QuickBooks customer {existing['Id']}")
        return SyncResult.ok(existing["Id"])

    response = await qb.create_entity("Customer", customer_data)
    if not response.success or not response.data:
        error = response.error or "QuickBooks returned no customer"
        await log_sync(
            db, user_id, "customer", client_id, None, "create", "failed",
            error, request_payload=customer_data,
        )
        return SyncResult.failure(error, response.error_code)

    qb_customer_id = response.data["Id"]
    async with db.begin_nested():
        db.add(QuickBooksCustomerMapping(
            user_id=user_id,
            client_id=client_id,
            qb_customer_id=qb_customer_id,
            qb_display_name=response.data.get("DisplayName"),
            sync_version=1,
            last_synced_at=utcnow(),
        ))
    await db.commit()

    await log_sync(
        db, user_id, "customer", client_id, qb_customer_id, "create", "success",
        request_payload=customer_data, response_payload=response.data,
    )
    await qb.oauth.update_last_sync_time(user_id)
    return SyncResult.ok(qb_customer_id)


async def sync_all_clients_to_qb(
    db: AsyncSession,
    user_id: str,
    qb_client: Optional[QuickBooksClient] = None,
) -> BatchSyncResult:
    """Sync every client of a user, one at a time. A failure never stops the batch."""
    result = await db.execute(
        select(Client.id).where(Client.user_id == user_id).order_by(Client.name, Client.id)
    )
    client_ids = list(result.scalars().all())

    batch = BatchSyncResult()
    for client_id in client_ids:
        sync_result = await sync_client_to_qb(db, user_id, client_id, qb_client=qb_client)
        if sync_result.success:
            batch.synced += 1
        else:
            batch.failed += 1
            batch.errors.append(f"Client {client_id}: {sync_result.error}")

    logger.info(
        f"QuickBooks client sync for user {user_id}: "
        f"{batch.synced} synced, {batch.failed} failed"
    )
    return batch


async def get_client_sync_status(
    db: AsyncSession,
    user_id: str,
    client_id: str,
) -> Dict[str, Any]:
    mapping = await get_customer_mapping(db, user_id, client_id)
    if mapping is None:
        return {
            "synced": False,
            "qb_customer_id": None,
            "qb_display_name": None,
            "last_synced_at": None,
            "sync_version": None,
        }
    return {
        "synced": True,
        "qb_customer_id": mapping.qb_customer_id,
        "qb_display_name": mapping.qb_display_name,
        "last_synced_at": as_utc(mapping.last_synced_at),
        "sync_version": mapping.sync_version,
    }
