"""QuickBooks API Routes.

Endpoints:
- GET /quickbooks/status - Check connection status
- GET /quickbooks/connect - Start OAuth flow
- GET /quickbooks/callback - OAuth callback
- POST /quickbooks/disconnect - Disconnect QuickBooks
- POST /quickbooks/sync/clients[/{client_id}] - Push clients to QuickBooks
- POST /quickbooks/sync/invoices[/{invoice_id}] - Push invoices to QuickBooks
- POST /quickbooks/sync/payments/{payment_id} - Push a payment to QuickBooks
- POST /quickbooks/poll-payments - Import payments from QuickBooks
- GET /quickbooks/clients/{client_id}/sync-status
- GET /quickbooks/invoices/{invoice_id}/sync-status
- GET /quickbooks/sync-history - Recent sync log entries
- GET|PUT /quickbooks/settings - Sync settings
"""
import logging
import urllib.parse
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.config import settings
from sleekinvoices.database import get_db
from sleekinvoices.quickbooks import schemas
from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.config import QuickBooksConfig
from sleekinvoices.quickbooks.customer_sync import (
    get_client_sync_status,
    sync_all_clients_to_qb,
    sync_client_to_qb,
)
from sleekinvoices.quickbooks.errors import (
    ConcurrencyConflict,
    NotFoundError,
    QuickBooksConfigError,
    QuickBooksError,
    TokenExchangeError,
)
from sleekinvoices.quickbooks.invoice_sync import (
    get_invoice_sync_status,
    sync_all_invoices_to_qb,
    sync_invoice_to_qb,
)
from sleekinvoices.quickbooks.oauth import QuickBooksOAuth, consume_oauth_state, create_oauth_state
from sleekinvoices.quickbooks.payment_sync import poll_payments_from_qb, sync_payment_to_qb
from sleekinvoices.quickbooks.results import SyncResult
from sleekinvoices.quickbooks.settings import (
    get_sync_settings,
    sync_settings_to_dict,
    update_sync_settings,
)
from sleekinvoices.quickbooks.sync_log import get_sync_history

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_quickbooks_config() -> QuickBooksConfig:
    return QuickBooksConfig.from_settings()


def get_quickbooks_transport() -> Optional[httpx.AsyncBaseTransport]:
    """HTTP transport for QuickBooks calls. None means the real network."""
    return None


def _build_oauth(
    db: AsyncSession,
    config: QuickBooksConfig,
    transport: Optional[httpx.AsyncBaseTransport],
) -> QuickBooksOAuth:
    try:
        return QuickBooksOAuth(db, config=config, transport=transport)
    except QuickBooksConfigError as e:
        raise HTTPException(status_code=503, detail=e.message)


def _build_client(
    db: AsyncSession,
    user_id: str,
    config: QuickBooksConfig,
    transport: Optional[httpx.AsyncBaseTransport],
) -> QuickBooksClient:
    try:
        return QuickBooksClient(db, user_id, config=config, transport=transport)
    except QuickBooksConfigError as e:
        raise HTTPException(status_code=503, detail=e.message)


_ERROR_STATUS = {
    NotFoundError.code: 404,
    ConcurrencyConflict.code: 409,
    QuickBooksConfigError.code: 503,
}


def _sync_response(result: SyncResult) -> schemas.SyncResultResponse:
    """Return the result, or raise the HTTP error matching its code."""
    if not result.success:
        raise HTTPException(
            status_code=_ERROR_STATUS.get(result.error_code, 400),
            detail=result.error,
        )
    return schemas.SyncResultResponse(**result.to_dict())


# ============================================================================
# CONNECTION STATUS
# ============================================================================

@router.get("/status", response_model=schemas.QuickBooksConnectionStatus)
async def get_quickbooks_status(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    """
    Get the current QuickBooks connection status for a user.
    """
    if not config.is_configured:
        return schemas.QuickBooksConnectionStatus(configured=False, connected=False)

    oauth = _build_oauth(db, config, transport)
    status = await oauth.get_connection_status(user_id)
    return schemas.QuickBooksConnectionStatus(configured=True, **status)


# ============================================================================
# OAUTH FLOW
# ============================================================================

@router.get("/connect", response_model=schemas.QuickBooksAuthUrl)
async def connect_quickbooks(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    """
    Start the QuickBooks OAuth flow.
    Returns the authorization URL to redirect the user to.
    """
    if not config.is_configured:
        raise HTTPException(
            status_code=503,
            detail="QuickBooks credentials not configured. Please set QUICKBOOKS_CLIENT_ID, "
                   "QUICKBOOKS_CLIENT_SECRET and QUICKBOOKS_REDIRECT_URI."
        )

    oauth = _build_oauth(db, config, transport)
    state = await create_oauth_state(db, user_id)

    return schemas.QuickBooksAuthUrl(
        auth_url=oauth.get_authorization_url(state),
        state=state
    )


@router.get("/callback")
async def quickbooks_callback(
    code: str = Query(...),
    state: str = Query(...),
    realmId: str = Query(...),  # QuickBooks passes company ID as realmId
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    """
    OAuth callback endpoint.
    Exchanges the authorization code for tokens and stores the connection.
    """
    user_id = await consume_oauth_state(db, state)
    if not user_id:
        raise HTTPException(
            status_code=400,
            detail="Invalid or expired state parameter"
        )

    oauth = _build_oauth(db, config, transport)
    try:
        connection = await oauth.exchange_code_for_tokens(code, realmId, user_id)
    except TokenExchangeError as e:
        logger.error(f"QuickBooks token exchange failed for user {user_id}: {e.message}")
        query = urllib.parse.urlencode({"quickbooks_error": e.message})
        return RedirectResponse(url=f"{settings.FRONTEND_URL}?{query}")

    # Fetch company info to get the name
    try:
        qb_client = _build_client(db, user_id, config, transport)
        company_info = await qb_client.get_company_info()
        connection.company_name = company_info.get("company_name") or "QuickBooks Company"
        await db.commit()
    except QuickBooksError as e:
        logger.warning(f"Could not fetch QuickBooks company info for user {user_id}: {e.message}")

    query = urllib.parse.urlencode({
        "quickbooks_connected": "true",
        "company": connection.company_name or "QuickBooks",
    })
    return RedirectResponse(url=f"{settings.FRONTEND_URL}?{query}")


@router.post("/disconnect")
async def disconnect_quickbooks(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    """
    Disconnect QuickBooks integration for a user.
    Mappings and sync history are kept, so reconnecting resumes where it left off.
    """
    oauth = _build_oauth(db, config, transport)
    await oauth.disconnect_quickbooks(user_id)
    return {"success": True, "message": "QuickBooks disconnected successfully"}


# ============================================================================
# OUTBOUND SYNC
# ============================================================================

@router.post("/sync/clients/{client_id}", response_model=schemas.SyncResultResponse)
async def sync_client(
    client_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    qb_client = _build_client(db, user_id, config, transport)
    result = await sync_client_to_qb(db, user_id, client_id, qb_client=qb_client)
    return _sync_response(result)


@router.post("/sync/clients", response_model=schemas.BatchSyncResponse)
async def sync_all_clients(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    qb_client = _build_client(db, user_id, config, transport)
    result = await sync_all_clients_to_qb(db, user_id, qb_client=qb_client)
    return schemas.BatchSyncResponse(**result.to_dict())


@router.post("/sync/invoices/{invoice_id}", response_model=schemas.SyncResultResponse)
async def sync_invoice(
    invoice_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    """
    Push an invoice to QuickBooks. Its client is synced first if needed.
    """
    qb_client = _build_client(db, user_id, config, transport)
    result = await sync_invoice_to_qb(db, user_id, invoice_id, qb_client=qb_client)
    return _sync_response(result)


@router.post("/sync/invoices", response_model=schemas.BatchSyncResponse)
async def sync_all_invoices(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    qb_client = _build_client(db, user_id, config, transport)
    result = await sync_all_invoices_to_qb(db, user_id, qb_client=qb_client)
    return schemas.BatchSyncResponse(**result.to_dict())


@router.post("/sync/payments/{payment_id}", response_model=schemas.SyncResultResponse)
async def sync_payment(
    payment_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    """
    Push a payment to QuickBooks. Its invoice must already be synced.
    """
    qb_client = _build_client(db, user_id, config, transport)
    result = await sync_payment_to_qb(db, user_id, payment_id, qb_client=qb_client)
    return _sync_response(result)


# ============================================================================
# INBOUND SYNC
# ============================================================================

@router.post("/poll-payments", response_model=schemas.PollResultResponse)
async def poll_payments(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
    config: QuickBooksConfig = Depends(get_quickbooks_config),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_quickbooks_transport),
):
    """
    Import payments recorded in QuickBooks since the last poll.
    """
    qb_client = _build_client(db, user_id, config, transport)
    result = await poll_payments_from_qb(db, user_id, qb_client=qb_client)
    return schemas.PollResultResponse(**result.to_dict())


# ============================================================================
# SYNC STATUS & HISTORY
# ============================================================================

@router.get("/clients/{client_id}/sync-status", response_model=schemas.ClientSyncStatus)
async def client_sync_status(
    client_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    return schemas.ClientSyncStatus(**await get_client_sync_status(db, user_id, client_id))


@router.get("/invoices/{invoice_id}/sync-status", response_model=schemas.InvoiceSyncStatus)
async def invoice_sync_status(
    invoice_id: str,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    return schemas.InvoiceSyncStatus(**await get_invoice_sync_status(db, user_id, invoice_id))


@router.get("/sync-history", response_model=List[schemas.SyncLogEntry])
async def sync_history(
    user_id: str = Query(...),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """
    Get sync history for a user, newest first.
    """
    return await get_sync_history(db, user_id, limit=limit)


# ============================================================================
# SETTINGS
# ============================================================================

@router.get("/settings", response_model=schemas.SyncSettingsResponse)
async def get_settings(
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    sync_settings = await get_sync_settings(db, user_id)
    return schemas.SyncSettingsResponse(**sync_settings_to_dict(sync_settings))


@router.put("/settings", response_model=schemas.SyncSettingsResponse)
async def update_settings(
    update: schemas.SyncSettingsUpdate,
    user_id: str = Query(...),
    db: AsyncSession = Depends(get_db),
):
    result = await update_sync_settings(db, user_id, update.model_dump(exclude_unset=True))
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)

    sync_settings = await get_sync_settings(db, user_id)
    return schemas.SyncSettingsResponse(**sync_settings_to_dict(sync_settings))
