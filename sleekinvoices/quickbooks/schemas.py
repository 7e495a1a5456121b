"""Pydantic schemas for the QuickBooks routes."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List
from datetime import datetime
from decimal import Decimal

from sleekinvoices.quickbooks.settings import MAX_POLL_INTERVAL_MINUTES, MIN_POLL_INTERVAL_MINUTES


# ============================================================================
# CONNECTION SCHEMAS
# ============================================================================

class QuickBooksConnectionStatus(BaseModel):
    """Status of QuickBooks connection."""
    configured: bool
    connected: bool
    company_name: Optional[str] = None
    realm_id: Optional[str] = None
    environment: Optional[str] = None
    last_sync_at: Optional[datetime] = None


class QuickBooksAuthUrl(BaseModel):
    """Authorization URL for OAuth flow."""
    auth_url: str
    state: str


# ============================================================================
# SYNC SCHEMAS
# ============================================================================

class SyncResultResponse(BaseModel):
    """Result of a single-entity sync."""
    success: bool
    qb_entity_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class BatchSyncResponse(BaseModel):
    """Result of a batch sync."""
    synced: int
    failed: int
    errors: List[str] = []


class PollResultResponse(BaseModel):
    """Result of an inbound payment poll."""
    success: bool
    synced: int
    errors: List[str] = []


class ClientSyncStatus(BaseModel):
    synced: bool
    qb_customer_id: Optional[str] = None
    qb_display_name: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    sync_version: Optional[int] = None


class InvoiceSyncStatus(BaseModel):
    synced: bool
    qb_invoice_id: Optional[str] = None
    qb_doc_number: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    sync_version: Optional[int] = None


class SyncLogEntry(BaseModel):
    """One row of the sync history."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    entity_type: str
    entity_id: str
    qb_entity_id: Optional[str] = None
    action: str
    status: str
    error_message: Optional[str] = None
    request_payload: Optional[Dict[str, Any]] = None
    response_payload: Optional[Dict[str, Any]] = None
    synced_at: datetime


# ============================================================================
# SETTINGS SCHEMAS
# ============================================================================

class SyncSettingsResponse(BaseModel):
    auto_sync_invoices: bool
    auto_sync_payments: bool
    sync_payments_from_qb: bool
    min_invoice_amount: Optional[Decimal] = None
    sync_draft_invoices: bool
    last_payment_poll_at: Optional[datetime] = None
    poll_interval_minutes: int


class SyncSettingsUpdate(BaseModel):
    """Partial settings update; omitted fields are left unchanged."""
    auto_sync_invoices: Optional[bool] = None
    auto_sync_payments: Optional[bool] = None
    sync_payments_from_qb: Optional[bool] = None
    min_invoice_amount: Optional[Decimal] = Field(default=None, ge=0)
    sync_draft_invoices: Optional[bool] = None
    poll_interval_minutes: Optional[int] = Field(
        default=None,
        ge=MIN_POLL_INTERVAL_MINUTES,
        le=MAX_POLL_INTERVAL_MINUTES,
    )
