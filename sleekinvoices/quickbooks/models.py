"""Database models for QuickBooks integration."""
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, DateTime, Text, ForeignKey, Boolean, Integer, Numeric,
    Index, UniqueConstraint,
)
from sqlalchemy.sql import func

from sleekinvoices.database import Base, JSONType
from sleekinvoices.models.base import generate_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuickBooksConnection(Base):
    """QuickBooks connection model - stores OAuth tokens and company info.

    One row per user. Reconnecting updates the row in place, so only the most
    recent grant is kept.
    """

    __tablename__ = "quickbooks_connections"

    id = Column(String, primary_key=True, default=lambda: generate_id("qb"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    # QuickBooks company info (realm_id is QuickBooks' tenant identifier)
    realm_id = Column(String, nullable=False)
    company_name = Column(String, nullable=True)
    environment = Column(String, nullable=False, default="sandbox")  # "sandbox" | "production"

    # OAuth tokens (encrypted in production)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expires_at = Column(DateTime(timezone=True), nullable=False)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=False)  # ~100 days

    # Connection status
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    sync_error = Column(Text, nullable=True)

    # Metadata
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class OAuthState(Base):
    """OAuth state storage - persists CSRF state tokens for the consent flow."""

    __tablename__ = "oauth_states"

    id = Column(String, primary_key=True, default=lambda: generate_id("oauth"))
    state = Column(String, nullable=False, unique=True, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    provider = Column(String, nullable=False, default="quickbooks")

    # States are only valid for a short time
    expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class QuickBooksCustomerMapping(Base):
    """Links a local client to a QuickBooks customer."""

    __tablename__ = "quickbooks_customer_mappings"

    id = Column(String, primary_key=True, default=lambda: generate_id("qbcust"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)

    qb_customer_id = Column(String, nullable=False)
    qb_display_name = Column(String, nullable=True)

    sync_version = Column(Integer, nullable=False, default=1)
    last_synced_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "client_id", name="uq_qb_customer_mapping_client"),
        Index("ix_qb_customer_mapping_qb_id", "user_id", "qb_customer_id"),
    )


class QuickBooksInvoiceMapping(Base):
    """Links a local invoice to a QuickBooks invoice."""

    __tablename__ = "quickbooks_invoice_mappings"

    id = Column(String, primary_key=True, default=lambda: generate_id("qbinv"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)

    qb_invoice_id = Column(String, nullable=False)
    qb_doc_number = Column(String, nullable=True)  # QuickBooks document number, for display

    sync_version = Column(Integer, nullable=False, default=1)
    last_synced_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "invoice_id", name="uq_qb_invoice_mapping_invoice"),
        Index("ix_qb_invoice_mapping_qb_id", "user_id", "qb_invoice_id"),
    )


class QuickBooksPaymentMapping(Base):
    """Links a local payment to a QuickBooks payment.

    sync_direction records which side the payment originated on so inbound
    polling never re-imports a payment that was pushed from here.
    """

    __tablename__ = "quickbooks_payment_mappings"

    id = Column(String, primary_key=True, default=lambda: generate_id("qbpay"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_id = Column(String, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False)

    qb_payment_id = Column(String, nullable=False)
    qb_invoice_id = Column(String, nullable=True)
    sync_direction = Column(String, nullable=False)  # "to_qb" | "from_qb"

    sync_version = Column(Integer, nullable=False, default=1)
    last_synced_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "payment_id", name="uq_qb_payment_mapping_payment"),
        UniqueConstraint("user_id", "qb_payment_id", name="uq_qb_payment_mapping_qb_id"),
    )


class QuickBooksSyncLog(Base):
    """Append-only record of every sync attempt, for debugging and audit."""

    __tablename__ = "quickbooks_sync_log"

    id = Column(String, primary_key=True, default=lambda: generate_id("qbsync"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    entity_type = Column(String, nullable=False)  # "customer" | "invoice" | "payment"
    entity_id = Column(String, nullable=False)
    qb_entity_id = Column(String, nullable=True)
    action = Column(String, nullable=False)  # "create" | "update" | "delete"
    status = Column(String, nullable=False)  # "success" | "failed" | "pending"
    error_message = Column(Text, nullable=True)

    request_payload = Column(JSONType, nullable=True)
    response_payload = Column(JSONType, nullable=True)

    synced_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_qb_sync_log_user_synced", "user_id", "synced_at"),
        Index("ix_qb_sync_log_entity", "entity_type", "entity_id"),
    )


class QuickBooksSyncSettings(Base):
    """Per-user sync configuration. Created lazily with defaults."""

    __tablename__ = "quickbooks_sync_settings"

    id = Column(String, primary_key=True, default=lambda: generate_id("qbset"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)

    auto_sync_invoices = Column(Boolean, nullable=False, default=True)
    auto_sync_payments = Column(Boolean, nullable=False, default=True)
    sync_payments_from_qb = Column(Boolean, nullable=False, default=True)
    min_invoice_amount = Column(Numeric(precision=10, scale=2), nullable=True)
    sync_draft_invoices = Column(Boolean, nullable=False, default=False)

    last_payment_poll_at = Column(DateTime(timezone=True), nullable=True)
    poll_interval_minutes = Column(Integer, nullable=False, default=60)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
