"""Core invoicing models read and written by the QuickBooks sync layer.

These tables are owned by the rest of the application (client, invoice and
payment CRUD). Only the columns the sync layer touches are declared here.
"""
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Integer, Numeric
from sqlalchemy.sql import func

from sleekinvoices.database import Base
from sleekinvoices.models.base import generate_id


class Client(Base):
    """Client model - the party an invoice is billed to."""

    __tablename__ = "clients"

    id = Column(String, primary_key=True, default=lambda: generate_id("client"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(Text, nullable=False)
    email = Column(String(320), nullable=True)
    company_name = Column(Text, nullable=True)
    address = Column(Text, nullable=True)  # Multi-line, newline separated
    phone = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Invoice(Base):
    """Invoice model."""

    __tablename__ = "invoices"

    id = Column(String, primary_key=True, default=lambda: generate_id("inv"))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)

    invoice_number = Column(String(50), nullable=False)
    status = Column(String, nullable=False, default="draft")  # "draft" | "sent" | "paid" | "overdue" | "canceled"

    currency = Column(String(3), nullable=False, default="USD")
    subtotal = Column(Numeric(precision=10, scale=2), nullable=False, default=0)
    total = Column(Numeric(precision=10, scale=2), nullable=False)
    amount_paid = Column(Numeric(precision=10, scale=2), nullable=False, default=0)

    notes = Column(Text, nullable=True)
    payment_terms = Column(Text, nullable=True)

    issue_date = Column(DateTime(timezone=True), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class InvoiceLineItem(Base):
    """A single billable line on an invoice."""

    __tablename__ = "invoice_line_items"

    id = Column(String, primary_key=True, default=lambda: generate_id("line"))
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)

    description = Column(Text, nullable=False)
    quantity = Column(Numeric(precision=10, scale=2), nullable=False)
    rate = Column(Numeric(precision=10, scale=2), nullable=False)
    amount = Column(Numeric(precision=10, scale=2), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Payment(Base):
    """Payment recorded against an invoice."""

    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: generate_id("pay"))
    invoice_id = Column(String, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Numeric(precision=10, scale=2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    payment_method = Column(String, nullable=False)  # "stripe" | "manual" | "bank_transfer" | "check" | "cash"

    payment_date = Column(DateTime(timezone=True), nullable=False)
    received_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default="completed")  # "pending" | "completed" | "failed" | "refunded"
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
