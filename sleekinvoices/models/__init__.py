"""
Consolidated models package.

IMPORTANT: Explicit imports only - no wildcards to prevent circular imports.
"""

# Base utilities
from sleekinvoices.models.base import generate_id

# User model
from sleekinvoices.models.user import User

# Invoicing models (Client, Invoice, InvoiceLineItem, Payment)
from sleekinvoices.models.billing import Client, Invoice, InvoiceLineItem, Payment

__all__ = [
    "generate_id",
    "User",
    "Client",
    "Invoice",
    "InvoiceLineItem",
    "Payment",
]
