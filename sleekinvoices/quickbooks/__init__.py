"""QuickBooks Online integration module.

Provides OAuth2 token management, an authenticated API client, and two-way
sync of clients, invoices and payments with QuickBooks Online.
"""

from sleekinvoices.quickbooks.models import (
    QuickBooksConnection,
    QuickBooksCustomerMapping,
    QuickBooksInvoiceMapping,
    QuickBooksPaymentMapping,
    QuickBooksSyncLog,
    QuickBooksSyncSettings,
)
from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.config import QuickBooksConfig, is_quickbooks_configured
from sleekinvoices.quickbooks.oauth import QuickBooksOAuth

__all__ = [
    "QuickBooksConnection",
    "QuickBooksCustomerMapping",
    "QuickBooksInvoiceMapping",
    "QuickBooksPaymentMapping",
    "QuickBooksSyncLog",
    "QuickBooksSyncSettings",
    "QuickBooksClient",
    "QuickBooksConfig",
    "QuickBooksOAuth",
    "is_quickbooks_configured",
]
