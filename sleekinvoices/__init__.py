"""SleekInvoices backend."""
