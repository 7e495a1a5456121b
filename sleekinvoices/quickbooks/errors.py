"""Error types for the QuickBooks integration.

Public sync functions do not raise these across their boundary. They are
raised internally, caught at the top of each sync function, logged to the
sync log and returned as a failed result carrying ``code``.
"""
from typing import Optional


class QuickBooksError(Exception):
    """Base class for all QuickBooks integration errors."""

    code = "QB_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


# Configuration ---------------------------------------------------------------

class QuickBooksConfigError(QuickBooksError):
    """OAuth credentials are missing or the environment is unknown."""

    code = "NOT_CONFIGURED"


# Authentication / connection -------------------------------------------------

class NotConnectedError(QuickBooksError):
    """No active connection, or its refresh token has expired."""

    code = "NOT_CONNECTED"


class TokenExchangeError(QuickBooksError):
    """The authorization code was rejected by QuickBooks."""

    code = "TOKEN_EXCHANGE_FAILED"


class TokenRefreshError(QuickBooksError):
    """The refresh-token grant failed."""

    code = "TOKEN_REFRESH_FAILED"


# Vendor faults ---------------------------------------------------------------

class QuickBooksFault(QuickBooksError):
    """QuickBooks answered with a Fault envelope (validation, duplicate name, ...)."""


class ConcurrencyConflict(QuickBooksFault):
    """An update was sent with a stale SyncToken."""

    code = "CONCURRENCY_CONFLICT"


# Transport -------------------------------------------------------------------

class QuickBooksTransportError(QuickBooksError):
    """Network failure, or a non-2xx response without a parseable fault."""

    code = "API_ERROR"


# Local preconditions ---------------------------------------------------------

class SyncPreconditionError(QuickBooksError):
    """Local data is not in a state that can be synced."""

    code = "PRECONDITION_FAILED"


class NotFoundError(SyncPreconditionError):
    """A local entity does not exist (or belongs to another user)."""

    code = "NOT_FOUND"
