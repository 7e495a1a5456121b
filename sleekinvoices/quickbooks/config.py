"""QuickBooks endpoint and credential configuration."""
from dataclasses import dataclass
from typing import Optional

from sleekinvoices.config import Settings, settings as app_settings
from sleekinvoices.quickbooks.errors import QuickBooksConfigError


# ============================================================================
# OAUTH2 / API ENDPOINTS
# ============================================================================

QUICKBOOKS_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
QUICKBOOKS_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QUICKBOOKS_REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"

QUICKBOOKS_API_BASE = {
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
    "production": "https://quickbooks.api.intuit.com",
}


@dataclass(frozen=True)
class QuickBooksConfig:
    """Everything the OAuth manager and API client need to reach QuickBooks.

    Built once from application settings and passed in explicitly, so tests
    can point at sandbox or production endpoints without touching the
    environment.
    """

    client_id: str
    client_secret: str
    redirect_uri: str
    environment: str = "sandbox"
    scopes: str = "com.intuit.quickbooks.accounting openid"
    auth_url: str = QUICKBOOKS_AUTH_URL
    token_url: str = QUICKBOOKS_TOKEN_URL
    revoke_url: str = QUICKBOOKS_REVOKE_URL
    api_base_url: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "QuickBooksConfig":
        settings = settings or app_settings
        return cls(
            client_id=settings.QUICKBOOKS_CLIENT_ID,
            client_secret=settings.QUICKBOOKS_CLIENT_SECRET,
            redirect_uri=settings.QUICKBOOKS_REDIRECT_URI,
            environment=settings.QUICKBOOKS_ENVIRONMENT or "sandbox",
            scopes=settings.QUICKBOOKS_SCOPES,
        )

    @property
    def is_configured(self) -> bool:
        """True when client ID, client secret and redirect URI are all set."""
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    @property
    def base_url(self) -> str:
        """API base URL for the configured environment."""
        if self.api_base_url:
            return self.api_base_url.rstrip("/")
        return QUICKBOOKS_API_BASE[self.environment]

    def validate(self) -> "QuickBooksConfig":
        """Raise QuickBooksConfigError unless the config can talk to QuickBooks."""
        if not self.client_id or not self.client_secret:
            raise QuickBooksConfigError("QuickBooks OAuth credentials not configured")
        if self.environment not in QUICKBOOKS_API_BASE:
            raise QuickBooksConfigError(
                f"Unknown QuickBooks environment: {self.environment!r}"
            )
        return self


def is_quickbooks_configured(config: Optional[QuickBooksConfig] = None) -> bool:
    """Check whether the QuickBooks integration has its minimum credentials."""
    return (config or QuickBooksConfig.from_settings()).is_configured
