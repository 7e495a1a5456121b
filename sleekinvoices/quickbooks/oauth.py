"""QuickBooks OAuth2 token management.

Acquires, refreshes and persists per-user QuickBooks tokens.
``QuickBooksOAuth.get_valid_access_token`` is the single place the rest of
the integration obtains credentials from.
"""
import base64
import logging
import secrets
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.quickbooks.config import QuickBooksConfig
from sleekinvoices.quickbooks.errors import TokenExchangeError, TokenRefreshError
from sleekinvoices.quickbooks.models import OAuthState, QuickBooksConnection
from sleekinvoices.quickbooks.results import SyncResult
from sleekinvoices.quickbooks.utils import as_utc, utcnow

logger = logging.getLogger(__name__)

# Access tokens are refreshed slightly before they actually expire
ACCESS_TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)

DEFAULT_ACCESS_TOKEN_TTL = 3600  # seconds
DEFAULT_REFRESH_TOKEN_TTL = 100 * 24 * 3600  # QuickBooks refresh tokens last ~100 days

OAUTH_STATE_TTL = timedelta(minutes=10)


@dataclass
class AccessToken:
    """A usable bearer token and the company it is scoped to."""

    token: str
    realm_id: str


@dataclass
class TokenRefreshResult:
    success: bool
    token: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# OAUTH STATE (CSRF)
# ============================================================================

def generate_state() -> str:
    """Generate a secure random state for OAuth."""
    return secrets.token_urlsafe(32)


async def create_oauth_state(db: AsyncSession, user_id: str) -> str:
    """Persist a new state token for ``user_id`` and return it."""
    state = generate_state()
    db.add(OAuthState(
        state=state,
        user_id=user_id,
        provider="quickbooks",
        expires_at=utcnow() + OAUTH_STATE_TTL,
    ))
    await db.commit()
    return state


async def consume_oauth_state(db: AsyncSession, state: str) -> Optional[str]:
    """Delete a state token and return its user ID, or None if unknown or expired."""
    result = await db.execute(
        select(OAuthState).where(
            OAuthState.state == state,
            OAuthState.provider == "quickbooks",
        )
    )
    record = result.scalar_one_or_none()
    if not record:
        logger.warning(f"OAuth callback with invalid state: {state[:20]}...")
        return None

    user_id = record.user_id
    expired = as_utc(record.expires_at) < utcnow()

    await db.execute(delete(OAuthState).where(OAuthState.id == record.id))
    await db.commit()

    if expired:
        logger.warning(f"OAuth callback with expired state for user: {user_id}")
        return None
    return user_id


# ============================================================================
# TOKEN MANAGER
# ============================================================================

class QuickBooksOAuth:
    """Token lifecycle for QuickBooks connections.

    Args:
        db: Database session used to read and persist connections
        config: Endpoint and credential configuration
        transport: Optional httpx transport (tests pass a MockTransport)
    """

    def __init__(
        self,
        db: AsyncSession,
        config: Optional[QuickBooksConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.config = (config or QuickBooksConfig.from_settings()).validate()
        self.transport = transport

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _basic_auth_header(self) -> str:
        """Generate Basic Auth header for token requests."""
        credentials = f"{self.config.client_id}:{self.config.client_secret}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return f"Basic {encoded}"

    async def _post_token_request(self, url: str, data: Dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(transport=self.transport) as client:
            return await client.post(
                url,
                data=data,
                headers={
                    "Authorization": self._basic_auth_header(),
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
            )

    async def get_connection(self, user_id: str) -> Optional[QuickBooksConnection]:
        result = await self.db.execute(
            select(QuickBooksConnection).where(QuickBooksConnection.user_id == user_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _read_tokens(response: httpx.Response, error_cls: type, label: str) -> Dict[str, Any]:
        """Decode a token endpoint response, raising ``error_cls`` if it is unusable."""
        try:
            body = response.json()
            access_token = body["access_token"]
            return {
                "access_token": access_token,
                "refresh_token": body.get("refresh_token"),
                "expires_in": int(body.get("expires_in", DEFAULT_ACCESS_TOKEN_TTL)),
                "x_refresh_token_expires_in": int(
                    body.get("x_refresh_token_expires_in", DEFAULT_REFRESH_TOKEN_TTL)
                ),
            }
        except KeyError as e:
            raise error_cls(f"{label} failed: no access token returned") from e
        except (ValueError, TypeError, AttributeError) as e:
            raise error_cls(f"{label} failed: malformed token response") from e

    @staticmethod
    def _apply_tokens(connection: QuickBooksConnection, tokens: Dict[str, Any], now: datetime) -> None:
        connection.access_token = tokens["access_token"]
        # QuickBooks rotates the refresh token periodically
        if tokens.get("refresh_token"):
            connection.refresh_token = tokens["refresh_token"]
        connection.token_expires_at = now + timedelta(seconds=tokens["expires_in"])
        connection.refresh_token_expires_at = now + timedelta(
            seconds=tokens["x_refresh_token_expires_in"]
        )

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def get_authorization_url(self, state: str) -> str:
        """Generate the QuickBooks OAuth2 consent URL."""
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": self.config.scopes,
            "state": state,
        }
        return f"{self.config.auth_url}?{urllib.parse.urlencode(params)}"

    async def exchange_code_for_tokens(
        self,
        code: str,
        realm_id: str,
        user_id: str,
    ) -> QuickBooksConnection:
        """
        Exchange an authorization code for tokens and store the connection.

        A user keeps a single connection: an existing row is updated in place
        with the new grant.

        Raises:
            TokenExchangeError: If QuickBooks rejects the code or cannot be reached
        """
        try:
            response = await self._post_token_request(
                self.config.token_url,
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.config.redirect_uri,
                },
            )
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Token exchange failed: {e}") from e

        if response.status_code != 200:
            raise TokenExchangeError(f"Token exchange failed: {response.text}")

        tokens = self._read_tokens(response, TokenExchangeError, "Token exchange")

        now = utcnow()
        connection = await self.get_connection(user_id)
        if connection is None:
            connection = QuickBooksConnection(user_id=user_id)
            self.db.add(connection)

        connection.realm_id = realm_id
        self._apply_tokens(connection, tokens, now)
        connection.is_active = True
        connection.environment = self.config.environment
        connection.sync_error = None

        await self.db.commit()
        logger.info(f"QuickBooks connected for user: {user_id}, realm: {realm_id}")
        return connection

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def _request_refresh(self, refresh_token: str) -> Dict[str, Any]:
        try:
            response = await self._post_token_request(
                self.config.token_url,
                {"grant_type": "refresh_token", "refresh_token": refresh_token},
            )
        except httpx.HTTPError as e:
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

        if response.status_code != 200:
            raise TokenRefreshError(f"Token refresh failed: {response.text}")

        return self._read_tokens(response, TokenRefreshError, "Token refresh")

    async def refresh_access_token(self, user_id: str) -> TokenRefreshResult:
        """Run the refresh-token grant and persist the new tokens.

        Never raises; failures come back as ``TokenRefreshResult(success=False)``.
        """
        connection = await self.get_connection(user_id)
        if connection is None:
            return TokenRefreshResult(success=False, error="No QuickBooks connection found")

        try:
            tokens = await self._request_refresh(connection.refresh_token)
        except TokenRefreshError as e:
            logger.error(f"QuickBooks token refresh error for user {user_id}: {e.message}")
            connection.sync_error = e.message
            await self.db.commit()
            return TokenRefreshResult(success=False, error=e.message)

        self._apply_tokens(connection, tokens, utcnow())
        connection.sync_error = None
        await self.db.commit()

        logger.info(f"QuickBooks access token refreshed for user: {user_id}")
        return TokenRefreshResult(success=True, token=connection.access_token)

    async def get_valid_access_token(self, user_id: str) -> Optional[AccessToken]:
        """
        Return a usable access token, refreshing it if needed.

        Returns None when there is no connection, the connection is inactive,
        the refresh token has expired (the connection is deactivated), or the
        refresh grant fails (the next call tries again).
        """
        connection = await self.get_connection(user_id)
        if connection is None or not connection.is_active:
            return None

        now = utcnow()
        if as_utc(connection.token_expires_at) > now + ACCESS_TOKEN_EXPIRY_BUFFER:
            return AccessToken(token=connection.access_token, realm_id=connection.realm_id)

        if as_utc(connection.refresh_token_expires_at) <= now:
            # Refresh token expired - user must re-authorize
            connection.is_active = False
            connection.sync_error = "Refresh token expired. Please reconnect to QuickBooks."
            await self.db.commit()
            logger.info(f"QuickBooks refresh token expired for user: {user_id}")
            return None

        realm_id = connection.realm_id
        refreshed = await self.refresh_access_token(user_id)
        if refreshed.success and refreshed.token:
            return AccessToken(token=refreshed.token, realm_id=realm_id)
        return None

    # -------------------------------------------------------------------------
    # Status / disconnect
    # -------------------------------------------------------------------------

    async def get_connection_status(self, user_id: str) -> Dict[str, Any]:
        connection = await self.get_connection(user_id)
        if connection is None or not connection.is_active:
            return {
                "connected": False,
                "company_name": None,
                "realm_id": None,
                "environment": None,
                "last_sync_at": None,
            }
        return {
            "connected": True,
            "company_name": connection.company_name,
            "realm_id": connection.realm_id,
            "environment": connection.environment,
            "last_sync_at": as_utc(connection.last_sync_at),
        }

    async def disconnect_quickbooks(self, user_id: str) -> SyncResult:
        """Deactivate the connection. Mappings and sync history are kept."""
        connection = await self.get_connection(user_id)
        if connection is None:
            return SyncResult.ok()

        refresh_token = connection.refresh_token
        connection.is_active = False
        await self.db.commit()
        logger.info(f"QuickBooks disconnected for user: {user_id}")

        await self.revoke_token(refresh_token)
        return SyncResult.ok()

    async def revoke_token(self, token: Optional[str]) -> bool:
        """Revoke a token at QuickBooks. Best effort."""
        if not token:
            return False
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    self.config.revoke_url,
                    json={"token": token},
                    headers={
                        "Authorization": self._basic_auth_header(),
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            logger.warning(f"QuickBooks token revoke failed: {e}")
            return False
        return response.status_code == 200

    async def update_last_sync_time(self, user_id: str) -> None:
        connection = await self.get_connection(user_id)
        if connection is None:
            return
        connection.last_sync_at = utcnow()
        await self.db.commit()
