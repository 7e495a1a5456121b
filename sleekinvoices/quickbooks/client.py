"""QuickBooks API client wrapper.

A thin authenticated wrapper around the QuickBooks Online Accounting API.
Every call goes through ``QuickBooksOAuth.get_valid_access_token`` and comes
back as a ``QBApiResponse``: vendor ``Fault`` envelopes and transport errors
are normalized into the same failure shape.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from sleekinvoices.quickbooks.config import QuickBooksConfig
from sleekinvoices.quickbooks.errors import (
    ConcurrencyConflict,
    NotConnectedError,
    QuickBooksFault,
    QuickBooksTransportError,
)
from sleekinvoices.quickbooks.oauth import QuickBooksOAuth

logger = logging.getLogger(__name__)

# Keys QuickBooks puts next to the entity array in a QueryResponse
QUERY_METADATA_KEYS = ("startPosition", "maxResults", "totalCount")

# Fault code for "Stale Object Error" (update sent with an old SyncToken)
STALE_OBJECT_FAULT_CODE = "5010"


@dataclass
class QBApiResponse:
    """Uniform result of a QuickBooks API call."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def raise_for_error(self) -> "QBApiResponse":
        """Raise the typed error for a failed response; return self otherwise."""
        if self.success:
            return self
        message = self.error or "QuickBooks API error"
        code = self.error_code or "QB_ERROR"
        if code == NotConnectedError.code:
            raise NotConnectedError(message)
        if code == ConcurrencyConflict.code:
            raise ConcurrencyConflict(message)
        if code == QuickBooksTransportError.code or code.startswith("HTTP_"):
            raise QuickBooksTransportError(message, code)
        raise QuickBooksFault(message, code)


def unwrap_query_response(query_response: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Extract the entity list from a QueryResponse envelope.

    QuickBooks nests results under a key named after the entity type
    (``{"Customer": [...], "startPosition": 1, "maxResults": 1}``). The first
    key that is not a metadata key holds the entities.
    """
    if not query_response:
        return []
    for key, value in query_response.items():
        if key not in QUERY_METADATA_KEYS:
            return value or []
    return []


def _parse_fault(payload: Dict[str, Any]) -> Optional[QBApiResponse]:
    # Business-rule faults use "Fault"/"Error"; auth faults come back lowercase
    fault = payload.get("Fault") or payload.get("fault")
    if not fault:
        return None

    errors = fault.get("Error") or fault.get("error") or []
    first = errors[0] if errors else {}
    message = first.get("Message") or first.get("message") or "QuickBooks API error"
    detail = first.get("Detail") or first.get("detail")
    code = str(first.get("code") or "QB_ERROR")

    if code == STALE_OBJECT_FAULT_CODE:
        code = ConcurrencyConflict.code

    return QBApiResponse(
        success=False,
        error=f"{message}: {detail}" if detail and detail != message else message,
        error_code=code,
    )


class QuickBooksClient:
    """QuickBooks API client for one user, with automatic token management.

    Args:
        db: Database session (used by the token manager)
        user_id: Owner of the QuickBooks connection
        config: Endpoint and credential configuration
        transport: Optional httpx transport (tests pass a MockTransport)
    """

    def __init__(
        self,
        db: AsyncSession,
        user_id: str,
        config: Optional[QuickBooksConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.user_id = user_id
        self.oauth = QuickBooksOAuth(db, config=config, transport=transport)
        self.config = self.oauth.config
        self.transport = transport

    def _get_url(self, realm_id: str, endpoint: str) -> str:
        """Build full API URL."""
        return f"{self.config.base_url}/v3/company/{realm_id}{endpoint}"

    # -------------------------------------------------------------------------
    # Core request
    # -------------------------------------------------------------------------

    async def make_api_call(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> QBApiResponse:
        """
        Issue an authenticated call and normalize the outcome.

        Args:
            endpoint: Path below the company, e.g. "/customer/42"
            method: HTTP method
            body: JSON body for POST calls
            params: Query string parameters

        Returns:
            QBApiResponse; ``error_code`` is NOT_CONNECTED, API_ERROR,
            HTTP_<status>, CONCURRENCY_CONFLICT or the vendor's fault code.
        """
        access = await self.oauth.get_valid_access_token(self.user_id)
        if access is None:
            return QBApiResponse(
                success=False,
                error="Not connected to QuickBooks",
                error_code=NotConnectedError.code,
            )

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.request(
                    method,
                    self._get_url(access.realm_id, endpoint),
                    headers={
                        "Authorization": f"Bearer {access.token}",
                        "Accept": "application/json",
                        "Content-Type": "application/json",
                    },
                    params=params,
                    json=body,
                )
        except httpx.HTTPError as e:
            logger.error(f"QuickBooks API call error ({method} {endpoint}): {e}")
            return QBApiResponse(
                success=False,
                error=str(e) or "Failed to call QuickBooks API",
                error_code=QuickBooksTransportError.code,
            )

        try:
            payload = response.json() if response.content else None
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            fault = _parse_fault(payload)
            if fault:
                logger.error(
                    f"QuickBooks fault ({method} {endpoint}): "
                    f"{fault.error_code} - {fault.error}"
                )
                return fault

        if not response.is_success:
            logger.error(f"QuickBooks API error ({method} {endpoint}): {response.status_code}")
            return QBApiResponse(
                success=False,
                error=f"QuickBooks API error: {response.status_code} - {response.text[:500]}",
                error_code=f"HTTP_{response.status_code}",
            )

        return QBApiResponse(success=True, data=payload)

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    async def query(self, query: str) -> QBApiResponse:
        """Execute a QuickBooks query; ``data`` is the list of entities."""
        response = await self.make_api_call("/query", "GET", params={"query": query})
        if not response.success:
            return response

        query_response = (response.data or {}).get("QueryResponse")
        return QBApiResponse(success=True, data=unwrap_query_response(query_response))

    # -------------------------------------------------------------------------
    # Single-entity CRUD
    # -------------------------------------------------------------------------

    @staticmethod
    def _unwrap_entity(response: QBApiResponse, entity_type: str) -> QBApiResponse:
        if not response.success:
            return response
        return QBApiResponse(success=True, data=(response.data or {}).get(entity_type))

    async def get_entity(self, entity_type: str, entity_id: str) -> QBApiResponse:
        response = await self.make_api_call(f"/{entity_type.lower()}/{entity_id}", "GET")
        return self._unwrap_entity(response, entity_type)

    async def create_entity(self, entity_type: str, data: Dict[str, Any]) -> QBApiResponse:
        response = await self.make_api_call(f"/{entity_type.lower()}", "POST", body=data)
        return self._unwrap_entity(response, entity_type)

    async def update_entity(self, entity_type: str, data: Dict[str, Any]) -> QBApiResponse:
        """Send an update. ``data`` must carry ``Id`` and the current ``SyncToken``."""
        response = await self.make_api_call(
            f"/{entity_type.lower()}", "POST", body=data, params={"operation": "update"}
        )
        return self._unwrap_entity(response, entity_type)

    async def delete_entity(self, entity_type: str, entity_id: str, sync_token: str) -> QBApiResponse:
        return await self.make_api_call(
            f"/{entity_type.lower()}",
            "POST",
            body={"Id": entity_id, "SyncToken": sync_token},
            params={"operation": "delete"},
        )

    async def get_sync_token(self, entity_type: str, entity_id: str) -> str:
        """
        Fetch the current SyncToken for an entity, right before an update.

        Raises:
            QuickBooksError: The typed error for a failed fetch
        """
        current = (await self.get_entity(entity_type, entity_id)).raise_for_error()
        if not current.data:
            raise QuickBooksFault(
                f"Failed to fetch existing {entity_type.lower()} from QuickBooks"
            )
        return current.data.get("SyncToken")

    # -------------------------------------------------------------------------
    # Company Info
    # -------------------------------------------------------------------------

    async def get_company_info(self) -> Dict[str, Any]:
        """Get company information."""
        response = await self.query("SELECT * FROM CompanyInfo")
        response.raise_for_error()
        companies = response.data or []
        company = companies[0] if companies else {}
        return {
            "company_id": company.get("Id"),
            "company_name": company.get("CompanyName"),
            "legal_name": company.get("LegalName"),
            "country": company.get("Country"),
        }

