"""
IronSail pharmacy API client

Credentials are exchanged for a bearer token which is cached for 29 days
(IronSail tokens live 30). A 401 from the API clears the cache so the next
call fetches a fresh token.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

import httpx

from ... import config
from ...shared.pharmacy import PharmacyAPIError, network_error, raise_for_pharmacy_response

logger = logging.getLogger(__name__)

PROVIDER = "IronSail"
TOKEN_TTL = timedelta(days=29)

# token, expires_at
_token_cache: dict[str, Any] = {}


def clear_token_cache() -> None:
    _token_cache.clear()


class IronSailClient:
    """Thin async wrapper around the IronSail REST API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or config.IRONSAIL_API_BASE_URL).rstrip("/")
        self.client_id = client_id if client_id is not None else config.IRONSAIL_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.IRONSAIL_CLIENT_SECRET
        self.timeout = timeout

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    # ============================================================================
    # AUTH
    # ============================================================================

    async def get_token(self) -> Optional[str]:
        """Cached access token, or None when no credentials are configured or auth fails"""
        cached = _token_cache.get("token")
        if cached and _token_cache.get("expires_at", datetime.min) > datetime.utcnow():
            return cached

        if not self.has_credentials:
            logger.info("ℹ️ IronSail credentials not configured; use /ironsail/setup with a setup token")
            return None

        logger.info("🔑 Fetching new IronSail access token")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/auth/token",
                    json={"client_id": self.client_id, "client_secret": self.client_secret},
                )
        except httpx.RequestError as e:
            logger.error(f"❌ IronSail token request failed: {type(e).__name__}")
            return None

        if not response.is_success:
            logger.error(f"❌ IronSail token request rejected: {response.status_code}")
            return None

        payload = response.json()
        token = (payload.get("data") or {}).get("access_token") or payload.get("access_token")
        if not token:
            logger.error("❌ IronSail token response had no access_token")
            return None

        _token_cache["token"] = token
        _token_cache["expires_at"] = datetime.utcnow() + TOKEN_TTL
        logger.info("✅ IronSail access token cached")
        return token

    async def _headers(self, require_token: bool = True) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        token = await self.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif require_token:
            raise PharmacyAPIError("Failed to get IronSail authentication token", status_code=401)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        require_token: bool = True,
    ) -> dict:
        headers = await self._headers(require_token)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method, f"{self.base_url}{path}", headers=headers, json=json, params=params
                )
        except httpx.RequestError as e:
            raise network_error(e, PROVIDER) from e

        if response.status_code == 401:
            clear_token_cache()
        raise_for_pharmacy_response(response, PROVIDER)
        return response.json() if response.content else {}

    # ============================================================================
    # CREDENTIALS
    # ============================================================================

    async def create_credentials(self, setup_token: str, name: Optional[str] = None) -> dict:
        """Exchange a one-time setup token for a client id/secret pair"""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/auth/credentials",
                    headers={
                        "Accept": "application/json",
                        "Authorization": f"Bearer {setup_token}",
                        "X-Setup-Token": setup_token,
                    },
                    json={"name": name or "Fuse Health Tenant Portal"},
                )
        except httpx.RequestError as e:
            raise network_error(e, PROVIDER) from e

        raise_for_pharmacy_response(response, PROVIDER)
        payload = response.json()
        return payload.get("data") or payload

    async def list_credentials(self) -> Any:
        payload = await self._request("GET", "/auth/credentials")
        return payload.get("data", payload)

    async def ping(self) -> bool:
        """True when an authenticated call to the pharmacies endpoint succeeds"""
        try:
            await self._request("GET", "/pharmacies")
        except PharmacyAPIError:
            return False
        return True

    # ============================================================================
    # CATALOG
    # ============================================================================

    async def list_pharmacies(self) -> list[dict]:
        payload = await self._request("GET", "/pharmacies", require_token=False)
        return payload.get("data") or []

    async def list_medications(self, pharmacy_id: str, page: Optional[int] = None) -> dict:
        """One page of a pharmacy's medications: {data, pagination}"""
        params = {"page": page} if page else None
        return await self._request(
            "GET", f"/pharmacies/{pharmacy_id}/medications", params=params, require_token=False
        )

    # ============================================================================
    # PATIENTS & ORDERS
    # ============================================================================

    async def find_patient_by_email(self, email: str) -> Optional[dict]:
        try:
            payload = await self._request("GET", "/patients", params={"email": email})
        except PharmacyAPIError as e:
            if e.status_code == 404:
                return None
            raise
        patients = payload.get("data") or []
        return patients[0] if patients else None

    async def create_patient(self, patient: dict) -> str:
        payload = await self._request("POST", "/patients", json=patient)
        patient_uuid = (payload.get("data") or {}).get("uuid") or payload.get("uuid")
        if not patient_uuid:
            raise PharmacyAPIError("Patient created but no UUID returned")
        return patient_uuid

    async def create_order(self, order: dict) -> dict:
        payload = await self._request("POST", "/orders", json=order)
        return payload.get("data") or payload
