"""
Olympia Pharmacy API client

Authenticates with username, password and secret (form-encoded) for a
24 hour token. The token is reused until five minutes before it expires;
a 401 on any call refreshes it once and repeats the call.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

import httpx

from ... import config
from ...shared.pharmacy import PharmacyAPIError, network_error, raise_for_pharmacy_response

logger = logging.getLogger(__name__)

PROVIDER = "Olympia"
EXPIRY_BUFFER = timedelta(minutes=5)
EXPIRES_FORMAT = "%Y-%m-%d %H:%M:%S"

_token_cache: dict[str, Any] = {}


def parse_expires(expires: Optional[str]) -> datetime:
    """Olympia reports expiry as 'YYYY-MM-DD HH:MM:SS'; assume 24h when unparseable"""
    try:
        return datetime.strptime((expires or "").strip(), EXPIRES_FORMAT)
    except ValueError:
        return datetime.utcnow() + timedelta(hours=24)


class OlympiaClient:
    """Async client for the Olympia Pharmacy v2 API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        secret: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or config.OLYMPIA_PHARMACY_API_URL or "").rstrip("/")
        self.username = username if username is not None else config.OLYMPIA_PHARMACY_USERNAME
        self.password = password if password is not None else config.OLYMPIA_PHARMACY_PASSWORD
        self.secret = secret if secret is not None else config.OLYMPIA_PHARMACY_SECRET
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.base_url and self.username and self.password and self.secret)

    @staticmethod
    def clear_token() -> None:
        _token_cache.clear()
        logger.info("🗑️ Olympia access token cleared")

    @staticmethod
    def _token_is_valid() -> bool:
        expires_at = _token_cache.get("expires_at")
        if not _token_cache.get("token") or not expires_at:
            return False
        return expires_at - datetime.utcnow() > EXPIRY_BUFFER

    async def _request_token(self) -> str:
        logger.info("🔐 Requesting new Olympia access token")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/api/v2/accessToken",
                    data={"username": self.username, "password": self.password, "secret": self.secret},
                )
        except httpx.RequestError as e:
            raise network_error(e, PROVIDER) from e

        if not response.is_success:
            logger.error(f"❌ Olympia authentication failed: {response.status_code}")
            raise PharmacyAPIError(
                "Failed to authenticate with Olympia Pharmacy API", status_code=response.status_code
            )

        payload = response.json()
        token = payload.get("token")
        if not token:
            raise PharmacyAPIError("Olympia authentication response had no token")

        _token_cache["token"] = token
        _token_cache["expires_at"] = parse_expires(payload.get("expires"))
        _token_cache["stored_at"] = datetime.utcnow()
        logger.info(f"✅ Olympia access token obtained, expires at {payload.get('expires')}")
        return token

    async def get_access_token(self) -> str:
        if self._token_is_valid():
            return _token_cache["token"]
        return await self._request_token()

    async def refresh_token(self) -> str:
        _token_cache.clear()
        return await self._request_token()

    async def _send(self, method: str, path: str, token: str, json: Optional[Any]) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                    json=json,
                )
        except httpx.RequestError as e:
            raise network_error(e, PROVIDER) from e

    async def _request(self, method: str, path: str, json: Optional[Any] = None) -> Any:
        response = await self._send(method, path, await self.get_access_token(), json)
        if response.status_code == 401:
            logger.info("🔄 Olympia token rejected, refreshing and retrying")
            response = await self._send(method, path, await self.refresh_token(), json)
        raise_for_pharmacy_response(response, PROVIDER)
        return response.json() if response.content else {}

    # ============================================================================
    # PATIENTS
    # ============================================================================

    async def create_patient(self, data: dict) -> dict:
        """Returns {"uuid": ...}; Olympia returns the existing uuid for a known patient"""
        result = await self._request("POST", "/api/v2/createPatient", data)
        logger.info("✅ Olympia patient created")
        return result

    async def search_patients(self, criteria: dict) -> list:
        """criteria: {field: {"search": value, "wildcard": "before|after|both"}}"""
        result = await self._request("POST", "/api/v2/searchPatients", criteria)
        logger.info(f"🔍 Olympia patient search returned {len(result) if isinstance(result, list) else 0}")
        return result

    async def update_patient(self, data: dict) -> dict:
        return await self._request("POST", "/api/v2/updatePatient", data)

    # ============================================================================
    # PRESCRIPTIONS & ORDERS
    # ============================================================================

    async def create_prescription(self, data: dict) -> dict:
        """Returns {"prescriptionID": int}"""
        result = await self._request("POST", "/api/v2/createPrescription", data)
        logger.info(f"✅ Olympia prescription created: {result.get('prescriptionID')}")
        return result

    async def get_order_status(self, order_id: str) -> Any:
        return await self._request("GET", f"/api/v2/order/{order_id}")

    async def get_products(self) -> Any:
        return await self._request("GET", "/api/v2/products")

    async def cancel_order(self, order_id: str) -> Any:
        return await self._request("POST", f"/api/v2/order/{order_id}/cancel")
