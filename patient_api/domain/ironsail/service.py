"""IronSail admin service - connection status, catalog browsing and order management"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ... import config
from ...models_order import SHIPPING_ORDER_STATUSES
from ...shared.pharmacy import PharmacyAPIError, paginate, to_http_exception
from .client import IronSailClient
from .repository import IronSailRepository
from .schemas import serialize_shipping_order

logger = logging.getLogger(__name__)

MEDICATIONS_PER_PAGE = 25
MAX_ORDERS_PER_PAGE = 100


class IronSailService:
    """Service layer for the IronSail admin endpoints"""

    def __init__(self, db: Session, client: Optional[IronSailClient] = None):
        self.db = db
        self.repo = IronSailRepository()
        self.client = client or IronSailClient()

    # ============================================================================
    # CONNECTION
    # ============================================================================

    async def get_status(self) -> dict:
        has_credentials = self.client.has_credentials
        has_setup_token = bool(config.IRONSAIL_SETUP_TOKEN)
        token_valid = bool(await self.client.get_token()) if has_credentials else False
        api_accessible = await self.client.ping() if token_valid else False
        connected = token_valid and api_accessible

        if connected:
            message = "IronSail API is connected and accessible"
        elif not has_credentials:
            message = "Credentials not configured. Use setup token to create credentials."
        elif not token_valid:
            message = "Credentials configured but token validation failed"
        else:
            message = "API connection issue"

        return {
            "success": True,
            "connected": connected,
            "message": message,
            "tenant": config.IRONSAIL_TENANT,
            "baseUrl": self.client.base_url,
            "config": {
                "hasCredentials": has_credentials,
                "hasSetupToken": has_setup_token,
                "tokenValid": token_valid,
                "apiAccessible": api_accessible,
            },
        }

    async def setup_credentials(self, setup_token: Optional[str], name: Optional[str]) -> dict:
        token = setup_token or config.IRONSAIL_SETUP_TOKEN
        if not token:
            raise HTTPException(
                status_code=400,
                detail="Setup token is required. Provide 'setup_token' in request body or set IRONSAIL_SETUP_TOKEN env var.",
            )

        try:
            credentials = await self.client.create_credentials(token, name)
        except PharmacyAPIError as e:
            raise to_http_exception(e, "Failed to create credentials") from e

        logger.info("✅ IronSail credentials created; store them in the environment")
        return {
            "success": True,
            "message": "Credentials created successfully! Save these in your environment variables.",
            "data": {
                "client_id": credentials.get("client_id"),
                "client_secret": credentials.get("client_secret"),
                "name": credentials.get("name"),
            },
        }

    async def list_credentials(self) -> dict:
        if not await self.client.get_token():
            raise HTTPException(
                status_code=401, detail="Not authenticated with IronSail. Configure credentials first."
            )
        try:
            data = await self.client.list_credentials()
        except PharmacyAPIError as e:
            raise to_http_exception(e, "Failed to list credentials") from e
        return {"success": True, "data": data}

    # ============================================================================
    # ORDERS
    # ============================================================================

    def list_orders(self, page: int, per_page: int, status: Optional[str]) -> dict:
        page = max(page, 1)
        per_page = min(max(per_page, 1), MAX_ORDERS_PER_PAGE)
        rows, total = self.repo.list_orders(self.db, page, per_page, status)
        logger.info(f"📋 Listed {len(rows)} IronSail orders (page {page})")
        return {
            "success": True,
            "data": [serialize_shipping_order(row) for row in rows],
            "pagination": paginate(total, page, per_page),
        }

    def update_order_status(self, shipping_order_id: str, status: str) -> dict:
        if status not in SHIPPING_ORDER_STATUSES:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid status. Must be one of: {', '.join(SHIPPING_ORDER_STATUSES)}",
            )

        shipping_order = self.repo.get_shipping_order(self.db, shipping_order_id)
        if not shipping_order:
            raise HTTPException(status_code=404, detail="Shipping order not found")

        updates = {"status": status}
        now = datetime.utcnow()
        if status == "shipped" and not shipping_order.shipped_at:
            updates["shipped_at"] = now
        if status == "delivered" and not shipping_order.delivered_at:
            updates["delivered_at"] = now

        shipping_order = self.repo.update_shipping_order(self.db, shipping_order, **updates)
        logger.info(f"✅ Shipping order {shipping_order_id} status set to {status}")
        return {
            "success": True,
            "message": "Order status updated",
            "data": serialize_shipping_order(shipping_order),
        }

    # ============================================================================
    # CATALOG
    # ============================================================================

    async def list_pharmacies(self) -> dict:
        try:
            pharmacies = await self.client.list_pharmacies()
        except PharmacyAPIError as e:
            raise to_http_exception(e, "Failed to fetch pharmacies from IronSail") from e
        return {"success": True, "data": pharmacies, "count": len(pharmacies)}

    async def list_medications(self, pharmacy_id: str, page: int, search: Optional[str]) -> dict:
        page = max(page, 1)
        try:
            if search and search.strip():
                return await self._search_medications(pharmacy_id, page, search.strip().lower())
            payload = await self.client.list_medications(pharmacy_id, page)
        except PharmacyAPIError as e:
            raise to_http_exception(e, "Failed to fetch medications from IronSail") from e

        data = payload.get("data") or []
        return {
            "success": True,
            "data": data,
            "pagination": payload.get("pagination") or paginate(len(data), page, MEDICATIONS_PER_PAGE),
        }

    async def _search_medications(self, pharmacy_id: str, page: int, term: str) -> dict:
        """The IronSail API has no server-side search: fetch every page and filter here"""
        first = await self.client.list_medications(pharmacy_id, 1)
        medications = list(first.get("data") or [])
        total_pages = (first.get("pagination") or {}).get("total_pages") or 1

        if total_pages > 1:
            pages = await asyncio.gather(
                *[self.client.list_medications(pharmacy_id, p) for p in range(2, total_pages + 1)]
            )
            for payload in pages:
                medications.extend(payload.get("data") or [])

        def matches(med: dict) -> bool:
            return any(term in (med.get(field) or "").lower() for field in ("name", "formulation", "type"))

        filtered = [med for med in medications if matches(med)]
        logger.info(f"🔍 {len(filtered)} of {len(medications)} IronSail medications match search")

        start = (page - 1) * MEDICATIONS_PER_PAGE
        return {
            "success": True,
            "data": filtered[start : start + MEDICATIONS_PER_PAGE],
            "pagination": {
                "page": page,
                "per_page": MEDICATIONS_PER_PAGE,
                "total": len(filtered),
                "total_pages": math.ceil(len(filtered) / MEDICATIONS_PER_PAGE),
            },
            "searchApplied": term,
        }

    async def get_medication(self, medication_id: str, pharmacy_id: Optional[str]) -> dict:
        if not pharmacy_id:
            raise HTTPException(status_code=400, detail="pharmacyId query parameter is required")

        try:
            payload = await self.client.list_medications(pharmacy_id)
        except PharmacyAPIError as e:
            raise to_http_exception(e, "Failed to fetch medication details") from e

        medication = next(
            (med for med in payload.get("data") or [] if med.get("medication_id") == medication_id), None
        )
        if not medication:
            raise HTTPException(status_code=404, detail="Medication not found")
        return {"success": True, "data": medication}
