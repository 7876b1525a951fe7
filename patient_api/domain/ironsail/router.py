"""IronSail router - pharmacy connection, catalog and fulfillment admin"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import require_roles
from ...database import get_db
from ...models import User
from .retry_service import IronSailRetryService
from .schemas import SetupRequest, ShippingOrderStatusUpdate
from .service import IronSailService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ironsail", tags=["IronSail"])

require_admin = require_roles("admin")


def get_ironsail_service(db: Session = Depends(get_db)) -> IronSailService:
    """Dependency injection for IronSailService"""
    return IronSailService(db)


def get_retry_service(db: Session = Depends(get_db)) -> IronSailRetryService:
    return IronSailRetryService(db)


# ============================================================================
# CONNECTION
# ============================================================================


@router.get("/status")
async def get_status(
    current_user: User = Depends(require_admin),
    service: IronSailService = Depends(get_ironsail_service),
):
    return await service.get_status()


@router.post("/setup")
async def setup_credentials(
    data: Optional[SetupRequest] = Body(None),
    current_user: User = Depends(require_admin),
    service: IronSailService = Depends(get_ironsail_service),
):
    """Create API credentials from a one-time setup token (limited to 20 pairs per token)"""
    data = data or SetupRequest()
    return await service.setup_credentials(data.setup_token, data.name)


@router.get("/credentials")
async def list_credentials(
    current_user: User = Depends(require_admin),
    service: IronSailService = Depends(get_ironsail_service),
):
    return await service.list_credentials()


# ============================================================================
# ORDERS
# ============================================================================


@router.get("/orders")
async def list_orders(
    page: int = Query(1, ge=1),
    per_page: int = Query(25, ge=1),
    status: Optional[str] = Query(None),
    current_user: User = Depends(require_admin),
    service: IronSailService = Depends(get_ironsail_service),
):
    """Shipping orders sent (or pending submission) to IronSail, newest first"""
    return service.list_orders(page, per_page, status)


@router.patch("/orders/{shipping_order_id}/status")
async def update_order_status(
    shipping_order_id: str,
    data: ShippingOrderStatusUpdate,
    current_user: User = Depends(require_admin),
    service: IronSailService = Depends(get_ironsail_service),
):
    return service.update_order_status(shipping_order_id, data.status)


@router.post("/orders/{shipping_order_id}/retry")
async def retry_order(
    shipping_order_id: str,
    current_user: User = Depends(require_admin),
    retry_service: IronSailRetryService = Depends(get_retry_service),
):
    logger.info(f"🔁 Manual IronSail retry requested for {shipping_order_id} by {current_user.id}")
    result = await retry_service.manual_retry(shipping_order_id)

    if result["success"]:
        return {"success": True, "message": "Order retry succeeded"}
    if result["shouldRetry"]:
        next_retry_at = result.get("nextRetryAt")
        return {
            "success": True,
            "message": "Order retry in progress, will continue automatically",
            "nextRetryAt": next_retry_at.isoformat() if next_retry_at else None,
            "retryCount": result.get("retryCount"),
        }
    raise HTTPException(status_code=400, detail=result.get("error") or "Retry failed")


@router.post("/orders/retry-stuck")
async def retry_stuck_orders(
    current_user: User = Depends(require_admin),
    retry_service: IronSailRetryService = Depends(get_retry_service),
):
    """Run the retry job now for every retry_pending order"""
    summary = await retry_service.retry_stuck_orders(min_age_minutes=0, limit=50)
    return {"success": True, "data": summary}


# ============================================================================
# CATALOG
# ============================================================================


@router.get("/pharmacies")
async def list_pharmacies(
    current_user: User = Depends(require_admin),
    service: IronSailService = Depends(get_ironsail_service),
):
    return await service.list_pharmacies()


@router.get("/pharmacies/{pharmacy_id}/medications")
async def list_medications(
    pharmacy_id: str,
    page: int = Query(1, ge=1),
    search: Optional[str] = Query(None),
    current_user: User = Depends(require_admin),
    service: IronSailService = Depends(get_ironsail_service),
):
    return await service.list_medications(pharmacy_id, page, search)


@router.get("/medications/{medication_id}")
async def get_medication(
    medication_id: str,
    pharmacyId: Optional[str] = Query(None),
    current_user: User = Depends(require_admin),
    service: IronSailService = Depends(get_ironsail_service),
):
    return await service.get_medication(medication_id, pharmacyId)
