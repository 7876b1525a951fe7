"""Olympia router - admin pass-through endpoints and the tracking webhook"""

import json
import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ... import config
from ...auth import require_roles
from ...database import get_db
from ...models import User
from ...rate_limiter import rate_limit_webhook
from ...webhook_security import WebhookSignatureError, verify_bearer_secret
from .service import OlympiaService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/olympia", tags=["Olympia"])
webhook_router = APIRouter(prefix="/webhook", tags=["Webhooks"])

require_admin = require_roles("admin")


def get_olympia_service(db: Session = Depends(get_db)) -> OlympiaService:
    """Dependency injection for OlympiaService"""
    return OlympiaService(db)


# ============================================================================
# ADMIN
# ============================================================================


@router.get("/status")
async def get_status(
    current_user: User = Depends(require_admin),
    service: OlympiaService = Depends(get_olympia_service),
):
    return await service.get_status()


@router.post("/patients")
async def create_patient(
    data: dict = Body(...),
    current_user: User = Depends(require_admin),
    service: OlympiaService = Depends(get_olympia_service),
):
    return await service.call("create patient", service.client.create_patient(data))


@router.post("/patients/search")
async def search_patients(
    criteria: dict = Body(...),
    current_user: User = Depends(require_admin),
    service: OlympiaService = Depends(get_olympia_service),
):
    return await service.call("search patients", service.client.search_patients(criteria))


@router.put("/patients/{patient_uuid}")
async def update_patient(
    patient_uuid: str,
    data: dict = Body(...),
    current_user: User = Depends(require_admin),
    service: OlympiaService = Depends(get_olympia_service),
):
    return await service.call("update patient", service.client.update_patient({**data, "uuid": patient_uuid}))


@router.post("/prescriptions")
async def create_prescription(
    data: dict = Body(...),
    current_user: User = Depends(require_admin),
    service: OlympiaService = Depends(get_olympia_service),
):
    return await service.create_prescription(data)


@router.get("/orders/{order_id}")
async def get_order_status(
    order_id: str,
    current_user: User = Depends(require_admin),
    service: OlympiaService = Depends(get_olympia_service),
):
    return await service.call("get order status", service.client.get_order_status(order_id))


@router.get("/products")
async def get_products(
    current_user: User = Depends(require_admin),
    service: OlympiaService = Depends(get_olympia_service),
):
    return await service.call("get products", service.client.get_products())


@router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    current_user: User = Depends(require_admin),
    service: OlympiaService = Depends(get_olympia_service),
):
    return await service.call("cancel order", service.client.cancel_order(order_id))


# ============================================================================
# WEBHOOK
# ============================================================================


@webhook_router.post("/olympia-pharmacy", dependencies=[Depends(rate_limit_webhook)])
async def olympia_pharmacy_webhook(
    request: Request,
    service: OlympiaService = Depends(get_olympia_service),
):
    """
    Tracking updates from Olympia Pharmacy.

    Authenticated with "Authorization: Bearer <OLYMPIA_PHARMACY_WEBHOOK_SECRET>".
    """
    try:
        verify_bearer_secret(request.headers.get("authorization"), config.OLYMPIA_PHARMACY_WEBHOOK_SECRET)
    except WebhookSignatureError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e

    try:
        payload = json.loads(await request.body() or b"{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from None

    if not isinstance(payload, dict) or not payload.get("vendor_order_id") or not payload.get("status"):
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: vendor_order_id and status are required",
        )

    logger.info(f"📫 Olympia webhook received, status {payload['status']}")
    try:
        service.handle_tracking_update(payload)
    except Exception as e:
        logger.error(f"❌ Error processing Olympia webhook: {type(e).__name__}")
        service.db.rollback()
        raise HTTPException(status_code=500, detail="Internal server error") from e

    return {"success": True, "message": "Webhook processed successfully"}
