"""MD Integrations webhook router"""

import json
import logging
import secrets
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ... import config
from ...database import get_db
from ...rate_limiter import rate_limit_webhook
from ...webhook_security import verify_md_signature
from .service import MDWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/md", tags=["Webhooks"])


def get_md_webhook_service(db: Session = Depends(get_db)) -> MDWebhookService:
    return MDWebhookService(db)


def parse_payload(raw_body: bytes, content_type: str) -> dict:
    """JSON, else form-encoded, else an empty payload"""
    text = raw_body.decode("utf-8", errors="replace")
    if not text.strip():
        return {}
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(text))
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = dict(parse_qsl(text)) if "=" in text else {}
    return payload if isinstance(payload, dict) else {}


@router.post("/webhooks", dependencies=[Depends(rate_limit_webhook)])
async def md_webhook(
    request: Request,
    service: MDWebhookService = Depends(get_md_webhook_service),
):
    """
    Case and prescription events from MD Integrations.

    The signature is an HMAC-SHA256 of the raw body. It is only enforced when
    MD_INTEGRATIONS_WEBHOOK_SECRET is configured.
    """
    request_id = request.headers.get("x-request-id") or secrets.token_hex(6)
    raw_body = await request.body()
    content_type = request.headers.get("content-type", "unknown")
    payload = parse_payload(raw_body, content_type)
    event_type = payload.get("event_type")

    secret = config.MD_INTEGRATIONS_WEBHOOK_SECRET
    signature_valid = True
    if secret:
        signature = (
            request.headers.get(config.MD_INTEGRATIONS_WEBHOOK_SIGNATURE_HEADER)
            or request.headers.get("signature")
            or ""
        )
        signature_valid = verify_md_signature(raw_body, signature, secret)
    else:
        logger.warning(f"⚠️ [MD-WH] reqId={request_id} no webhook secret configured, skipping signature check")

    # No PHI in webhook logs: event type and request id only
    logger.info(
        f"📥 [MD-WH] reqId={request_id} received event_type={event_type} signature_valid={signature_valid}"
    )

    if not signature_valid:
        logger.warning(f"🚫 [MD-WH] reqId={request_id} signature validation failed")
        return JSONResponse(status_code=401, content={"success": False, "message": "Invalid signature"})

    try:
        await service.process(payload, request_id)
    except Exception as e:
        logger.error(f"❌ [MD-WH] reqId={request_id} error: {type(e).__name__}")
        service.db.rollback()
        return JSONResponse(
            status_code=500, content={"success": False, "message": "Webhook processing failed"}
        )

    logger.info(f"✅ [MD-WH] reqId={request_id} processed event_type={event_type}")
    return {"received": True}
