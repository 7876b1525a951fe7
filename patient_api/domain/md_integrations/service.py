"""
MD Integrations webhook processing

Events reference an order through the MD case id stored on the order when
the case was created. Unknown cases and event types are acknowledged
without changes so MD Integrations does not keep redelivering them.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models_order import Order, Prescription
from ..ironsail.repository import IronSailRepository
from ..ironsail.retry_service import IronSailRetryService

logger = logging.getLogger(__name__)

APPROVAL_EVENTS = ("case_approved", "case_completed")
CANCEL_EVENTS = ("case_cancelled",)
PRESCRIPTION_EVENTS = ("prescription_submitted",)


def parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def prescription_key(item: dict) -> str:
    """MD sends the prescription id as either `id` or `prescription_id`"""
    return str(item.get("id") or item.get("prescription_id") or "")


class MDWebhookService:
    """Applies MD Integrations case events to orders"""

    def __init__(self, db: Session, retry_service: Optional[IronSailRetryService] = None):
        self.db = db
        self.retry_service = retry_service

    def find_order(self, payload: dict) -> Optional[Order]:
        case_id = payload.get("case_id") or (payload.get("case") or {}).get("id")
        if not case_id:
            return None
        return (
            self.db.query(Order)
            .filter(Order.md_case_id == str(case_id), Order.deleted_at.is_(None))
            .first()
        )

    async def process(self, payload: dict, request_id: str) -> None:
        event_type = payload.get("event_type")
        order = self.find_order(payload)
        if not order:
            logger.info(f"ℹ️ [MD-WH] reqId={request_id} no matching order for {event_type}")
            return

        order.md_case_status = event_type
        if payload.get("offerings"):
            order.md_offerings = payload["offerings"]

        if event_type in APPROVAL_EVENTS:
            self._approve(order)
        elif event_type in CANCEL_EVENTS:
            order.update_status("cancelled")
        elif event_type in PRESCRIPTION_EVENTS:
            self._record_prescriptions(order, payload.get("prescriptions") or [])
        else:
            logger.info(f"ℹ️ [MD-WH] reqId={request_id} recorded {event_type}")

        self.db.commit()

        if event_type in APPROVAL_EVENTS:
            await self._submit_to_pharmacy(order, request_id)

    def _approve(self, order: Order) -> None:
        if order.status in ("cancelled", "refunded"):
            return
        if order.status not in ("shipped", "delivered"):
            order.update_status("processing")
        if order.physician_id and not order.approved_by_doctor_id:
            order.approved_by_doctor_id = order.physician_id

    def _record_prescriptions(self, order: Order, prescriptions: list) -> None:
        recorded = list(order.md_prescriptions or [])
        known = {prescription_key(p) for p in recorded if isinstance(p, dict)}
        known.discard("")

        for item in prescriptions:
            if not isinstance(item, dict):
                continue
            md_id = prescription_key(item)
            if md_id and md_id in known:
                continue

            name = item.get("name") or item.get("title") or (item.get("medication") or {}).get("name")
            self.db.add(
                Prescription(
                    patient_id=order.user_id,
                    doctor_id=order.approved_by_doctor_id or order.physician_id,
                    order_id=order.id,
                    name=name or "Prescription",
                    md_prescription_id=md_id or None,
                    written_at=parse_timestamp(item.get("created_at")) or datetime.utcnow(),
                    expires_at=parse_timestamp(item.get("expires_at")),
                )
            )
            recorded.append(item)
            if md_id:
                known.add(md_id)

        order.md_prescriptions = recorded

    async def _submit_to_pharmacy(self, order: Order, request_id: str) -> None:
        """Send an approved order with MD offerings to IronSail, once"""
        if not order.md_offerings or order.status != "processing":
            return
        if IronSailRepository.has_ironsail_order(self.db, order.id):
            return

        retry_service = self.retry_service or IronSailRetryService(self.db)
        if not retry_service.order_service.client.has_credentials:
            logger.info(f"ℹ️ [MD-WH] reqId={request_id} IronSail not configured, skipping submission")
            return

        result = await retry_service.submit_order_with_retry(order)
        logger.info(f"📦 [MD-WH] reqId={request_id} pharmacy submission success={result['success']}")

