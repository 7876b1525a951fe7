"""
IronSail retry service

Failed submissions are kept as ShippingOrder rows in retry_pending (for
rate limits, 5xx and network errors) or failed (anything else). The arq
cron job and the admin retry endpoint drive execute_retry; backoff is
30s, 60s, 2m, 4m, 8m, 16m.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models_order import Order, ShippingOrder
from .order_service import IronSailOrderService
from .repository import IronSailRepository

logger = logging.getLogger(__name__)

RETRY_DELAYS = [
    timedelta(seconds=30),
    timedelta(minutes=1),
    timedelta(minutes=2),
    timedelta(minutes=4),
    timedelta(minutes=8),
    timedelta(minutes=16),
]
MAX_RETRIES = len(RETRY_DELAYS)

RETRYABLE_PATTERNS = (
    "429",
    "500",
    "502",
    "503",
    "504",
    "econnrefused",
    "etimedout",
    "enotfound",
    "network",
    "timeout",
)

ERROR_MAX = 65535


def is_retryable_error(error: Optional[str]) -> bool:
    lowered = (error or "").lower()
    return any(pattern in lowered for pattern in RETRYABLE_PATTERNS)


def get_retry_delay(retry_count: int) -> timedelta:
    return RETRY_DELAYS[min(retry_count, len(RETRY_DELAYS) - 1)]


class IronSailRetryService:
    """Retry bookkeeping for IronSail submissions"""

    def __init__(self, db: Session, order_service: Optional[IronSailOrderService] = None):
        self.db = db
        self.repo = IronSailRepository()
        self.order_service = order_service or IronSailOrderService(db)

    def create_retry_record(self, order: Order, error: str) -> ShippingOrder:
        """Record a failed first attempt as retry_pending or failed"""
        retryable = is_retryable_error(error)
        now = datetime.utcnow()
        prefix = "PENDING" if retryable else "FAILED"

        shipping_order = self.repo.create_shipping_order(
            self.db,
            order_id=order.id,
            shipping_address_id=order.shipping_address_id,
            status="retry_pending" if retryable else "failed",
            pharmacy_order_id=f"{prefix}-{order.order_number}",
            pharmacy="ironsail",
            retry_count=0,
            last_retry_at=now,
            next_retry_at=now + get_retry_delay(0) if retryable else None,
            retry_error=error[:ERROR_MAX],
        )
        logger.info(
            f"🔁 Retry record for order {order.order_number}: {shipping_order.status}"
            f" (next {shipping_order.next_retry_at})"
        )
        return shipping_order

    async def submit_order_with_retry(self, order: Order) -> dict:
        """First submission attempt; failures are recorded for the retry job"""
        result = await self.order_service.submit_order(order)
        if result["success"]:
            return result

        error = result.get("error") or "Unknown error"
        shipping_order = self.create_retry_record(order, error)
        if shipping_order.status == "retry_pending":
            return {"success": False, "error": f"Order submission failed, scheduled for retry: {error}"}
        return result

    async def execute_retry(self, shipping_order: ShippingOrder) -> dict:
        if shipping_order.status != "retry_pending":
            logger.info(f"⏭️ Skipping retry for {shipping_order.id}: status is {shipping_order.status}")
            return {"success": False, "shouldRetry": False, "error": "Order is no longer in retry state"}

        order = self.repo.get_order_for_submission(self.db, shipping_order.order_id)
        if not order:
            self.repo.update_shipping_order(
                self.db, shipping_order, status="failed", retry_error="Order not found"
            )
            return {"success": False, "shouldRetry": False, "error": "Order not found"}

        attempt = (shipping_order.retry_count or 0) + 1
        logger.info(f"🔁 Executing IronSail retry #{attempt} for order {order.order_number}")

        result = await self.order_service.submit_order(order, create_shipping_order=False)
        if result["success"]:
            self.repo.update_shipping_order(
                self.db,
                shipping_order,
                status="processing",
                pharmacy_order_id=result["data"]["pharmacyOrderId"],
                retry_error=None,
                next_retry_at=None,
            )
            logger.info(f"✅ Order {order.order_number} submitted on retry #{attempt}")
            return {"success": True, "shouldRetry": False}

        error = result.get("error") or "Unknown error"
        should_retry = is_retryable_error(error) and attempt < MAX_RETRIES
        now = datetime.utcnow()
        next_retry_at = now + get_retry_delay(attempt) if should_retry else None

        self.repo.update_shipping_order(
            self.db,
            shipping_order,
            status="retry_pending" if should_retry else "failed",
            retry_count=attempt,
            last_retry_at=now,
            next_retry_at=next_retry_at,
            retry_error=error[:ERROR_MAX],
        )
        logger.warning(
            f"⚠️ Order {order.order_number} retry #{attempt} failed"
            f" ({'will retry' if should_retry else 'giving up'})"
        )
        return {
            "success": False,
            "shouldRetry": should_retry,
            "error": error,
            "nextRetryAt": next_retry_at,
            "retryCount": attempt,
        }

    async def retry_stuck_orders(
        self, min_age_minutes: int = 30, limit: int = 50, pause_seconds: float = 1.0
    ) -> dict:
        """Retry retry_pending rows idle for min_age_minutes (0 = all of them)"""
        cutoff = datetime.utcnow() - timedelta(minutes=min_age_minutes) if min_age_minutes > 0 else None
        stuck = self.repo.get_stuck_retry_orders(self.db, cutoff, limit)
        logger.info(f"🔍 Found {len(stuck)} stuck IronSail orders to retry")

        succeeded = failed = still_retrying = 0
        for shipping_order in stuck:
            try:
                result = await self.execute_retry(shipping_order)
            except Exception as e:
                logger.error(f"❌ Error retrying shipping order {shipping_order.id}: {e}")
                self.db.rollback()
                failed += 1
                continue

            if result["success"]:
                succeeded += 1
            elif result["shouldRetry"]:
                still_retrying += 1
            else:
                failed += 1

            if pause_seconds:
                await asyncio.sleep(pause_seconds)

        logger.info(
            f"📊 IronSail retry run: {succeeded} succeeded, {still_retrying} still retrying, {failed} failed"
        )
        return {
            "total": len(stuck),
            "succeeded": succeeded,
            "failed": failed,
            "stillRetrying": still_retrying,
        }

    async def manual_retry(self, shipping_order_id: str) -> dict:
        shipping_order = self.repo.get_shipping_order(self.db, shipping_order_id)
        if not shipping_order:
            raise HTTPException(status_code=404, detail="Shipping order not found")

        if shipping_order.status not in ("retry_pending", "failed"):
            raise HTTPException(
                status_code=400, detail=f"Cannot retry order with status: {shipping_order.status}"
            )

        self.repo.update_shipping_order(self.db, shipping_order, status="retry_pending", retry_count=0)
        return await self.execute_retry(shipping_order)
