"""
Refund service - Stripe refunds and brand coverage for the platform share

A refund reverses the brand's transfer where Stripe can. Whatever the brand
did not receive (the platform, doctor and pharmacy shares) is covered by the
platform, so the service tries to pull that amount back from the brand's
connected account. When the pull fails, the brand is left with a pending
debt on its ClinicBalance.
"""

import logging
from datetime import datetime
from typing import Optional

import stripe
from fastapi import HTTPException
from sqlalchemy.orm import Session

from ... import config
from ...models import User
from ...models_billing import ClinicBalance, RefundRequest
from ...models_order import Order
from .repository import RefundRepository
from .schemas import serialize_refund_request

logger = logging.getLogger(__name__)

NO_TRANSFER_MARKER = "does not have an associated transfer"


def is_admin(user: User) -> bool:
    held = set(user.role_list()) | {user.role}
    return bool(held.intersection({"admin", "super_admin"}))


class RefundService:
    """Service for refunds and refund requests"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = RefundRepository()

    # ============================================================================
    # STRIPE
    # ============================================================================

    def _configure_stripe(self) -> None:
        if not config.STRIPE_SECRET_KEY:
            logger.error("❌ STRIPE_SECRET_KEY not configured, cannot refund")
            raise HTTPException(status_code=500, detail="Payment provider not configured")
        stripe.api_key = config.STRIPE_SECRET_KEY

    def _create_stripe_refund(self, payment_intent_id: str, amount_cents: Optional[int]):
        params = {"payment_intent": payment_intent_id, "reverse_transfer": True}
        if amount_cents is not None:
            params["amount"] = amount_cents
        try:
            return stripe.Refund.create(**params)
        except stripe.InvalidRequestError as e:
            # Charges made directly on the platform have no transfer to reverse
            if NO_TRANSFER_MARKER not in str(e):
                raise
            logger.info("ℹ️ Charge has no associated transfer, refunding without reversal")
            params.pop("reverse_transfer")
            return stripe.Refund.create(**params)

    def _collect_coverage(self, order: Order, refund_id: str, coverage: float):
        """Pull the platform-covered share back from the brand. Returns (transfer, balance)."""
        clinic = order.clinic
        description = f"Refund coverage for order {order.order_number}"

        if not config.STRIPE_PLATFORM_ACCOUNT_ID:
            logger.warning("⚠️ STRIPE_PLATFORM_ACCOUNT_ID not set, recording coverage as pending debt")
            balance = self.repo.add_balance(
                self.db,
                clinic_id=order.clinic_id,
                order_id=order.id,
                amount=-coverage,
                type="refund_debt",
                status="pending",
                stripe_refund_id=refund_id,
                description=f"Pending refund coverage for order {order.order_number}",
                notes="Platform Stripe account not configured",
            )
            return None, balance

        try:
            transfer = stripe.Transfer.create(
                amount=round(coverage * 100),
                currency="usd",
                destination=config.STRIPE_PLATFORM_ACCOUNT_ID,
                metadata={
                    "orderId": order.id,
                    "orderNumber": order.order_number,
                    "refundId": refund_id,
                    "type": "refund_coverage",
                },
                description=description,
                stripe_account=clinic.stripe_account_id,
            )
        except stripe.StripeError as e:
            logger.warning(f"⚠️ Brand transfer failed for order {order.order_number}, registering pending debt")
            balance = self.repo.add_balance(
                self.db,
                clinic_id=order.clinic_id,
                order_id=order.id,
                amount=-coverage,
                type="refund_debt",
                status="pending",
                stripe_refund_id=refund_id,
                description=f"Pending refund coverage for order {order.order_number}",
                notes=f"Transfer failed: {e.user_message or str(e)}",
            )
            return None, balance

        logger.info(f"✅ Brand covered refund via transfer {transfer.id}")
        balance = self.repo.add_balance(
            self.db,
            clinic_id=order.clinic_id,
            order_id=order.id,
            amount=coverage,
            type="refund_debt",
            status="paid",
            stripe_transfer_id=transfer.id,
            stripe_refund_id=refund_id,
            description=description,
            paid_at=datetime.utcnow(),
        )
        return transfer, balance

    def process_refund(self, order: Order, amount: Optional[float] = None) -> dict:
        """
        Refund an order through Stripe and settle the brand coverage.

        Marks the payment and the order refunded but leaves the commit to the
        caller so a refund request can be approved in the same transaction.
        """
        payment = order.payment
        if not payment or not payment.stripe_payment_intent_id:
            raise HTTPException(status_code=400, detail="No payment found for this order")

        self._configure_stripe()
        refund_amount = amount or order.total_amount
        logger.info(f"🔄 Processing refund for order {order.order_number}: ${refund_amount:.2f}")

        try:
            refund = self._create_stripe_refund(
                payment.stripe_payment_intent_id,
                round(refund_amount * 100) if amount else None,
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe refund failed for order {order.order_number}: {type(e).__name__}")
            raise HTTPException(status_code=502, detail="Failed to process refund with payment provider") from e

        logger.info(f"✅ Refund created: {refund.id}")

        coverage = round(refund_amount - (order.brand_amount or 0), 2)
        transfer = None
        balance: Optional[ClinicBalance] = None
        if coverage > 0 and order.clinic and order.clinic.stripe_account_id:
            transfer, balance = self._collect_coverage(order, refund.id, coverage)

        now = datetime.utcnow()
        payment.status = "refunded"
        payment.refunded_amount = refund_amount
        payment.refunded_at = now
        order.update_status("refunded")

        return {
            "refund": {"id": refund.id, "amount": refund_amount, "status": refund.status},
            "brandCoverage": {
                "amount": coverage,
                "paid": transfer is not None,
                "transferId": transfer.id if transfer is not None else None,
                "balanceRecordId": balance.id if balance is not None else None,
            },
        }

    # ============================================================================
    # DIRECT REFUNDS
    # ============================================================================

    def create_refund(self, order_id: Optional[str], amount: Optional[float]) -> dict:
        if not order_id:
            raise HTTPException(status_code=400, detail="Order ID is required")
        order = self.repo.get_order(self.db, order_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")

        result = self.process_refund(order, amount)
        self.db.commit()
        return {"success": True, "message": "Refund processed successfully", "data": result}

    # ============================================================================
    # REFUND REQUESTS
    # ============================================================================

    def create_request(self, user: User, order_id: Optional[str], reason: Optional[str]) -> dict:
        if not order_id:
            raise HTTPException(status_code=400, detail="Order ID is required")

        order = self.repo.get_order(self.db, order_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        if not is_admin(user) and order.clinic_id != user.clinic_id:
            raise HTTPException(status_code=403, detail="Access denied to this order")
        if not order.payment or not order.payment.stripe_payment_intent_id:
            raise HTTPException(status_code=400, detail="No payment found for this order")
        if order.status == "refunded":
            raise HTTPException(status_code=400, detail="This order has already been refunded")
        if self.repo.get_pending_request_for_order(self.db, order.id):
            raise HTTPException(status_code=400, detail="A refund request is already pending for this order")

        # The brand absorbs the full amount; doctor and pharmacy payouts are not reversed
        refund_request = self.repo.create_request(
            self.db,
            order_id=order.id,
            clinic_id=order.clinic_id,
            requested_by=user.id,
            amount=order.total_amount,
            brand_coverage_amount=order.total_amount,
            reason=reason or None,
            status="pending",
        )
        logger.info(f"📋 Refund request created for order {order.order_number}: ${refund_request.amount:.2f}")

        return {
            "success": True,
            "message": "Refund request submitted successfully. It will be reviewed before processing.",
            "data": {"refundRequest": serialize_refund_request(refund_request, detailed=False)},
        }

    def list_requests(self, user: User, clinic_id: str, status: Optional[str]) -> dict:
        if clinic_id == "all":
            if not is_admin(user):
                raise HTTPException(status_code=403, detail="Access denied")
            clinic_filter = None
        else:
            if not is_admin(user) and user.clinic_id != clinic_id:
                raise HTTPException(status_code=403, detail="Access denied to this clinic")
            clinic_filter = clinic_id

        status_filter = None if not status or status == "all" else status
        rows = self.repo.list_requests(self.db, clinic_filter, status_filter)
        return {"success": True, "data": [serialize_refund_request(r) for r in rows]}

    def get_by_order(self, user: User, order_id: str) -> dict:
        refund_request = self.repo.get_latest_request_for_order(self.db, order_id)
        if refund_request and not is_admin(user) and refund_request.clinic_id != user.clinic_id:
            raise HTTPException(status_code=403, detail="Access denied to this order")
        return {
            "success": True,
            "data": serialize_refund_request(refund_request, detailed=False) if refund_request else None,
        }

    def _get_pending(self, request_id: str) -> RefundRequest:
        refund_request = self.repo.get_request(self.db, request_id)
        if not refund_request:
            raise HTTPException(status_code=404, detail="Refund request not found")
        if refund_request.status != "pending":
            raise HTTPException(
                status_code=400, detail=f"Refund request has already been {refund_request.status}"
            )
        return refund_request

    def approve(self, reviewer: User, request_id: str, review_notes: Optional[str]) -> dict:
        refund_request = self._get_pending(request_id)
        order = self.repo.get_order(self.db, refund_request.order_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")

        result = self.process_refund(order, refund_request.amount)

        refund_request.status = "approved"
        refund_request.reviewed_by = reviewer.id
        refund_request.reviewed_at = datetime.utcnow()
        refund_request.review_notes = review_notes or None
        refund_request.stripe_refund_id = result["refund"]["id"]
        self.db.commit()

        logger.info(f"✅ Refund request {refund_request.id} approved")
        return {
            "success": True,
            "message": "Refund request approved and processed successfully",
            "data": {
                "refundRequest": {
                    "id": refund_request.id,
                    "status": refund_request.status,
                    "reviewedAt": refund_request.reviewed_at.isoformat(),
                },
                **result,
            },
        }

    def deny(self, reviewer: User, request_id: str, review_notes: Optional[str]) -> dict:
        refund_request = self._get_pending(request_id)

        refund_request.status = "denied"
        refund_request.reviewed_by = reviewer.id
        refund_request.reviewed_at = datetime.utcnow()
        refund_request.review_notes = review_notes or None
        self.db.commit()

        logger.info(f"🚫 Refund request {refund_request.id} denied")
        return {
            "success": True,
            "message": "Refund request denied",
            "data": {
                "refundRequest": {
                    "id": refund_request.id,
                    "status": refund_request.status,
                    "reviewedAt": refund_request.reviewed_at.isoformat(),
                    "reviewNotes": refund_request.review_notes,
                }
            },
        }
