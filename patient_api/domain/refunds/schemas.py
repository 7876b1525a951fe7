"""Refund domain schemas"""

from typing import Optional

from pydantic import BaseModel, field_validator

from ...models_billing import RefundRequest


class RefundRequestCreate(BaseModel):
    orderId: Optional[str] = None
    reason: Optional[str] = None


class RefundReview(BaseModel):
    reviewNotes: Optional[str] = None


class RefundCreate(BaseModel):
    orderId: Optional[str] = None
    amount: Optional[float] = None
    reason: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Refund amount must be positive")
        return v


def _person(user) -> Optional[dict]:
    if not user:
        return None
    return {"id": user.id, "firstName": user.first_name, "lastName": user.last_name, "email": user.email}


def serialize_refund_request(refund_request: RefundRequest, detailed: bool = True) -> dict:
    data = {
        "id": refund_request.id,
        "orderId": refund_request.order_id,
        "clinicId": refund_request.clinic_id,
        "amount": refund_request.amount,
        "brandCoverageAmount": refund_request.brand_coverage_amount,
        "reason": refund_request.reason,
        "status": refund_request.status,
        "reviewNotes": refund_request.review_notes,
        "reviewedAt": refund_request.reviewed_at.isoformat() if refund_request.reviewed_at else None,
        "createdAt": refund_request.created_at.isoformat() if refund_request.created_at else None,
    }
    if detailed:
        order = refund_request.order
        clinic = refund_request.clinic
        data.update(
            order={
                "id": order.id,
                "orderNumber": order.order_number,
                "totalAmount": order.total_amount,
                "brandAmount": order.brand_amount,
                "status": order.status,
            }
            if order
            else None,
            clinic={"id": clinic.id, "name": clinic.name, "slug": clinic.slug} if clinic else None,
            requestedBy=_person(refund_request.requester),
            reviewedBy=_person(refund_request.reviewer),
        )
    return data
