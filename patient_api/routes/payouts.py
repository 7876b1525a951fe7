"""
Payout Routes - what each party is owed from patient payments

Doctors, brands and pharmacies see the payments routed to them; affiliates
see a commission computed from the orders they referred; platform admins
see everything aggregated per recipient.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Query as SAQuery
from sqlalchemy.orm import Session, joinedload

from .. import config
from ..auth import get_current_user, is_impersonating, require_roles
from ..database import get_db
from ..models import User
from ..models_order import Order, Payment
from ..phi import REDACTED, mask_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts", tags=["Payouts"])

PAID_PAYMENT_STATUSES = ("succeeded", "processing")
PAID_ORDER_STATUSES = ("paid", "processing", "shipped", "delivered")


def parse_date(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}, expected an ISO date") from None


def apply_date_range(query: SAQuery, column, date_from: Optional[str], date_to: Optional[str]) -> SAQuery:
    start = parse_date(date_from, "dateFrom")
    end = parse_date(date_to, "dateTo")
    if start:
        query = query.filter(column >= start)
    if end and "T" not in date_to:
        # a bare date covers the whole day
        query = query.filter(column < end + timedelta(days=1))
    elif end:
        query = query.filter(column <= end)
    return query


def paid_payments(db: Session, goes_to: str) -> SAQuery:
    return (
        db.query(Payment)
        .join(Order, Payment.order_id == Order.id)
        .filter(
            Payment.payment_goes_to == goes_to,
            Payment.status.in_(PAID_PAYMENT_STATUSES),
            Payment.deleted_at.is_(None),
            Order.deleted_at.is_(None),
        )
    )


def pagination(page: int, limit: int, total: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "totalPages": math.ceil(total / limit) if limit else 0}


def affiliate_commission(total_amount: float) -> float:
    return round((total_amount or 0) * config.AFFILIATE_REVENUE_PERCENTAGE / 100, 2)


def customer_info(user: Optional[User], masked: bool) -> Optional[dict]:
    if not user:
        return None
    if masked:
        return {"name": REDACTED, "email": mask_email(user.email)}
    return {"name": user.full_name, "email": user.email}


def brand_info(order: Optional[Order]) -> Optional[dict]:
    if not order or not order.clinic:
        return None
    return {"name": order.clinic.name, "slug": order.clinic.slug}


def payment_payouts(query: SAQuery, page: int, limit: int, masked: bool) -> dict:
    """Paginate a Payment query into the shared payout response"""
    total = query.count()
    payments = (
        query.options(joinedload(Payment.order).joinedload(Order.user), joinedload(Payment.order).joinedload(Order.clinic))
        .order_by(Payment.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    payouts = []
    for payment in payments:
        order = payment.order
        payouts.append(
            {
                "paymentId": payment.id,
                "orderId": order.id if order else None,
                "orderNumber": order.order_number if order else None,
                "amount": payment.amount or 0,
                "totalAmount": (order.total_amount or 0) if order else (payment.amount or 0),
                "date": payment.created_at.isoformat() if payment.created_at else None,
                "status": payment.status,
                "paidAt": payment.paid_at.isoformat() if payment.paid_at else None,
                "stripePaymentIntentId": payment.stripe_payment_intent_id,
                "brand": brand_info(order),
                "customer": customer_info(order.user if order else None, masked),
            }
        )

    return {
        "success": True,
        "data": {
            "payouts": payouts,
            "summary": {
                "totalAmount": round(sum(p["amount"] for p in payouts), 2),
                "totalOrders": len(payouts),
            },
            "pagination": pagination(page, limit, total),
        },
    }


@router.get("/doctor")
async def get_doctor_payouts(
    request: Request,
    dateFrom: Optional[str] = Query(None),
    dateTo: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Payments routed to the doctor for orders they approved"""
    if "doctor" not in current_user.role_list() and current_user.role != "doctor":
        raise HTTPException(status_code=403, detail="Access denied. Doctor role required.")

    query = paid_payments(db, "doctor").filter(Order.approved_by_doctor_id == current_user.id)
    query = apply_date_range(query, Payment.created_at, dateFrom, dateTo)
    return payment_payouts(query, page, limit, is_impersonating(request))


@router.get("/brand")
async def get_brand_payouts(
    request: Request,
    dateFrom: Optional[str] = Query(None),
    dateTo: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Payments routed to the caller's clinic"""
    if not current_user.clinic_id:
        raise HTTPException(status_code=403, detail="User does not have a clinic associated")

    query = paid_payments(db, "brand").filter(Order.clinic_id == current_user.clinic_id)
    query = apply_date_range(query, Payment.created_at, dateFrom, dateTo)
    return payment_payouts(query, page, limit, is_impersonating(request))


@router.get("/pharmacy")
async def get_pharmacy_payouts(
    request: Request,
    dateFrom: Optional[str] = Query(None),
    dateTo: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_roles("admin")),
    db: Session = Depends(get_db),
):
    query = paid_payments(db, "pharmacy")
    query = apply_date_range(query, Payment.created_at, dateFrom, dateTo)
    return payment_payouts(query, page, limit, is_impersonating(request))


@router.get("/affiliate")
async def get_affiliate_payouts(
    request: Request,
    dateFrom: Optional[str] = Query(None),
    dateTo: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Commission on the orders the caller referred"""
    query = db.query(Order).filter(
        Order.affiliate_id == current_user.id,
        Order.status.in_(PAID_ORDER_STATUSES),
        Order.deleted_at.is_(None),
    )
    query = apply_date_range(query, Order.created_at, dateFrom, dateTo)
    total = query.count()
    orders = (
        query.options(joinedload(Order.payment), joinedload(Order.clinic), joinedload(Order.user))
        .order_by(Order.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    masked = is_impersonating(request)
    payouts = [
        {
            "orderId": order.id,
            "orderNumber": order.order_number,
            "amount": affiliate_commission(order.total_amount),
            "totalAmount": order.total_amount or 0,
            "date": order.created_at.isoformat() if order.created_at else None,
            "status": order.status,
            "paymentStatus": order.payment.status if order.payment else None,
            "paidAt": order.payment.paid_at.isoformat() if order.payment and order.payment.paid_at else None,
            "brand": brand_info(order),
            "customer": customer_info(order.user, masked),
        }
        for order in orders
    ]

    return {
        "success": True,
        "data": {
            "payouts": payouts,
            "summary": {
                "totalAmount": round(sum(p["amount"] for p in payouts), 2),
                "totalOrders": len(payouts),
            },
            "pagination": pagination(page, limit, total),
        },
    }


def _bucket(buckets: dict, key: str, **identity) -> dict:
    if key not in buckets:
        buckets[key] = {**identity, "totalAmount": 0.0, "orderCount": 0, "orders": []}
    return buckets[key]


def _add_order(bucket: dict, order: Order, amount: float) -> None:
    bucket["totalAmount"] = round(bucket["totalAmount"] + amount, 2)
    bucket["orderCount"] += 1
    bucket["orders"].append(
        {
            "orderId": order.id,
            "orderNumber": order.order_number,
            "amount": amount,
            "date": order.created_at.isoformat() if order.created_at else None,
            "status": order.status,
            "paymentStatus": order.payment.status if order.payment else None,
        }
    )


@router.get("/tenant")
async def get_tenant_payouts(
    request: Request,
    dateFrom: Optional[str] = Query(None),
    dateTo: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(require_roles("admin")),
    db: Session = Depends(get_db),
):
    """Platform-wide view: each paid order split into brand, doctor, pharmacy and affiliate shares"""
    query = db.query(Order).filter(Order.status.in_(PAID_ORDER_STATUSES), Order.deleted_at.is_(None))
    query = apply_date_range(query, Order.created_at, dateFrom, dateTo)
    total = query.count()
    orders = (
        query.options(
            joinedload(Order.clinic),
            joinedload(Order.payment),
            joinedload(Order.affiliate),
            joinedload(Order.approved_by_doctor),
        )
        .order_by(Order.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    masked = is_impersonating(request)
    brands, doctors, pharmacies, affiliates = {}, {}, {}, {}
    totals = {
        "totalBrandAmount": 0.0,
        "totalDoctorAmount": 0.0,
        "totalPharmacyAmount": 0.0,
        "totalAffiliateAmount": 0.0,
        "totalPlatformFee": 0.0,
    }

    for order in orders:
        if (order.brand_amount or 0) > 0 and order.clinic_id:
            bucket = _bucket(
                brands,
                order.clinic_id,
                clinicId=order.clinic_id,
                clinicName=order.clinic.name if order.clinic else "Unknown",
                clinicSlug=order.clinic.slug if order.clinic else "",
            )
            _add_order(bucket, order, order.brand_amount)
            totals["totalBrandAmount"] += order.brand_amount

        doctor_id = order.approved_by_doctor_id or order.physician_id
        if (order.doctor_amount or 0) > 0 and doctor_id:
            doctor = order.approved_by_doctor
            bucket = _bucket(
                doctors,
                doctor_id,
                doctorId=doctor_id,
                doctorName=doctor.full_name if doctor else "Unknown",
                doctorEmail=doctor.email if doctor else "",
            )
            _add_order(bucket, order, order.doctor_amount)
            totals["totalDoctorAmount"] += order.doctor_amount

        if (order.pharmacy_wholesale_amount or 0) > 0:
            # Orders do not record which pharmacy filled them
            bucket = _bucket(pharmacies, "pharmacy", pharmacyId="pharmacy", pharmacyName="Pharmacy")
            _add_order(bucket, order, order.pharmacy_wholesale_amount)
            totals["totalPharmacyAmount"] += order.pharmacy_wholesale_amount

        if order.affiliate_id:
            affiliate = order.affiliate
            commission = affiliate_commission(order.total_amount)
            bucket = _bucket(
                affiliates,
                order.affiliate_id,
                affiliateId=order.affiliate_id,
                affiliateName=affiliate.full_name if affiliate else "Unknown",
                affiliateEmail=affiliate.email if affiliate else "",
            )
            _add_order(bucket, order, commission)
            totals["totalAffiliateAmount"] += commission

        totals["totalPlatformFee"] += order.platform_fee_amount or 0

    if masked:
        for bucket in affiliates.values():
            bucket["affiliateName"] = REDACTED
            bucket["affiliateEmail"] = mask_email(bucket["affiliateEmail"])

    return {
        "success": True,
        "data": {
            "brands": list(brands.values()),
            "doctors": list(doctors.values()),
            "pharmacies": list(pharmacies.values()),
            "affiliates": list(affiliates.values()),
            "totals": {key: round(value, 2) for key, value in totals.items()},
            "pagination": pagination(page, limit, total),
        },
    }
