"""Refunds router - refund requests reviewed by admins, and direct refunds"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...models import User
from .schemas import RefundCreate, RefundRequestCreate, RefundReview
from .service import RefundService

refund_requests_router = APIRouter(prefix="/refund-requests", tags=["Refunds"])
refunds_router = APIRouter(prefix="/refunds", tags=["Refunds"])

require_admin = require_roles("admin")


def get_refund_service(db: Session = Depends(get_db)) -> RefundService:
    """Dependency injection for RefundService"""
    return RefundService(db)


@refund_requests_router.post("", status_code=201)
async def create_refund_request(
    data: RefundRequestCreate,
    current_user: User = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    """Brand admins ask for a refund; nothing moves until an admin approves it"""
    return service.create_request(current_user, data.orderId, data.reason)


@refund_requests_router.get("/clinic/{clinic_id}")
async def list_refund_requests(
    clinic_id: str,
    status: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    return service.list_requests(current_user, clinic_id, status)


@refund_requests_router.get("/order/{order_id}")
async def get_order_refund_request(
    order_id: str,
    current_user: User = Depends(get_current_user),
    service: RefundService = Depends(get_refund_service),
):
    return service.get_by_order(current_user, order_id)


@refund_requests_router.post("/{request_id}/approve")
async def approve_refund_request(
    request_id: str,
    data: Optional[RefundReview] = None,
    current_user: User = Depends(require_admin),
    service: RefundService = Depends(get_refund_service),
):
    return service.approve(current_user, request_id, data.reviewNotes if data else None)


@refund_requests_router.post("/{request_id}/deny")
async def deny_refund_request(
    request_id: str,
    data: Optional[RefundReview] = None,
    current_user: User = Depends(require_admin),
    service: RefundService = Depends(get_refund_service),
):
    return service.deny(current_user, request_id, data.reviewNotes if data else None)


@refunds_router.post("")
async def create_refund(
    data: RefundCreate,
    current_user: User = Depends(require_admin),
    service: RefundService = Depends(get_refund_service),
):
    return service.create_refund(data.orderId, data.amount)
