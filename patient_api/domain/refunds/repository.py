"""Refund repository - Database operations for refunds, refund requests and clinic balances"""

from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models_billing import ClinicBalance, RefundRequest
from ...models_order import Order


class RefundRepository:
    """Repository for refund database operations"""

    @staticmethod
    def get_order(db: Session, order_id: str) -> Optional[Order]:
        return (
            db.query(Order)
            .options(joinedload(Order.payment), joinedload(Order.clinic))
            .filter(Order.id == order_id, Order.deleted_at.is_(None))
            .first()
        )

    @staticmethod
    def get_pending_request_for_order(db: Session, order_id: str) -> Optional[RefundRequest]:
        return (
            db.query(RefundRequest)
            .filter(
                RefundRequest.order_id == order_id,
                RefundRequest.status == "pending",
                RefundRequest.deleted_at.is_(None),
            )
            .first()
        )

    @staticmethod
    def get_latest_request_for_order(db: Session, order_id: str) -> Optional[RefundRequest]:
        return (
            db.query(RefundRequest)
            .options(joinedload(RefundRequest.requester), joinedload(RefundRequest.reviewer))
            .filter(RefundRequest.order_id == order_id, RefundRequest.deleted_at.is_(None))
            .order_by(RefundRequest.created_at.desc())
            .first()
        )

    @staticmethod
    def get_request(db: Session, request_id: str) -> Optional[RefundRequest]:
        return (
            db.query(RefundRequest)
            .options(joinedload(RefundRequest.order).joinedload(Order.payment))
            .filter(RefundRequest.id == request_id, RefundRequest.deleted_at.is_(None))
            .first()
        )

    @staticmethod
    def list_requests(
        db: Session, clinic_id: Optional[str], status: Optional[str]
    ) -> list[RefundRequest]:
        query = db.query(RefundRequest).options(
            joinedload(RefundRequest.order),
            joinedload(RefundRequest.clinic),
            joinedload(RefundRequest.requester),
            joinedload(RefundRequest.reviewer),
        )
        query = query.filter(RefundRequest.deleted_at.is_(None))
        if clinic_id:
            query = query.filter(RefundRequest.clinic_id == clinic_id)
        if status:
            query = query.filter(RefundRequest.status == status)
        return query.order_by(RefundRequest.created_at.desc()).all()

    @staticmethod
    def create_request(db: Session, **fields) -> RefundRequest:
        refund_request = RefundRequest(**fields)
        db.add(refund_request)
        db.commit()
        db.refresh(refund_request)
        return refund_request

    @staticmethod
    def add_balance(db: Session, **fields) -> ClinicBalance:
        """Stage a balance row; committed with the rest of the refund"""
        balance = ClinicBalance(**fields)
        db.add(balance)
        db.flush()
        return balance
