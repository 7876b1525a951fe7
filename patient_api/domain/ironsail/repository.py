"""IronSail repository - ShippingOrder persistence for IronSail fulfillment"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ...models_order import Order, OrderItem, ShippingOrder

IRONSAIL_ORDER_PREFIXES = ("IRONSAIL-", "PENDING-", "FAILED-")


class IronSailRepository:
    """Repository for IronSail shipping order operations"""

    @staticmethod
    def _ironsail_orders(db: Session):
        return db.query(ShippingOrder).filter(
            or_(*[ShippingOrder.pharmacy_order_id.like(f"{prefix}%") for prefix in IRONSAIL_ORDER_PREFIXES]),
            ShippingOrder.deleted_at.is_(None),
        )

    @staticmethod
    def list_orders(
        db: Session, page: int, per_page: int, status: Optional[str] = None
    ) -> tuple[list[ShippingOrder], int]:
        query = IronSailRepository._ironsail_orders(db)
        if status:
            query = query.filter(ShippingOrder.status == status)

        total = query.count()
        rows = (
            query.options(joinedload(ShippingOrder.order).joinedload(Order.user))
            .order_by(ShippingOrder.created_at.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return rows, total

    @staticmethod
    def get_shipping_order(db: Session, shipping_order_id: str) -> Optional[ShippingOrder]:
        return (
            db.query(ShippingOrder)
            .filter(ShippingOrder.id == shipping_order_id, ShippingOrder.deleted_at.is_(None))
            .first()
        )

    @staticmethod
    def get_order_for_submission(db: Session, order_id: str) -> Optional[Order]:
        return (
            db.query(Order)
            .options(
                joinedload(Order.user),
                joinedload(Order.shipping_address),
                joinedload(Order.items).joinedload(OrderItem.product),
            )
            .filter(Order.id == order_id, Order.deleted_at.is_(None))
            .first()
        )

    @staticmethod
    def has_ironsail_order(db: Session, order_id: str) -> bool:
        return (
            IronSailRepository._ironsail_orders(db).filter(ShippingOrder.order_id == order_id).first()
            is not None
        )

    @staticmethod
    def get_stuck_retry_orders(
        db: Session, cutoff: Optional[datetime], limit: int
    ) -> list[ShippingOrder]:
        """retry_pending rows not retried since the cutoff, never-retried rows first"""
        query = db.query(ShippingOrder).filter(
            ShippingOrder.status == "retry_pending", ShippingOrder.deleted_at.is_(None)
        )
        if cutoff is not None:
            query = query.filter(
                or_(ShippingOrder.last_retry_at < cutoff, ShippingOrder.last_retry_at.is_(None))
            )
        return query.order_by(ShippingOrder.last_retry_at.asc().nulls_first()).limit(limit).all()

    @staticmethod
    def create_shipping_order(db: Session, **fields) -> ShippingOrder:
        shipping_order = ShippingOrder(**fields)
        db.add(shipping_order)
        db.commit()
        db.refresh(shipping_order)
        return shipping_order

    @staticmethod
    def update_shipping_order(db: Session, shipping_order: ShippingOrder, **updates) -> ShippingOrder:
        for key, value in updates.items():
            setattr(shipping_order, key, value)
        db.commit()
        db.refresh(shipping_order)
        return shipping_order
