"""
Order, payment and pharmacy fulfillment models
"""

import secrets
import string
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base
from .models import TimestampMixin, generate_uuid

ORDER_STATUSES = (
    "pending",
    "payment_processing",
    "amount_capturable_updated",
    "paid",
    "payment_due",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
)

PAYMENT_STATUSES = (
    "pending",
    "processing",
    "succeeded",
    "failed",
    "cancelled",
    "refunded",
    "partially_refunded",
)

PAYMENT_RECIPIENTS = ("brand", "doctor", "pharmacy", "platform")

SHIPPING_ORDER_STATUSES = (
    "pending",
    "processing",
    "filled",
    "approved",
    "shipped",
    "delivered",
    "cancelled",
    "rejected",
    "problem",
    "completed",
    "retry_pending",
    "failed",
)


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-YYYYMMDD-HHMMSS-XXXXXX"""
    now = now or datetime.utcnow()
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"ORD-{now.strftime('%Y%m%d')}-{now.strftime('%H%M%S')}-{suffix}"


class Order(TimestampMixin, Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    order_number = Column(String(50), unique=True, index=True, nullable=False, default=generate_order_number)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True, index=True)
    program_id = Column(String(36), ForeignKey("programs.id"), nullable=True)
    questionnaire_id = Column(String(36), ForeignKey("questionnaires.id"), nullable=True)
    shipping_address_id = Column(String(36), ForeignKey("shipping_addresses.id"), nullable=True)
    affiliate_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    physician_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    approved_by_doctor_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String(50), default="pending", nullable=False, index=True)

    # Money, all in USD
    subtotal_amount = Column(Float, default=0, nullable=False)
    discount_amount = Column(Float, default=0, nullable=False)
    tax_amount = Column(Float, default=0, nullable=False)
    shipping_amount = Column(Float, default=0, nullable=False)
    total_amount = Column(Float, default=0, nullable=False)
    platform_fee_amount = Column(Float, default=0, nullable=False)
    platform_fee_percent = Column(Float, default=0, nullable=False)
    doctor_amount = Column(Float, default=0, nullable=False)
    pharmacy_wholesale_amount = Column(Float, default=0, nullable=False)
    brand_amount = Column(Float, default=0, nullable=False)
    stripe_amount = Column(Float, default=0, nullable=False)
    visit_fee_amount = Column(Float, default=0, nullable=False)

    # MD Integrations case data
    md_case_id = Column(String(100), nullable=True, index=True)
    md_offerings = Column(JSON, nullable=True)
    md_prescriptions = Column(JSON, nullable=True)
    md_case_status = Column(String(50), nullable=True)

    notes = Column(Text, nullable=True)
    doctor_notes = Column(Text, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    user = relationship("User", foreign_keys=[user_id])
    affiliate = relationship("User", foreign_keys=[affiliate_id])
    approved_by_doctor = relationship("User", foreign_keys=[approved_by_doctor_id])
    clinic = relationship("Clinic")
    shipping_address = relationship("ShippingAddress")
    items = relationship("OrderItem", back_populates="order")
    payment = relationship("Payment", back_populates="order", uselist=False)
    shipping_orders = relationship("ShippingOrder", back_populates="order")

    def calculate_total(self) -> float:
        total = (
            (self.subtotal_amount or 0)
            - (self.discount_amount or 0)
            + (self.tax_amount or 0)
            + (self.shipping_amount or 0)
        )
        self.total_amount = round(total, 2)
        return self.total_amount

    def update_status(self, status: str):
        if status not in ORDER_STATUSES:
            raise ValueError(f"Invalid order status: {status}")
        self.status = status
        if status == "shipped" and not self.shipped_at:
            self.shipped_at = datetime.utcnow()
        if status == "delivered" and not self.delivered_at:
            self.delivered_at = datetime.utcnow()


class OrderItem(TimestampMixin, Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Float, default=0, nullable=False)
    total_price = Column(Float, default=0, nullable=False)
    dosage = Column(String(255), nullable=True)
    pharmacy_product_id = Column(String(100), nullable=True)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, unique=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    status = Column(String(30), default="pending", nullable=False)
    amount = Column(Float, default=0, nullable=False)
    currency = Column(String(3), default="usd", nullable=False)
    refunded_amount = Column(Float, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    payment_goes_to = Column(String(20), nullable=True)  # brand, doctor, pharmacy, platform
    stripe_metadata = Column(JSON, nullable=True)

    order = relationship("Order", back_populates="payment")


class ShippingAddress(TimestampMixin, Base):
    __tablename__ = "shipping_addresses"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    address = Column(String(255), nullable=False)
    apartment = Column(String(100), nullable=True)
    city = Column(String(100), nullable=False)
    state = Column(String(50), nullable=False)
    zip_code = Column(String(20), nullable=False)
    country = Column(String(2), default="US", nullable=False)


class ShippingOrder(TimestampMixin, Base):
    """An order as sent to an external pharmacy, with its retry bookkeeping"""

    __tablename__ = "shipping_orders"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    shipping_address_id = Column(String(36), ForeignKey("shipping_addresses.id"), nullable=True)
    status = Column(String(30), default="pending", nullable=False, index=True)
    pharmacy_order_id = Column(String(255), nullable=True, index=True)
    pharmacy = Column(String(50), nullable=True)  # ironsail, olympia, mdi
    tracking_number = Column(String(255), nullable=True)
    tracking_url = Column(String(500), nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    last_retry_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)
    retry_error = Column(Text, nullable=True)

    order = relationship("Order", back_populates="shipping_orders")
    shipping_address = relationship("ShippingAddress")


class Prescription(TimestampMixin, Base):
    __tablename__ = "prescriptions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    patient_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    md_prescription_id = Column(String(100), nullable=True, unique=True)
    written_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
