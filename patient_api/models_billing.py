"""
Refund and clinic balance models
"""

from sqlalchemy import Column, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from .database import Base
from .models import TimestampMixin, generate_uuid

BALANCE_TYPES = ("refund_debt", "payment", "adjustment")
BALANCE_STATUSES = ("pending", "paid", "cancelled")
REFUND_REQUEST_STATUSES = ("pending", "approved", "denied")


class ClinicBalance(TimestampMixin, Base):
    """Money a clinic owes the platform (negative amount) or has settled"""

    __tablename__ = "clinic_balances"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True)
    amount = Column(Float, nullable=False)
    type = Column(String(20), default="refund_debt", nullable=False)
    status = Column(String(20), default="pending", nullable=False)
    stripe_transfer_id = Column(String(255), nullable=True)
    stripe_refund_id = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    clinic = relationship("Clinic")
    order = relationship("Order")


class RefundRequest(TimestampMixin, Base):
    __tablename__ = "refund_requests"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    clinic_id = Column(String(36), ForeignKey("clinics.id"), nullable=True, index=True)
    requested_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    amount = Column(Float, nullable=False)
    brand_coverage_amount = Column(Float, nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String(20), default="pending", nullable=False, index=True)
    reviewed_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)
    stripe_refund_id = Column(String(255), nullable=True)

    order = relationship("Order")
    clinic = relationship("Clinic")
    requester = relationship("User", foreign_keys=[requested_by])
    reviewer = relationship("User", foreign_keys=[reviewed_by])
