# backend/modules/payments/models/payment_models.py

from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Numeric, Text,
    Boolean, Index, JSON, Enum as SQLEnum
)
from core.database import Base
from core.mixins import TimestampMixin
from decimal import Decimal
from enum import Enum
import uuid


class PaymentChannel(str, Enum):
    """Channels a reservation can be paid through"""
    CARD = "card"
    MOBILE_WALLET = "mobile_wallet"
    BANK_TRANSFER = "bank_transfer"


class PaymentStatus(str, Enum):
    """Payment status states"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    CANCELLED = "cancelled"


class Payment(Base, TimestampMixin):
    """The single payment attached to a reservation"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(String(100), nullable=False, unique=True, index=True)  # Our internal ID

    reservation_id = Column(
        Integer, ForeignKey("reservations.id"), nullable=False, unique=True, index=True
    )
    channel = Column(SQLEnum(PaymentChannel), nullable=False)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    currency = Column(String(3), nullable=False, default="JPY")

    # charge_amount + voucher_applied_amount == reservation.total_price
    charge_amount = Column(Numeric(10, 2), nullable=False)
    voucher_id = Column(Integer, ForeignKey("gift_vouchers.id"), nullable=True, index=True)
    voucher_applied_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    refunded_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    # Bank transfer only
    transfer_deadline = Column(DateTime, nullable=True)

    # Gateway references
    checkout_session_id = Column(String(255), nullable=True, index=True)
    checkout_url = Column(Text, nullable=True)
    external_charge_id = Column(String(255), nullable=True, index=True)
    gateway_refund_id = Column(String(255), nullable=True)

    failure_code = Column(String(100), nullable=True)
    failure_message = Column(Text, nullable=True)

    paid_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_payment_channel_session", "channel", "checkout_session_id"),
        Index("idx_payment_status_deadline", "status", "transfer_deadline"),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.payment_id:
            self.payment_id = f"pay_{uuid.uuid4().hex[:16]}"

    def __repr__(self):
        return f"<Payment(payment_id={self.payment_id}, status={self.status})>"


class PaymentWebhook(Base, TimestampMixin):
    """Gateway callbacks, stored once per gateway event id"""
    __tablename__ = "payment_webhooks"

    id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(String(100), nullable=False, unique=True, index=True)

    channel = Column(SQLEnum(PaymentChannel), nullable=False)
    gateway_event_id = Column(String(255), nullable=False, unique=True, index=True)
    event_type = Column(String(100), nullable=False)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True, index=True)

    payload = Column(JSON, nullable=False)

    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_webhook_channel_event", "channel", "event_type", "processed"),
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.webhook_id:
            self.webhook_id = f"whk_{uuid.uuid4().hex[:16]}"
