# backend/modules/vouchers/models/voucher_models.py

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Numeric, Text,
    Enum as SQLEnum, CheckConstraint, Index
)
from sqlalchemy.sql import func
from core.database import Base
from core.mixins import TimestampMixin
from enum import Enum


class VoucherStatus(str, Enum):
    """Gift voucher lifecycle"""
    PENDING = "pending"  # Purchased, payment not settled
    ACTIVE = "active"  # Code issued, not yet bound to a user
    REDEEMED = "redeemed"  # Bound to an owner, balance remaining
    USED = "used"  # Balance exhausted
    EXPIRED = "expired"
    CANCELLED = "cancelled"


SPENDABLE_STATUSES = (VoucherStatus.ACTIVE, VoucherStatus.REDEEMED)


class GiftVoucher(Base, TimestampMixin):
    """Balance-bearing voucher issued by the purchase flow"""
    __tablename__ = "gift_vouchers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, nullable=True, index=True)

    face_amount = Column(Numeric(10, 2), nullable=False)
    balance = Column(Numeric(10, 2), nullable=False)
    status = Column(SQLEnum(VoucherStatus), nullable=False, default=VoucherStatus.PENDING, index=True)

    purchaser_id = Column(Integer, nullable=True, index=True)
    owner_id = Column(Integer, nullable=True, index=True)

    recipient_name = Column(String(100), nullable=True)
    recipient_email = Column(String(255), nullable=True)
    message = Column(Text, nullable=True)

    expires_at = Column(DateTime, nullable=False)
    activated_at = Column(DateTime, nullable=True)
    redeemed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "balance >= 0 AND balance <= face_amount", name="ck_voucher_balance"
        ),
        Index("idx_voucher_owner_status", "owner_id", "status"),
    )

    def is_usable(self, now) -> bool:
        return (
            self.status in SPENDABLE_STATUSES
            and self.balance > 0
            and self.expires_at > now
        )

    def __repr__(self):
        return f"<GiftVoucher(id={self.id}, status={self.status}, balance={self.balance})>"


class GiftVoucherConsumption(Base):
    """One balance deduction, keyed by the payment that caused it"""
    __tablename__ = "gift_voucher_consumptions"

    id = Column(Integer, primary_key=True, index=True)
    voucher_id = Column(Integer, ForeignKey("gift_vouchers.id"), nullable=False, index=True)
    payment_id = Column(String(100), nullable=False, unique=True)
    amount = Column(Numeric(10, 2), nullable=False)
    consumed_at = Column(DateTime, default=func.now(), nullable=False)
