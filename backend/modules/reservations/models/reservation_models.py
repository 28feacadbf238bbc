# backend/modules/reservations/models/reservation_models.py

"""
Reservation and group-participant models for experience bookings.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Numeric, Text,
    Enum as SQLEnum, UniqueConstraint, Index
)
from sqlalchemy.sql import func
from core.database import Base
from core.mixins import TimestampMixin
from enum import Enum


class ReservationStatus(str, Enum):
    """Reservation lifecycle states"""
    PENDING_PAYMENT = "pending_payment"
    AWAITING_TRANSFER = "awaiting_transfer"  # Bank transfer requested, not yet received
    PAYMENT_FAILED = "payment_failed"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that still hold capacity without a completed payment
UNPAID_STATUSES = (
    ReservationStatus.PENDING_PAYMENT,
    ReservationStatus.AWAITING_TRANSFER,
    ReservationStatus.PAYMENT_FAILED,
)

ACTIVE_STATUSES = UNPAID_STATUSES + (ReservationStatus.CONFIRMED,)


class ParticipantCategory(str, Enum):
    ADULT = "adult"
    CHILD = "child"
    INFANT = "infant"


class Reservation(Base, TimestampMixin):
    """A user's hold on part of an event's capacity"""
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("experience_events.id"), nullable=False, index=True)

    # Headcount deducted from the event at creation
    adults = Column(Integer, nullable=False, default=1)
    children = Column(Integer, nullable=False, default=0)
    infants = Column(Integer, nullable=False, default=0)

    total_price = Column(Numeric(10, 2), nullable=False)
    status = Column(
        SQLEnum(ReservationStatus),
        nullable=False,
        default=ReservationStatus.PENDING_PAYMENT,
        index=True,
    )

    invite_code = Column(String(32), unique=True, nullable=True, index=True)

    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_reservation_status_created", "status", "created_at"),
        Index("idx_reservation_user_status", "user_id", "status"),
    )

    @property
    def headcount(self) -> int:
        return (self.adults or 0) + (self.children or 0) + (self.infants or 0)

    def category_capacity(self, category: ParticipantCategory) -> int:
        """Seats in ``category`` open to invited participants (owner holds one adult seat)"""
        if category == ParticipantCategory.ADULT:
            return max((self.adults or 0) - 1, 0)
        if category == ParticipantCategory.CHILD:
            return self.children or 0
        return self.infants or 0

    def __repr__(self):
        return f"<Reservation(id={self.id}, event={self.event_id}, status={self.status})>"


class ReservationParticipant(Base):
    """A user who joined a reservation through its invite code"""
    __tablename__ = "reservation_participants"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    category = Column(SQLEnum(ParticipantCategory), nullable=False)
    joined_at = Column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("reservation_id", "user_id", name="uq_participant_reservation_user"),
    )
