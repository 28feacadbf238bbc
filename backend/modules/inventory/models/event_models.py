# backend/modules/inventory/models/event_models.py

from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, CheckConstraint, Index
)
from core.database import Base
from core.mixins import TimestampMixin


class Event(Base, TimestampMixin):
    """
    Capacity and price snapshot of a bookable experience slot.

    Rows are created by the catalog; the reservation core only ever
    moves ``remaining_capacity`` through the inventory ledger.
    """
    __tablename__ = "experience_events"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, nullable=False, index=True)
    title = Column(String(200), nullable=False)

    capacity = Column(Integer, nullable=False)
    remaining_capacity = Column(Integer, nullable=False)
    starts_at = Column(DateTime, nullable=False, index=True)

    # Per-person prices; child_price falls back to price when unset
    price = Column(Numeric(10, 2), nullable=False)
    child_price = Column(Numeric(10, 2), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "remaining_capacity >= 0 AND remaining_capacity <= capacity",
            name="ck_event_remaining_capacity",
        ),
        Index("idx_event_provider_start", "provider_id", "starts_at"),
    )

    @property
    def effective_child_price(self):
        return self.child_price if self.child_price is not None else self.price

    def __repr__(self):
        return f"<Event(id={self.id}, remaining={self.remaining_capacity}/{self.capacity})>"
