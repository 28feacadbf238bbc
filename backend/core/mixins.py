# backend/core/mixins.py

from sqlalchemy import Column, DateTime
from sqlalchemy.sql import func


class TimestampMixin:
    """
    Row bookkeeping columns.

    Services that reason about age (the expiry sweep reads
    ``Reservation.created_at``) write these explicitly from their injected
    clock; the database default only covers rows inserted elsewhere.
    """

    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)
