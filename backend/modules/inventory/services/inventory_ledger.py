# backend/modules/inventory/services/inventory_ledger.py

import logging
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from core.exceptions import NotFoundError
from ..exceptions import InsufficientCapacityError
from ..models.event_models import Event


logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Owns the per-event remaining-capacity counter.

    Every mutation is a single-row conditional UPDATE, so concurrent
    reserve/release calls on the same event serialize in the database
    without a global lock. The ledger never commits; the caller's
    transaction decides whether the change becomes visible.
    """

    def __init__(self, db: Session):
        self.db = db

    def reserve(self, event_id: int, count: int) -> None:
        if count <= 0:
            raise ValueError("Seat count must be positive")

        stmt = (
            update(Event)
            .where(Event.id == event_id, Event.remaining_capacity >= count)
            .values(remaining_capacity=Event.remaining_capacity - count)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            remaining = self.get_remaining(event_id)
            if remaining is None:
                raise NotFoundError("Event", event_id)
            logger.info(
                f"Rejected reservation of {count} seat(s) on event {event_id}: "
                f"{remaining} remaining"
            )
            raise InsufficientCapacityError(event_id, count, remaining)

        logger.debug(f"Reserved {count} seat(s) on event {event_id}")

    def release(self, event_id: int, count: int) -> None:
        """Return seats to the event, never exceeding its total capacity"""
        if count <= 0:
            return

        restored = Event.remaining_capacity + count
        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .values(
                remaining_capacity=case(
                    (restored > Event.capacity, Event.capacity),
                    else_=restored,
                )
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount != 1:
            raise NotFoundError("Event", event_id)

        logger.debug(f"Released {count} seat(s) on event {event_id}")

    def get_remaining(self, event_id: int) -> Optional[int]:
        return self.db.execute(
            select(Event.remaining_capacity).where(Event.id == event_id)
        ).scalar_one_or_none()
