# backend/modules/reservations/state_machine.py

"""
Reservation lifecycle transitions.

Every actor that moves a reservation (the owner cancelling, the payment
orchestrator confirming, the reconciliation sweeps) goes through
``transition``. It is a single conditional UPDATE guarded on the current
status, so when two actors race for the same reservation exactly one of
them sees ``True`` and performs the side effects that belong to the
transition (releasing capacity, refunding).
"""

import logging
from typing import Dict, FrozenSet, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from .models.reservation_models import Reservation, ReservationStatus


logger = logging.getLogger(__name__)

S = ReservationStatus

ALLOWED_TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    S.PENDING_PAYMENT: frozenset(
        {S.AWAITING_TRANSFER, S.CONFIRMED, S.PAYMENT_FAILED, S.CANCELLED}
    ),
    S.AWAITING_TRANSFER: frozenset({S.CONFIRMED, S.PAYMENT_FAILED, S.CANCELLED}),
    # A failed payment may be retried, which reopens the reservation
    S.PAYMENT_FAILED: frozenset({S.PENDING_PAYMENT, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def sources_for(target: ReservationStatus) -> FrozenSet[ReservationStatus]:
    """Statuses from which ``target`` is reachable"""
    return frozenset(
        status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets
    )


def transition(
    db: Session,
    reservation_id: int,
    to_status: ReservationStatus,
    from_statuses: Optional[Iterable[ReservationStatus]] = None,
    **values,
) -> bool:
    """
    Move a reservation to ``to_status`` if it is currently in one of
    ``from_statuses`` (default: every status allowed to reach it).

    Extra column values are written in the same statement. Runs inside
    the caller's transaction and returns whether this call won.
    """
    allowed = sources_for(to_status)
    sources = allowed if from_statuses is None else allowed & frozenset(from_statuses)
    if not sources:
        return False

    result = db.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id, Reservation.status.in_(list(sources)))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    won = result.rowcount == 1
    if won:
        logger.info(f"Reservation {reservation_id} -> {to_status.value}")
    else:
        logger.debug(f"Reservation {reservation_id} not moved to {to_status.value}")
    return won
