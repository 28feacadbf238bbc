from .reservation_models import (
    Reservation,
    ReservationStatus,
    ReservationParticipant,
    ParticipantCategory,
    UNPAID_STATUSES,
    ACTIVE_STATUSES,
)

__all__ = [
    "Reservation",
    "ReservationStatus",
    "ReservationParticipant",
    "ParticipantCategory",
    "UNPAID_STATUSES",
    "ACTIVE_STATUSES",
]
