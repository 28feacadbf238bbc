from .reservation_service import ReservationService
from .participant_roster import ParticipantRoster

__all__ = [
    "ReservationService",
    "ParticipantRoster",
]
