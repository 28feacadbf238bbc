# backend/modules/reservations/exceptions.py

from typing import Any, Dict, Optional

from core.exceptions import BookingError


class AlreadyCancelledError(BookingError):
    def __init__(self, reservation_id: int):
        super().__init__(
            f"Reservation {reservation_id} is already cancelled",
            "ALREADY_CANCELLED",
            {"reservation_id": reservation_id},
        )


class NotParticipantError(BookingError):
    def __init__(self, reservation_id: int, user_id: int):
        super().__init__(
            f"User {user_id} is not a participant of reservation {reservation_id}",
            "NOT_PARTICIPANT",
            {"reservation_id": reservation_id, "user_id": user_id},
        )


class InviteConflictError(BookingError):
    """Base exception for participant join violations"""

    def __init__(
        self, message: str, error_code: str, reservation_id: int,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.reservation_id = reservation_id
        payload = {"reservation_id": reservation_id}
        payload.update(details or {})
        super().__init__(message, error_code, payload)


class AlreadyJoinedError(InviteConflictError):
    def __init__(self, reservation_id: int, user_id: int):
        super().__init__(
            f"User {user_id} already joined reservation {reservation_id}",
            "INVITE_ALREADY_JOINED",
            reservation_id,
            {"user_id": user_id},
        )


class OwnerCannotJoinError(InviteConflictError):
    def __init__(self, reservation_id: int):
        super().__init__(
            f"The owner of reservation {reservation_id} cannot join it as a participant",
            "INVITE_OWNER_CANNOT_JOIN",
            reservation_id,
        )


class CapacityFullError(InviteConflictError):
    def __init__(self, reservation_id: int, category: str, capacity: int):
        super().__init__(
            f"No {category} seats left in reservation {reservation_id} ({capacity} total)",
            "INVITE_CAPACITY_FULL",
            reservation_id,
            {"category": category, "capacity": capacity},
        )


class ReservationCancelledError(InviteConflictError):
    def __init__(self, reservation_id: int):
        super().__init__(
            f"Reservation {reservation_id} has been cancelled",
            "INVITE_RESERVATION_CANCELLED",
            reservation_id,
        )
