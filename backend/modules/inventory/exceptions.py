# backend/modules/inventory/exceptions.py

from core.exceptions import BookingError


class InsufficientCapacityError(BookingError):
    """Raised when an event has fewer remaining seats than requested"""

    def __init__(self, event_id: int, requested: int, remaining: int):
        self.event_id = event_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Event {event_id} has {remaining} seat(s) left, {requested} requested",
            "INSUFFICIENT_CAPACITY",
            {"event_id": event_id, "requested": requested, "remaining": remaining},
        )
