# backend/modules/payments/exceptions.py

from typing import Optional

from core.exceptions import BookingError


class ChannelUnavailableError(BookingError):
    """Raised when a payment channel cannot be used for this reservation"""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(
            f"Payment channel {channel} is unavailable: {reason}",
            "CHANNEL_UNAVAILABLE",
            {"channel": channel, "reason": reason},
        )


class PaymentInProgressError(BookingError):
    """Raised when a reservation already has an open checkout on other terms"""

    def __init__(self, reservation_id: int, payment_id: str, channel: str):
        super().__init__(
            f"Reservation {reservation_id} already has a pending {channel} payment {payment_id}",
            "PAYMENT_IN_PROGRESS",
            {"reservation_id": reservation_id, "payment_id": payment_id, "channel": channel},
        )


class PaymentNotCompletedError(BookingError):
    """Raised when a refund is attempted on a payment that never completed"""

    def __init__(self, reservation_id: int, status: Optional[str]):
        super().__init__(
            f"Payment for reservation {reservation_id} is not completed (status: {status})",
            "PAYMENT_NOT_COMPLETED",
            {"reservation_id": reservation_id, "status": status},
        )


class GatewayFailureError(BookingError):
    """
    Raised when a gateway call fails or times out.

    Always retryable: no local state was changed when this is raised.
    """

    retryable = True

    def __init__(self, gateway: str, operation: str, reason: str):
        self.gateway = gateway
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"{gateway} {operation} failed: {reason}",
            "GATEWAY_FAILURE",
            {"gateway": gateway, "operation": operation, "reason": reason, "retryable": True},
        )
