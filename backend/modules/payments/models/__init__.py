# backend/modules/payments/models/__init__.py

from .payment_models import (
    PaymentChannel,
    PaymentStatus,
    Payment,
    PaymentWebhook,
)

__all__ = [
    "PaymentChannel",
    "PaymentStatus",
    "Payment",
    "PaymentWebhook",
]
