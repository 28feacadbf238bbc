# backend/modules/payments/gateways/__init__.py

from .base import (
    PaymentGatewayInterface,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutConfirmation,
    RefundRequest,
    RefundResponse,
    WebhookEvent,
)
from .stripe_gateway import StripeGateway
from .wallet_gateway import WalletGateway
from .bank_transfer_gateway import BankTransferGateway

__all__ = [
    # Base classes
    "PaymentGatewayInterface",
    "CheckoutRequest",
    "CheckoutResponse",
    "CheckoutConfirmation",
    "RefundRequest",
    "RefundResponse",
    "WebhookEvent",
    # Gateway implementations
    "StripeGateway",
    "WalletGateway",
    "BankTransferGateway",
]
