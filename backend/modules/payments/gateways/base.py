# backend/modules/payments/gateways/base.py

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Tuple, Callable, Awaitable
from datetime import datetime
from decimal import Decimal
from dataclasses import dataclass

from ..exceptions import GatewayFailureError
from ..services.refund_policy import ZERO_DECIMAL_CURRENCIES


@dataclass
class CheckoutRequest:
    """Standard hosted-checkout request structure"""
    amount: Decimal
    currency: str = "JPY"
    reference: str = None  # Our payment_id
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass
class CheckoutResponse:
    """Standard hosted-checkout response structure"""
    success: bool
    session_id: Optional[str] = None
    redirect_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None


@dataclass
class CheckoutConfirmation:
    """Result of asking the gateway whether a checkout was paid"""
    paid: bool
    external_charge_id: Optional[str] = None
    amount: Optional[Decimal] = None
    raw_response: Optional[Dict[str, Any]] = None


@dataclass
class RefundRequest:
    """Standard refund request structure"""
    external_charge_id: Optional[str]
    amount: Decimal
    currency: str = "JPY"
    reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    idempotency_key: Optional[str] = None


@dataclass
class RefundResponse:
    """Standard refund response structure"""
    success: bool
    gateway_refund_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    processed_at: Optional[datetime] = None
    manual: bool = False  # Money has to be returned by an operator
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None


@dataclass
class WebhookEvent:
    """Gateway callback normalized to what the orchestrator needs"""
    event_id: str
    event_type: str  # checkout.completed | checkout.failed | checkout.expired | other
    session_id: Optional[str] = None
    external_charge_id: Optional[str] = None
    failure_message: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


class PaymentGatewayInterface(ABC):
    """Abstract interface for payment gateways"""

    name = "gateway"

    def __init__(self, config: Dict[str, Any], test_mode: bool = True):
        """
        Initialize payment gateway

        Args:
            config: Gateway-specific configuration
            test_mode: Whether to use test/sandbox mode
        """
        self.config = config
        self.test_mode = test_mode
        self.timeout = float(config.get("timeout", 10.0))

    @abstractmethod
    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        """
        Start a hosted checkout for the given amount

        Returns:
            CheckoutResponse carrying the redirect URL for the payer
        """
        pass

    @abstractmethod
    async def confirm_checkout(self, session_id: str) -> CheckoutConfirmation:
        """Ask the gateway whether the checkout session has been paid"""
        pass

    @abstractmethod
    async def create_refund(self, request: RefundRequest) -> RefundResponse:
        pass

    @abstractmethod
    async def verify_webhook(
        self, headers: Dict[str, str], body: bytes
    ) -> Tuple[bool, Optional[WebhookEvent]]:
        """
        Verify webhook signature and parse payload

        Returns:
            Tuple of (is_valid, parsed_event)
        """
        pass

    async def _with_timeout(self, operation: str, awaitable: Awaitable) -> Any:
        """Bound a gateway call by the configured network timeout"""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise GatewayFailureError(
                self.name, operation, f"timed out after {self.timeout:g}s"
            ) from e

    async def _run_sync(self, operation: str, func: Callable, *args, **kwargs) -> Any:
        """Run a blocking SDK call in a worker thread under the timeout"""
        return await self._with_timeout(
            operation, asyncio.to_thread(func, *args, **kwargs)
        )

    def format_amount(self, amount: Decimal, currency: str = "JPY") -> int:
        """
        Format amount for gateway (smallest currency unit)

        Args:
            amount: Decimal amount
            currency: Currency code

        Returns:
            Integer amount in smallest currency unit
        """
        if currency.upper() in ZERO_DECIMAL_CURRENCIES:
            return int(amount)
        return int(Decimal(amount) * 100)

    def parse_amount(self, amount: int, currency: str = "JPY") -> Decimal:
        if currency.upper() in ZERO_DECIMAL_CURRENCIES:
            return Decimal(str(amount))
        return Decimal(str(amount)) / 100
