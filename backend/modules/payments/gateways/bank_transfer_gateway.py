# backend/modules/payments/gateways/bank_transfer_gateway.py

import logging
from typing import Dict, Any, Optional, Tuple

from .base import (
    PaymentGatewayInterface,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutConfirmation,
    RefundRequest,
    RefundResponse,
    WebhookEvent,
)


logger = logging.getLogger(__name__)


class BankTransferGateway(PaymentGatewayInterface):
    """
    Manual bank transfers.

    Nothing is sent to a provider: the payer is pointed at transfer
    instructions and an operator confirms receipt. Refunds are likewise
    paid out by hand, so they always succeed here and are flagged manual.
    """

    name = "bank_transfer"

    def __init__(self, config: Dict[str, Any], test_mode: bool = True):
        super().__init__(config, test_mode)
        self.instructions_url = config.get("instructions_url", "").rstrip("/")

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        return CheckoutResponse(
            success=True,
            session_id=f"bt_{request.reference}",
            redirect_url=f"{self.instructions_url}/payments/{request.reference}/bank-transfer",
        )

    async def confirm_checkout(self, session_id: str) -> CheckoutConfirmation:
        # Receipt is only known once an operator confirms it
        return CheckoutConfirmation(paid=False)

    async def create_refund(self, request: RefundRequest) -> RefundResponse:
        logger.warning(
            f"Manual bank transfer refund of {request.amount} {request.currency} "
            f"required ({request.idempotency_key})"
        )
        return RefundResponse(
            success=True,
            amount=request.amount,
            currency=request.currency,
            manual=True,
        )

    async def verify_webhook(
        self, headers: Dict[str, str], body: bytes
    ) -> Tuple[bool, Optional[WebhookEvent]]:
        return False, None
