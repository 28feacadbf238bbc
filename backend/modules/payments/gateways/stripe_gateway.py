# backend/modules/payments/gateways/stripe_gateway.py

import stripe
import logging
from typing import Dict, Any, Optional, Tuple
from datetime import datetime, timezone

from .base import (
    PaymentGatewayInterface,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutConfirmation,
    RefundRequest,
    RefundResponse,
    WebhookEvent,
)
from ..exceptions import GatewayFailureError


logger = logging.getLogger(__name__)

# Stripe checkout events mapped to the orchestrator's vocabulary
EVENT_TYPE_MAP = {
    "checkout.session.completed": "checkout.completed",
    "checkout.session.async_payment_succeeded": "checkout.completed",
    "checkout.session.async_payment_failed": "checkout.failed",
    "checkout.session.expired": "checkout.expired",
}


class StripeGateway(PaymentGatewayInterface):
    """Card payments through Stripe Checkout Sessions"""

    name = "stripe"

    def __init__(self, config: Dict[str, Any], test_mode: bool = True):
        super().__init__(config, test_mode)

        # Set Stripe API key
        stripe.api_key = config.get("secret_key")

        # Retries are owned by the reconciliation sweep
        stripe.max_network_retries = 0

        # Store webhook secret
        self.webhook_secret = config.get("webhook_secret")

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        """Create a hosted Stripe Checkout Session"""
        params = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": request.currency.lower(),
                        "product_data": {"name": request.description or "Reservation"},
                        "unit_amount": self.format_amount(request.amount, request.currency),
                    },
                    "quantity": 1,
                }
            ],
            "client_reference_id": request.reference,
            "metadata": {k: str(v) for k, v in (request.metadata or {}).items()},
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
        }

        try:
            session = await self._run_sync(
                "create_checkout",
                stripe.checkout.Session.create,
                **params,
                idempotency_key=request.idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout error for {request.reference}: {e}")
            raise GatewayFailureError(self.name, "create_checkout", str(e)) from e

        return CheckoutResponse(
            success=True,
            session_id=session.id,
            redirect_url=session.url,
            expires_at=(
                datetime.fromtimestamp(session.expires_at, timezone.utc).replace(tzinfo=None)
                if getattr(session, "expires_at", None)
                else None
            ),
        )

    async def confirm_checkout(self, session_id: str) -> CheckoutConfirmation:
        try:
            session = await self._run_sync(
                "confirm_checkout", stripe.checkout.Session.retrieve, session_id
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe session lookup failed for {session_id}: {e}")
            raise GatewayFailureError(self.name, "confirm_checkout", str(e)) from e

        return CheckoutConfirmation(
            paid=session.payment_status == "paid",
            external_charge_id=session.payment_intent,
        )

    async def create_refund(self, request: RefundRequest) -> RefundResponse:
        """Create a refund in Stripe"""
        try:
            refund = await self._run_sync(
                "create_refund",
                stripe.Refund.create,
                payment_intent=request.external_charge_id,
                amount=self.format_amount(request.amount, request.currency),
                metadata=request.metadata or {},
                idempotency_key=request.idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe refund error for {request.external_charge_id}: {e}")
            raise GatewayFailureError(self.name, "create_refund", str(e)) from e

        if refund.status == "failed":
            return RefundResponse(
                success=False,
                gateway_refund_id=refund.id,
                error_code="refund_failed",
                error_message=getattr(refund, "failure_reason", None) or "Refund failed",
            )

        return RefundResponse(
            success=True,
            gateway_refund_id=refund.id,
            amount=request.amount,
            currency=request.currency,
        )

    async def verify_webhook(
        self, headers: Dict[str, str], body: bytes
    ) -> Tuple[bool, Optional[WebhookEvent]]:
        """Verify Stripe webhook signature"""
        sig_header = headers.get("stripe-signature")
        if not sig_header or not self.webhook_secret:
            return False, None

        try:
            event = stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError:
            # Invalid payload
            return False, None
        except stripe.SignatureVerificationError:
            # Invalid signature
            return False, None

        obj = event["data"]["object"]
        return True, WebhookEvent(
            event_id=event["id"],
            event_type=EVENT_TYPE_MAP.get(event["type"], event["type"]),
            session_id=obj.get("id"),
            external_charge_id=obj.get("payment_intent"),
            payload=event.to_dict() if hasattr(event, "to_dict") else dict(event),
        )
