# backend/modules/payments/services/webhook_service.py

import logging
from typing import Dict, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from core.exceptions import BookingError
from ..models.payment_models import Payment, PaymentChannel, PaymentWebhook
from .payment_orchestrator import PaymentOrchestrator


logger = logging.getLogger(__name__)


class WebhookService:
    """
    Service for handling payment gateway callbacks

    Gateways deliver at least once, so every event is stored under its
    gateway event id and a second delivery is acknowledged without being
    processed again.
    """

    def __init__(self, orchestrator: PaymentOrchestrator):
        self.orchestrator = orchestrator
        self.db = orchestrator.db

    async def process_webhook(
        self,
        channel: PaymentChannel,
        headers: Dict[str, str],
        body: bytes,
    ) -> Dict[str, Any]:
        """
        Process incoming webhook from payment gateway

        Args:
            channel: Payment channel the callback belongs to
            headers: Webhook request headers
            body: Raw webhook body

        Returns:
            Response data
        """
        gateway = self.orchestrator.gateways.get(channel)
        if not gateway:
            logger.error(f"Gateway {channel.value} not configured")
            return {"status": "error", "message": "Gateway not configured"}

        # Verify webhook signature
        headers = {k.lower(): v for k, v in headers.items()}
        is_valid, event = await gateway.verify_webhook(headers, body)
        if not is_valid:
            logger.warning(f"Invalid webhook signature for {channel.value}")
            return {"status": "error", "message": "Invalid signature"}

        # Check for duplicate webhook
        existing = self.db.execute(
            select(PaymentWebhook).where(PaymentWebhook.gateway_event_id == event.event_id)
        ).scalar_one_or_none()
        if existing is not None and existing.processed:
            logger.info(f"Duplicate webhook {event.event_id} for {channel.value}")
            return {"status": "success", "message": "Already processed"}

        webhook = existing
        if webhook is None:
            webhook = PaymentWebhook(
                channel=channel,
                gateway_event_id=event.event_id,
                event_type=event.event_type,
                payload=event.payload or {},
            )
            self.db.add(webhook)
            try:
                self.db.commit()
            except IntegrityError:
                # Concurrent delivery of the same event stored it first
                self.db.rollback()
                logger.info(f"Duplicate webhook {event.event_id} for {channel.value}")
                return {"status": "success", "message": "Already processed"}

        try:
            result = await self._dispatch(channel, event)
        except BookingError as e:
            self.db.rollback()
            logger.error(f"Webhook {event.event_id} processing error: {e}")
            webhook.error_message = str(e)
            webhook.retry_count = (webhook.retry_count or 0) + 1
            self.db.commit()
            return {"status": "error", "message": str(e), "retryable": getattr(e, "retryable", False)}

        webhook.processed = True
        webhook.processed_at = self.orchestrator.clock()
        webhook.payment_id = result.get("payment_pk")
        self.db.commit()
        return {"status": "success", "message": result.get("message", "Processed")}

    async def _dispatch(self, channel: PaymentChannel, event) -> Dict[str, Any]:
        if event.event_type == "checkout.completed":
            payment = await self.orchestrator.handle_checkout_completed(
                channel, event.session_id
            )
            return {"payment_pk": payment.id, "message": f"Payment {payment.status.value}"}

        if event.event_type in ("checkout.failed", "checkout.expired"):
            payment = self._payment_for_session(channel, event.session_id)
            if payment is None:
                return {"message": "Unknown checkout session"}
            payment = await self.orchestrator.fail_payment(
                payment.payment_id, event.event_type, event.failure_message
            )
            return {"payment_pk": payment.id, "message": f"Payment {payment.status.value}"}

        logger.info(f"Ignoring {channel.value} webhook of type {event.event_type}")
        return {"message": "Event ignored"}

    def _payment_for_session(self, channel: PaymentChannel, session_id: str):
        return self.db.execute(
            select(Payment).where(
                Payment.channel == channel, Payment.checkout_session_id == session_id
            )
        ).scalar_one_or_none()
