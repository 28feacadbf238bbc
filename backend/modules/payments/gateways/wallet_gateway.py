# backend/modules/payments/gateways/wallet_gateway.py

import hashlib
import hmac
import json
import logging
from typing import Dict, Any, Optional, Tuple

import httpx

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

PAID_STATUSES = {"COMPLETED", "PAID", "CAPTURED"}


def _json(response: httpx.Response) -> Dict[str, Any]:
    try:
        return response.json()
    except ValueError:
        return {}


class WalletGateway(PaymentGatewayInterface):
    """
    Mobile wallet payments over a JSON HTTP API.

    The provider is expected to expose ``POST /checkouts``,
    ``GET /checkouts/{id}`` and ``POST /refunds`` with bearer-token auth
    and to sign callbacks with HMAC-SHA256 over the raw body.
    """

    name = "mobile_wallet"

    def __init__(
        self,
        config: Dict[str, Any],
        test_mode: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config, test_mode)
        self.base_url = config.get("api_url", "").rstrip("/")
        self.api_key = config.get("api_key")
        self.webhook_secret = config.get("webhook_secret")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise GatewayFailureError(self.name, operation, f"timed out: {e}") from e
        except httpx.TransportError as e:
            raise GatewayFailureError(self.name, operation, f"transport error: {e}") from e

        if response.status_code >= 500 or response.status_code == 429:
            raise GatewayFailureError(
                self.name, operation, f"HTTP {response.status_code}"
            )
        return response

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResponse:
        response = await self._request(
            "create_checkout",
            "POST",
            "/checkouts",
            {
                "merchant_reference": request.reference,
                "amount": self.format_amount(request.amount, request.currency),
                "currency": request.currency,
                "description": request.description,
                "redirect_url": request.success_url,
                "metadata": request.metadata or {},
            },
            idempotency_key=request.idempotency_key,
        )
        data = _json(response)

        if response.is_error:
            logger.warning(
                f"Wallet checkout rejected for {request.reference}: "
                f"{response.status_code} {data}"
            )
            return CheckoutResponse(
                success=False,
                error_code=str(data.get("code", response.status_code)),
                error_message=data.get("message"),
                raw_response=data,
            )

        return CheckoutResponse(
            success=True,
            session_id=data["id"],
            redirect_url=data.get("redirect_url"),
            raw_response=data,
        )

    async def confirm_checkout(self, session_id: str) -> CheckoutConfirmation:
        response = await self._request("confirm_checkout", "GET", f"/checkouts/{session_id}")
        if response.is_error:
            raise GatewayFailureError(
                self.name, "confirm_checkout", f"HTTP {response.status_code}"
            )
        data = _json(response)
        return CheckoutConfirmation(
            paid=str(data.get("status", "")).upper() in PAID_STATUSES,
            external_charge_id=data.get("charge_id"),
            raw_response=data,
        )

    async def create_refund(self, request: RefundRequest) -> RefundResponse:
        response = await self._request(
            "create_refund",
            "POST",
            "/refunds",
            {
                "charge_id": request.external_charge_id,
                "amount": self.format_amount(request.amount, request.currency),
                "currency": request.currency,
                "reason": request.reason,
            },
            idempotency_key=request.idempotency_key,
        )
        data = _json(response)

        if response.is_error or str(data.get("status", "")).upper() == "FAILED":
            return RefundResponse(
                success=False,
                gateway_refund_id=data.get("id"),
                error_code=str(data.get("code", response.status_code)),
                error_message=data.get("message", "Refund rejected"),
                raw_response=data,
            )

        return RefundResponse(
            success=True,
            gateway_refund_id=data.get("id"),
            amount=request.amount,
            currency=request.currency,
            raw_response=data,
        )

    async def verify_webhook(
        self, headers: Dict[str, str], body: bytes
    ) -> Tuple[bool, Optional[WebhookEvent]]:
        signature = headers.get("x-wallet-signature")
        if not signature or not self.webhook_secret:
            return False, None

        expected = hmac.new(
            self.webhook_secret.encode(), body, hashlib.sha256
        ).hexdigest()
        if not hmac.compare_digest(expected, signature):
            return False, None

        try:
            payload = json.loads(body)
        except ValueError:
            return False, None

        data = payload.get("data", {})
        return True, WebhookEvent(
            event_id=payload["id"],
            event_type=payload.get("type", "unknown"),
            session_id=data.get("checkout_id"),
            external_charge_id=data.get("charge_id"),
            failure_message=data.get("failure_message"),
            payload=payload,
        )
