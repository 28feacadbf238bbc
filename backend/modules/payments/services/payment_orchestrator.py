# backend/modules/payments/services/payment_orchestrator.py

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.clock import Clock, utcnow
from core.config import Settings, settings as default_settings
from core.exceptions import InvalidTransitionError, NotFoundError
from core.notification_service import NotificationService, NotificationTemplate
from modules.inventory.models.event_models import Event
from modules.inventory.services.inventory_ledger import InventoryLedger
from modules.reservations.models.reservation_models import Reservation, ReservationStatus
from modules.reservations import state_machine
from modules.vouchers.exceptions import VoucherNotUsableError
from modules.vouchers.services.voucher_ledger import VoucherLedger
from ..exceptions import (
    ChannelUnavailableError,
    GatewayFailureError,
    PaymentInProgressError,
    PaymentNotCompletedError,
)
from ..gateways import (
    BankTransferGateway,
    CheckoutRequest,
    PaymentGatewayInterface,
    RefundRequest,
    RefundResponse,
    StripeGateway,
    WalletGateway,
)
from ..models.payment_models import Payment, PaymentChannel, PaymentStatus
from .refund_policy import refund_amount, refund_percentage


logger = logging.getLogger(__name__)

SETTLED_STATUSES = (
    PaymentStatus.COMPLETED,
    PaymentStatus.REFUNDED,
    PaymentStatus.PARTIALLY_REFUNDED,
)


def build_gateways(settings: Settings) -> Dict[PaymentChannel, PaymentGatewayInterface]:
    """Instantiate a gateway for every channel that has credentials configured"""
    timeout = settings.gateway_timeout_seconds
    gateways: Dict[PaymentChannel, PaymentGatewayInterface] = {
        PaymentChannel.BANK_TRANSFER: BankTransferGateway(
            {"instructions_url": settings.frontend_url, "timeout": timeout}
        )
    }

    if settings.stripe_secret_key:
        gateways[PaymentChannel.CARD] = StripeGateway(
            {
                "secret_key": settings.stripe_secret_key,
                "webhook_secret": settings.stripe_webhook_secret,
                "timeout": timeout,
            },
            test_mode=settings.stripe_secret_key.startswith("sk_test"),
        )
    else:
        logger.warning("Stripe not configured, card payments disabled")

    if settings.wallet_api_key:
        gateways[PaymentChannel.MOBILE_WALLET] = WalletGateway(
            {
                "api_url": settings.wallet_api_url,
                "api_key": settings.wallet_api_key,
                "webhook_secret": settings.wallet_webhook_secret,
                "timeout": timeout,
            }
        )
    else:
        logger.warning("Wallet gateway not configured, mobile wallet payments disabled")

    return gateways


class PaymentOrchestrator:
    """
    Drives payment creation, confirmation and refund for reservations.

    Money only moves through the gateways; local state is written after
    the gateway has answered, so a failed or timed-out call leaves the
    payment exactly as it was and the caller may retry.
    """

    def __init__(
        self,
        db: Session,
        gateways: Dict[PaymentChannel, PaymentGatewayInterface],
        voucher_ledger: Optional[VoucherLedger] = None,
        notifier: Optional[NotificationService] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.gateways = gateways
        self.settings = settings or default_settings
        self.clock = clock
        self.voucher_ledger = voucher_ledger or VoucherLedger(db, clock, self.settings)
        self.notifier = notifier or NotificationService()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_payment(self, payment_id: str) -> Payment:
        payment = self.db.execute(
            select(Payment).where(Payment.payment_id == payment_id)
        ).scalar_one_or_none()
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    def get_payment_for_reservation(self, reservation_id: int) -> Optional[Payment]:
        return self.db.execute(
            select(Payment).where(Payment.reservation_id == reservation_id)
        ).scalar_one_or_none()

    def _get_reservation(self, reservation_id: int) -> Reservation:
        reservation = self.db.get(Reservation, reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    def _get_event(self, event_id: int) -> Event:
        event = self.db.get(Event, event_id)
        if event is None:
            raise NotFoundError("Event", event_id)
        return event

    def _gateway(self, channel: PaymentChannel) -> PaymentGatewayInterface:
        gateway = self.gateways.get(channel)
        if gateway is None:
            raise ChannelUnavailableError(channel.value, "no gateway configured")
        return gateway

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def transfer_deadline(self, now: datetime, event_start: datetime) -> datetime:
        """
        Latest date a bank transfer may arrive: a week from now, but no
        later than a few days before the event.
        """
        deadline = min(
            now + timedelta(days=self.settings.bank_transfer_max_days),
            event_start - timedelta(days=self.settings.bank_transfer_event_lead_days),
        )
        if deadline < now + timedelta(days=self.settings.bank_transfer_min_clearance_days):
            raise ChannelUnavailableError(
                PaymentChannel.BANK_TRANSFER.value,
                "transfer would not clear before the event",
            )
        return deadline

    async def create_payment(
        self,
        reservation_id: int,
        channel: PaymentChannel,
        voucher_id: Optional[int] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> Payment:
        reservation = self._get_reservation(reservation_id)
        if reservation.status not in (
            ReservationStatus.PENDING_PAYMENT,
            ReservationStatus.PAYMENT_FAILED,
        ):
            raise InvalidTransitionError(
                "Reservation", reservation_id, reservation.status.value, "payment"
            )

        existing = self.get_payment_for_reservation(reservation_id)
        if existing is not None and existing.status == PaymentStatus.PENDING:
            # The open checkout may still be paid, so it cannot be swapped for another
            if existing.channel != channel or existing.voucher_id != voucher_id:
                raise PaymentInProgressError(
                    reservation_id, existing.payment_id, existing.channel.value
                )
            logger.info(f"Reusing pending payment {existing.payment_id} for reservation {reservation_id}")
            return existing
        if existing is not None and existing.status != PaymentStatus.FAILED:
            raise InvalidTransitionError(
                "Payment", existing.payment_id, existing.status.value, PaymentStatus.PENDING.value
            )

        event = self._get_event(reservation.event_id)
        now = self.clock()
        total = Decimal(reservation.total_price)

        applied = Decimal("0")
        if voucher_id is not None:
            applied = self.voucher_ledger.apply(voucher_id, reservation.user_id, total)
        charge = total - applied

        deadline = None
        if channel == PaymentChannel.BANK_TRANSFER and charge > 0:
            deadline = self.transfer_deadline(now, event.starts_at)

        if existing is not None:
            # Retry after a failed attempt: fresh public id, fresh gateway idempotency
            payment = existing
            payment.payment_id = f"pay_{uuid.uuid4().hex[:16]}"
            payment.failure_code = None
            payment.failure_message = None
            payment.checkout_session_id = None
            payment.checkout_url = None
        else:
            payment = Payment(reservation_id=reservation_id)

        payment.channel = channel
        payment.currency = self.settings.currency
        payment.charge_amount = charge
        payment.voucher_id = voucher_id if applied > 0 else None
        payment.voucher_applied_amount = applied
        payment.refunded_amount = Decimal("0")
        payment.transfer_deadline = deadline

        if charge == 0:
            return self._complete_without_gateway(reservation, payment, now)

        try:
            gateway = self._gateway(channel)
            response = await gateway.create_checkout(
                CheckoutRequest(
                    amount=charge,
                    currency=payment.currency,
                    reference=payment.payment_id,
                    description=f"{event.title} (reservation #{reservation_id})",
                    metadata={"reservation_id": reservation_id, "payment_id": payment.payment_id},
                    success_url=success_url,
                    cancel_url=cancel_url,
                    idempotency_key=f"checkout_{payment.payment_id}",
                )
            )
        except Exception:
            # Discard the unsaved changes to a retried payment row
            self.db.rollback()
            raise
        if not response.success:
            self.db.rollback()
            raise GatewayFailureError(
                gateway.name, "create_checkout", response.error_message or str(response.error_code)
            )

        payment.status = PaymentStatus.PENDING
        payment.checkout_session_id = response.session_id
        payment.checkout_url = response.redirect_url

        try:
            if existing is None:
                self.db.add(payment)
            self._reopen_if_failed(reservation)
            if channel == PaymentChannel.BANK_TRANSFER:
                if not state_machine.transition(
                    self.db,
                    reservation_id,
                    ReservationStatus.AWAITING_TRANSFER,
                    [ReservationStatus.PENDING_PAYMENT],
                ):
                    raise InvalidTransitionError(
                        "Reservation", reservation_id, "changed",
                        ReservationStatus.AWAITING_TRANSFER.value,
                    )
            self.db.commit()
        except IntegrityError:
            # Another request created the payment first
            self.db.rollback()
            concurrent = self.get_payment_for_reservation(reservation_id)
            if concurrent is None:
                raise
            return concurrent
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to record payment for reservation {reservation_id}: {e}")
            raise

        self.db.refresh(payment)
        logger.info(
            f"Created {channel.value} payment {payment.payment_id} for reservation "
            f"{reservation_id}: charge {charge}, voucher {applied}"
        )

        if channel == PaymentChannel.BANK_TRANSFER:
            await self.notifier.notify(
                reservation.user_id,
                NotificationTemplate.BANK_TRANSFER_REQUESTED,
                {
                    "reservation_id": reservation_id,
                    "amount": str(charge),
                    "deadline": deadline.isoformat(),
                },
            )
        return payment

    def _complete_without_gateway(
        self, reservation: Reservation, payment: Payment, now: datetime
    ) -> Payment:
        """Voucher covers the full price: settle immediately, no gateway involved"""
        payment.status = PaymentStatus.COMPLETED
        payment.paid_at = now
        try:
            if payment.id is None:
                self.db.add(payment)
            self.db.flush()
            self._reopen_if_failed(reservation)
            if payment.voucher_id is not None:
                self.voucher_ledger.consume(
                    payment.voucher_id, payment.voucher_applied_amount, payment.payment_id
                )
            if not state_machine.transition(
                self.db, reservation.id, ReservationStatus.CONFIRMED,
                [ReservationStatus.PENDING_PAYMENT],
            ):
                raise InvalidTransitionError(
                    "Reservation", reservation.id, "changed", ReservationStatus.CONFIRMED.value
                )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Voucher-only payment failed for reservation {reservation.id}: {e}")
            raise

        self.db.refresh(payment)
        logger.info(
            f"Reservation {reservation.id} fully covered by voucher {payment.voucher_id}, "
            f"payment {payment.payment_id} completed without gateway"
        )
        return payment

    def _reopen_if_failed(self, reservation: Reservation) -> None:
        if reservation.status == ReservationStatus.PAYMENT_FAILED:
            state_machine.transition(
                self.db, reservation.id, ReservationStatus.PENDING_PAYMENT,
                [ReservationStatus.PAYMENT_FAILED],
            )

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def confirm_payment(
        self, payment_id: str, external_charge_id: Optional[str] = None
    ) -> Payment:
        """
        Mark a payment completed, consume its voucher and confirm the
        reservation in one transaction. Replays are no-ops.

        Money that arrives for a cancelled reservation, or after the
        gateway reported a failure, is never dropped: it either confirms
        a reservation that is still waiting for it or is refunded in full.
        """
        payment = self.get_payment(payment_id)
        if payment.status in SETTLED_STATUSES:
            logger.info(f"Payment {payment_id} already confirmed, ignoring duplicate")
            return payment
        if payment.status in (PaymentStatus.CANCELLED, PaymentStatus.FAILED):
            return await self._settle_late_payment(payment, external_charge_id)

        values = {"status": PaymentStatus.COMPLETED, "paid_at": self.clock()}
        if external_charge_id:
            values["external_charge_id"] = external_charge_id

        try:
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # A concurrent duplicate confirmed it first
                self.db.rollback()
                self.db.refresh(payment)
                return payment

            confirmed = state_machine.transition(
                self.db, payment.reservation_id, ReservationStatus.CONFIRMED
            )
            if confirmed and payment.voucher_id is not None:
                self.voucher_ledger.consume(
                    payment.voucher_id, payment.voucher_applied_amount, payment.payment_id
                )
            self.db.commit()
        except VoucherNotUsableError as e:
            self.db.rollback()
            logger.warning(
                f"Voucher {payment.voucher_id} no longer covers payment {payment_id}: {e}"
            )
            return await self._cancel_unfunded(payment, external_charge_id)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to confirm payment {payment_id}: {e}")
            raise

        self.db.refresh(payment)
        reservation = self._get_reservation(payment.reservation_id)

        if not confirmed:
            # Reservation was cancelled while the payer was at the gateway
            logger.warning(
                f"Payment {payment_id} completed for reservation {reservation.id} "
                f"in status {reservation.status.value}, refunding in full"
            )
            return await self._refund_orphan_now(payment)

        logger.info(f"Payment {payment_id} confirmed, reservation {reservation.id} confirmed")
        await self.notifier.notify(
            reservation.user_id,
            NotificationTemplate.RESERVATION_CONFIRMED,
            {"reservation_id": reservation.id, "payment_id": payment_id},
        )
        return payment

    async def _settle_late_payment(
        self, payment: Payment, external_charge_id: Optional[str]
    ) -> Payment:
        """The gateway captured a payment we had already voided or failed"""
        reservation = self._get_reservation(payment.reservation_id)

        if (
            payment.status == PaymentStatus.FAILED
            and reservation.status == ReservationStatus.PAYMENT_FAILED
        ):
            # The reservation is still waiting for this money: reopen and confirm
            try:
                reopened = self.db.execute(
                    update(Payment)
                    .where(Payment.id == payment.id, Payment.status == PaymentStatus.FAILED)
                    .values(status=PaymentStatus.PENDING, failure_code=None, failure_message=None)
                    .execution_options(synchronize_session=False)
                )
                if reopened.rowcount == 1:
                    self._reopen_if_failed(reservation)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to reopen payment {payment.payment_id}: {e}")
                raise
            self.db.refresh(payment)
            logger.info(f"Payment {payment.payment_id} captured after failure, confirming")
            return await self.confirm_payment(payment.payment_id, external_charge_id)

        if reservation.status != ReservationStatus.CANCELLED:
            raise InvalidTransitionError(
                "Payment", payment.payment_id, payment.status.value,
                PaymentStatus.COMPLETED.value,
            )

        values = {"status": PaymentStatus.COMPLETED, "paid_at": self.clock()}
        if external_charge_id:
            values["external_charge_id"] = external_charge_id
        try:
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == payment.status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to record late payment {payment.payment_id}: {e}")
            raise

        self.db.refresh(payment)
        if result.rowcount != 1:
            return payment

        logger.warning(
            f"Payment {payment.payment_id} captured after reservation {reservation.id} "
            f"was cancelled, refunding in full"
        )
        return await self._refund_orphan_now(payment)

    async def _cancel_unfunded(
        self, payment: Payment, external_charge_id: Optional[str]
    ) -> Payment:
        """
        The charge was captured but the voucher part can no longer be
        taken. Record the capture, cancel the reservation and refund the
        charge in full.
        """
        reservation = self._get_reservation(payment.reservation_id)
        # Same instant for both so the orphan sweep recognises the refund as owed
        now = self.clock()
        values = {"status": PaymentStatus.COMPLETED, "paid_at": now}
        if external_charge_id:
            values["external_charge_id"] = external_charge_id

        try:
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                self.db.refresh(payment)
                return payment

            cancelled = state_machine.transition(
                self.db,
                reservation.id,
                ReservationStatus.CANCELLED,
                [ReservationStatus.PENDING_PAYMENT, ReservationStatus.AWAITING_TRANSFER],
                cancelled_at=now,
                cancellation_reason="Gift voucher balance no longer available",
            )
            if cancelled:
                InventoryLedger(self.db).release(reservation.event_id, reservation.headcount)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to cancel unfunded reservation {reservation.id}: {e}")
            raise

        self.db.refresh(payment)
        if cancelled:
            await self.notifier.notify(
                reservation.user_id,
                NotificationTemplate.RESERVATION_CANCELLED,
                {"reservation_id": reservation.id, "reason": "voucher_unavailable"},
            )
        return await self._refund_orphan_now(payment)

    async def _refund_orphan_now(self, payment: Payment) -> Payment:
        """Try the full refund once; reconciliation retries it on gateway failure"""
        try:
            await self.refund_orphaned_payment(payment.payment_id)
        except GatewayFailureError as e:
            logger.error(
                f"Orphaned payment {payment.payment_id} refund failed, "
                f"left for reconciliation: {e}"
            )
        self.db.refresh(payment)
        return payment

    async def handle_checkout_completed(
        self, channel: PaymentChannel, session_id: str
    ) -> Payment:
        """Gateway reported a finished checkout: verify with the gateway, then confirm"""
        payment = self.db.execute(
            select(Payment).where(
                Payment.channel == channel, Payment.checkout_session_id == session_id
            )
        ).scalar_one_or_none()
        if payment is None:
            raise NotFoundError("CheckoutSession", session_id)
        if payment.status in SETTLED_STATUSES:
            return payment

        confirmation = await self._gateway(channel).confirm_checkout(session_id)
        if not confirmation.paid:
            logger.info(f"Checkout {session_id} for payment {payment.payment_id} not paid yet")
            return payment

        return await self.confirm_payment(payment.payment_id, confirmation.external_charge_id)

    async def confirm_bank_transfer(self, payment_id: str) -> Payment:
        """An operator saw the transfer arrive"""
        payment = self.get_payment(payment_id)
        if payment.channel != PaymentChannel.BANK_TRANSFER:
            raise InvalidTransitionError(
                "Payment", payment_id, payment.channel.value, "bank transfer confirmation"
            )
        return await self.confirm_payment(payment_id)

    async def fail_payment(
        self, payment_id: str, failure_code: str, failure_message: Optional[str] = None
    ) -> Payment:
        payment = self.get_payment(payment_id)
        if payment.status != PaymentStatus.PENDING:
            return payment

        try:
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
                .values(
                    status=PaymentStatus.FAILED,
                    failure_code=failure_code,
                    failure_message=failure_message,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                state_machine.transition(
                    self.db, payment.reservation_id, ReservationStatus.PAYMENT_FAILED,
                    [ReservationStatus.PENDING_PAYMENT, ReservationStatus.AWAITING_TRANSFER],
                )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to mark payment {payment_id} failed: {e}")
            raise

        self.db.refresh(payment)
        if result.rowcount == 1:
            logger.info(f"Payment {payment_id} failed: {failure_code}")
            reservation = self._get_reservation(payment.reservation_id)
            await self.notifier.notify(
                reservation.user_id,
                NotificationTemplate.PAYMENT_FAILED,
                {"reservation_id": reservation.id, "reason": failure_message or failure_code},
            )
        return payment

    def cancel_pending_payment(self, reservation_id: int) -> bool:
        """Void an unpaid payment. Runs in the caller's transaction."""
        result = self.db.execute(
            update(Payment)
            .where(
                Payment.reservation_id == reservation_id,
                Payment.status == PaymentStatus.PENDING,
            )
            .values(status=PaymentStatus.CANCELLED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def refund_preview(self, payment: Payment, event_start: datetime) -> Decimal:
        percentage = refund_percentage(self.clock(), event_start)
        return refund_amount(payment.charge_amount, percentage, payment.currency)

    async def refund(self, reservation_id: int, commit: bool = True) -> Payment:
        """
        Refund the reservation's payment according to the cancellation tiers.

        The gateway is called first; nothing local changes unless it
        succeeds. A zero refund leaves the payment untouched. With
        ``commit=False`` the recorded refund joins the caller's transaction.
        """
        payment = self.get_payment_for_reservation(reservation_id)
        if payment is None or payment.status != PaymentStatus.COMPLETED:
            raise PaymentNotCompletedError(
                reservation_id, payment.status.value if payment is not None else None
            )

        reservation = self._get_reservation(reservation_id)
        event = self._get_event(reservation.event_id)
        amount = self.refund_preview(payment, event.starts_at)

        if amount <= 0:
            logger.info(
                f"No refund due for reservation {reservation_id} "
                f"(event starts {event.starts_at.isoformat()})"
            )
            return payment

        response = await self._refund_via_gateway(payment, amount, "requested_by_customer")
        self._record_refund(payment, amount, response, commit)

        await self.notifier.notify(
            reservation.user_id,
            NotificationTemplate.REFUND_ISSUED,
            {"reservation_id": reservation_id, "amount": str(amount), "manual": response.manual},
        )
        return payment

    async def refund_orphaned_payment(self, payment_id: str) -> Payment:
        """Refund in full a completed payment whose reservation is already cancelled"""
        payment = self.get_payment(payment_id)
        if payment.status != PaymentStatus.COMPLETED:
            return payment

        reservation = self._get_reservation(payment.reservation_id)
        # Paid before the cancellation means the cancellation tiers already applied
        if reservation.status != ReservationStatus.CANCELLED or (
            reservation.cancelled_at is not None
            and payment.paid_at is not None
            and payment.paid_at < reservation.cancelled_at
        ):
            raise InvalidTransitionError(
                "Reservation", reservation.id, reservation.status.value, "orphan refund"
            )

        amount = Decimal(payment.charge_amount)
        if amount <= 0:
            return payment

        response = await self._refund_via_gateway(payment, amount, "reservation_cancelled")
        self._record_refund(payment, amount, response, commit=True)

        await self.notifier.notify(
            reservation.user_id,
            NotificationTemplate.REFUND_ISSUED,
            {"reservation_id": reservation.id, "amount": str(amount), "manual": response.manual},
        )
        return payment

    async def _refund_via_gateway(
        self, payment: Payment, amount: Decimal, reason: str
    ) -> RefundResponse:
        gateway = self._gateway(payment.channel)
        response = await gateway.create_refund(
            RefundRequest(
                external_charge_id=payment.external_charge_id,
                amount=amount,
                currency=payment.currency,
                reason=reason,
                metadata={
                    "reservation_id": str(payment.reservation_id),
                    "payment_id": payment.payment_id,
                },
                # Stable per payment so a retried refund is never paid twice
                idempotency_key=f"refund_{payment.payment_id}",
            )
        )
        if not response.success:
            raise GatewayFailureError(
                gateway.name, "create_refund", response.error_message or "refund rejected"
            )
        return response

    def _record_refund(
        self, payment: Payment, amount: Decimal, response: RefundResponse, commit: bool
    ) -> None:
        status = (
            PaymentStatus.REFUNDED
            if amount >= payment.charge_amount
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        try:
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == PaymentStatus.COMPLETED)
                .values(
                    status=status,
                    refunded_amount=amount,
                    refunded_at=self.clock(),
                    gateway_refund_id=response.gateway_refund_id,
                )
                .execution_options(synchronize_session=False)
            )
            if commit:
                self.db.commit()
                self.db.refresh(payment)
            else:
                self.db.flush()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to record refund for payment {payment.payment_id}: {e}")
            raise

        if result.rowcount == 1:
            logger.info(
                f"Refunded {amount} {payment.currency} on payment {payment.payment_id} "
                f"({status.value})"
            )
        else:
            logger.info(f"Refund for payment {payment.payment_id} was already recorded")
