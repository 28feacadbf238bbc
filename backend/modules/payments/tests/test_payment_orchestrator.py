# backend/modules/payments/tests/test_payment_orchestrator.py

"""
Tests for payment creation, confirmation and refunds.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from core.exceptions import InvalidTransitionError
from core.notification_service import NotificationTemplate
from modules.inventory.services.inventory_ledger import InventoryLedger
from modules.payments.exceptions import (
    ChannelUnavailableError,
    GatewayFailureError,
    PaymentInProgressError,
    PaymentNotCompletedError,
)
from modules.payments.gateways import CheckoutConfirmation, RefundResponse
from modules.payments.models.payment_models import Payment, PaymentChannel, PaymentStatus
from modules.payments.services.payment_orchestrator import PaymentOrchestrator, build_gateways
from modules.reservations import state_machine
from modules.reservations.models.reservation_models import ReservationStatus
from modules.vouchers.models.voucher_models import GiftVoucherConsumption, VoucherStatus


@pytest.fixture
def orchestrator(db_session, gateways, notifier, clock):
    return PaymentOrchestrator(db_session, gateways, notifier=notifier, clock=clock)


@pytest.fixture
def event(make_event):
    return make_event(capacity=10, price=Decimal("1000"))


@pytest.fixture
def reservation(event, make_reservation):
    # Two adults at 1000 each
    return make_reservation(event, adults=2)


class TestCreatePayment:

    @pytest.mark.asyncio
    async def test_card_payment_starts_checkout(self, orchestrator, reservation, card_gateway):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)

        assert payment.status == PaymentStatus.PENDING
        assert payment.charge_amount == Decimal("2000")
        assert payment.voucher_applied_amount == Decimal("0")
        assert payment.checkout_session_id == "cs_test_1"
        assert payment.checkout_url == "https://checkout.test/cs_test_1"

        request = card_gateway.create_checkout.await_args.args[0]
        assert request.amount == Decimal("2000")
        assert request.currency == "JPY"
        assert request.idempotency_key == f"checkout_{payment.payment_id}"

    @pytest.mark.asyncio
    async def test_pending_payment_is_reused(self, orchestrator, reservation, card_gateway):
        first = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)
        second = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)

        assert second.payment_id == first.payment_id
        assert card_gateway.create_checkout.await_count == 1

    @pytest.mark.asyncio
    async def test_pending_payment_on_other_channel_is_rejected(
        self, orchestrator, db_session, reservation, card_gateway
    ):
        card = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)

        with pytest.raises(PaymentInProgressError) as exc_info:
            await orchestrator.create_payment(reservation.id, PaymentChannel.BANK_TRANSFER)

        assert exc_info.value.error_code == "PAYMENT_IN_PROGRESS"
        db_session.refresh(card)
        assert card.channel == PaymentChannel.CARD
        assert card.status == PaymentStatus.PENDING
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_pending_payment_with_other_voucher_is_rejected(
        self, orchestrator, reservation, make_voucher, card_gateway
    ):
        voucher = make_voucher(balance=Decimal("500"))
        await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)

        with pytest.raises(PaymentInProgressError):
            await orchestrator.create_payment(
                reservation.id, PaymentChannel.CARD, voucher_id=voucher.id
            )

        assert card_gateway.create_checkout.await_count == 1

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_no_payment(
        self, orchestrator, db_session, reservation, card_gateway
    ):
        card_gateway.create_checkout.side_effect = GatewayFailureError(
            "stripe", "create_checkout", "timed out after 10s"
        )

        with pytest.raises(GatewayFailureError):
            await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)

        assert orchestrator.get_payment_for_reservation(reservation.id) is None
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_unconfigured_channel(self, orchestrator, reservation):
        with pytest.raises(ChannelUnavailableError):
            await orchestrator.create_payment(reservation.id, PaymentChannel.MOBILE_WALLET)

    @pytest.mark.asyncio
    async def test_partial_voucher(self, orchestrator, reservation, make_voucher, card_gateway):
        voucher = make_voucher(balance=Decimal("1500"))

        payment = await orchestrator.create_payment(
            reservation.id, PaymentChannel.CARD, voucher_id=voucher.id
        )

        assert payment.voucher_applied_amount == Decimal("1500")
        assert payment.charge_amount == Decimal("500")
        assert card_gateway.create_checkout.await_args.args[0].amount == Decimal("500")

    @pytest.mark.asyncio
    async def test_voucher_covering_total_skips_gateway(
        self, orchestrator, db_session, reservation, make_voucher, card_gateway
    ):
        voucher = make_voucher(balance=Decimal("3000"))

        payment = await orchestrator.create_payment(
            reservation.id, PaymentChannel.CARD, voucher_id=voucher.id
        )

        assert payment.status == PaymentStatus.COMPLETED
        assert payment.charge_amount == Decimal("0")
        assert payment.paid_at is not None
        card_gateway.create_checkout.assert_not_awaited()

        db_session.refresh(reservation)
        db_session.refresh(voucher)
        assert reservation.status == ReservationStatus.CONFIRMED
        assert voucher.balance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_bank_transfer_deadline(self, orchestrator, db_session, reservation, clock):
        requested_at = clock.now
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.BANK_TRANSFER)

        # Event is ten days out, so the one-week limit applies
        assert payment.status == PaymentStatus.PENDING
        assert payment.transfer_deadline == requested_at + timedelta(days=7)
        assert payment.checkout_session_id == f"bt_{payment.payment_id}"

        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.AWAITING_TRANSFER

    @pytest.mark.asyncio
    async def test_bank_transfer_too_close_to_event(
        self, orchestrator, db_session, make_event, make_reservation
    ):
        event = make_event(starts_in=timedelta(days=3, hours=12))
        reservation = make_reservation(event)

        with pytest.raises(ChannelUnavailableError):
            await orchestrator.create_payment(reservation.id, PaymentChannel.BANK_TRANSFER)

        assert orchestrator.get_payment_for_reservation(reservation.id) is None
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.PENDING_PAYMENT

    def test_transfer_deadline_respects_event_lead(self, orchestrator, clock):
        now = clock.now
        deadline = orchestrator.transfer_deadline(now, now + timedelta(days=5))

        assert deadline == now + timedelta(days=2)

    @pytest.mark.asyncio
    async def test_confirmed_reservation_cannot_be_paid_again(
        self, orchestrator, reservation
    ):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)
        await orchestrator.confirm_payment(payment.payment_id, "pi_test_1")

        with pytest.raises(InvalidTransitionError):
            await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)


class TestConfirmPayment:

    @pytest.mark.asyncio
    async def test_confirm_marks_reservation_confirmed(
        self, orchestrator, db_session, reservation, notification_adapter
    ):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)

        payment = await orchestrator.confirm_payment(payment.payment_id, "pi_test_1")

        assert payment.status == PaymentStatus.COMPLETED
        assert payment.external_charge_id == "pi_test_1"
        assert payment.paid_at is not None
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.CONFIRMED

        templates = [
            call.args[1].template for call in notification_adapter.send_to_user.await_args_list
        ]
        assert NotificationTemplate.RESERVATION_CONFIRMED.value in templates

    @pytest.mark.asyncio
    async def test_duplicate_confirmation_consumes_voucher_once(
        self, orchestrator, db_session, reservation, make_voucher
    ):
        voucher = make_voucher(balance=Decimal("1500"))
        payment = await orchestrator.create_payment(
            reservation.id, PaymentChannel.CARD, voucher_id=voucher.id
        )

        await orchestrator.confirm_payment(payment.payment_id, "pi_test_1")
        await orchestrator.confirm_payment(payment.payment_id, "pi_test_1")

        db_session.refresh(voucher)
        assert voucher.balance == Decimal("0")
        assert voucher.status == VoucherStatus.USED
        consumptions = db_session.execute(
            select(func.count(GiftVoucherConsumption.id))
        ).scalar()
        assert consumptions == 1

    @pytest.mark.asyncio
    async def test_voucher_spent_elsewhere_refunds_the_charge(
        self, orchestrator, db_session, event, make_reservation, make_voucher, card_gateway
    ):
        voucher = make_voucher(balance=Decimal("1500"))
        first = make_reservation(event, adults=2)
        second = make_reservation(event, adults=2)

        first_payment = await orchestrator.create_payment(
            first.id, PaymentChannel.CARD, voucher_id=voucher.id
        )
        second_payment = await orchestrator.create_payment(
            second.id, PaymentChannel.CARD, voucher_id=voucher.id
        )
        await orchestrator.confirm_payment(first_payment.payment_id, "pi_1")

        second_payment = await orchestrator.confirm_payment(second_payment.payment_id, "pi_2")

        assert second_payment.status == PaymentStatus.REFUNDED
        assert second_payment.external_charge_id == "pi_2"
        assert second_payment.refunded_amount == Decimal("500")
        request = card_gateway.create_refund.await_args.args[0]
        assert (request.external_charge_id, request.amount) == ("pi_2", Decimal("500"))

        db_session.refresh(second)
        assert second.status == ReservationStatus.CANCELLED
        assert second.cancellation_reason == "Gift voucher balance no longer available"
        # The first reservation still holds its two seats
        assert InventoryLedger(db_session).get_remaining(event.id) == 8

        db_session.refresh(voucher)
        assert voucher.balance == Decimal("0")
        consumptions = db_session.execute(
            select(func.count(GiftVoucherConsumption.id))
        ).scalar()
        assert consumptions == 1

    @pytest.mark.asyncio
    async def test_unfunded_refund_failure_keeps_capture_for_reconciliation(
        self, orchestrator, db_session, event, make_reservation, make_voucher, card_gateway
    ):
        voucher = make_voucher(balance=Decimal("1500"))
        first = make_reservation(event, adults=2)
        second = make_reservation(event, adults=2)
        first_payment = await orchestrator.create_payment(
            first.id, PaymentChannel.CARD, voucher_id=voucher.id
        )
        second_payment = await orchestrator.create_payment(
            second.id, PaymentChannel.CARD, voucher_id=voucher.id
        )
        await orchestrator.confirm_payment(first_payment.payment_id, "pi_1")
        card_gateway.create_refund.side_effect = GatewayFailureError(
            "stripe", "create_refund", "timed out after 10s"
        )

        second_payment = await orchestrator.confirm_payment(second_payment.payment_id, "pi_2")

        assert second_payment.status == PaymentStatus.COMPLETED
        db_session.refresh(second)
        assert second.status == ReservationStatus.CANCELLED
        # Recorded so that the orphan sweep picks it up
        assert second_payment.paid_at >= second.cancelled_at

    @pytest.mark.asyncio
    async def test_success_after_failure_confirms_reservation(
        self, orchestrator, db_session, reservation
    ):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)
        await orchestrator.fail_payment(payment.payment_id, "card_declined")

        payment = await orchestrator.handle_checkout_completed(PaymentChannel.CARD, "cs_test_1")

        assert payment.status == PaymentStatus.COMPLETED
        assert payment.failure_code is None
        assert payment.external_charge_id == "pi_test_1"
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_checkout_paid_after_cancellation_is_refunded(
        self, orchestrator, db_session, reservation, card_gateway
    ):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)
        state_machine.transition(
            db_session, reservation.id, ReservationStatus.CANCELLED,
            cancelled_at=orchestrator.clock(),
        )
        orchestrator.cancel_pending_payment(reservation.id)
        db_session.commit()
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.CANCELLED

        payment = await orchestrator.handle_checkout_completed(PaymentChannel.CARD, "cs_test_1")

        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refunded_amount == Decimal("2000")
        request = card_gateway.create_refund.await_args.args[0]
        assert request.external_charge_id == "pi_test_1"
        assert request.reason == "reservation_cancelled"

    @pytest.mark.asyncio
    async def test_failed_checkout_paid_after_expiry_is_refunded(
        self, orchestrator, db_session, reservation, card_gateway
    ):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)
        await orchestrator.fail_payment(payment.payment_id, "checkout.failed")
        state_machine.transition(
            db_session, reservation.id, ReservationStatus.CANCELLED,
            cancelled_at=orchestrator.clock(),
        )
        db_session.commit()

        payment = await orchestrator.handle_checkout_completed(PaymentChannel.CARD, "cs_test_1")

        assert payment.status == PaymentStatus.REFUNDED
        card_gateway.create_refund.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unpaid_checkout_after_cancellation_changes_nothing(
        self, orchestrator, db_session, reservation, card_gateway
    ):
        await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)
        state_machine.transition(
            db_session, reservation.id, ReservationStatus.CANCELLED,
            cancelled_at=orchestrator.clock(),
        )
        orchestrator.cancel_pending_payment(reservation.id)
        db_session.commit()
        card_gateway.confirm_checkout.return_value = CheckoutConfirmation(paid=False)

        payment = await orchestrator.handle_checkout_completed(PaymentChannel.CARD, "cs_test_1")

        db_session.refresh(payment)
        assert payment.status == PaymentStatus.CANCELLED
        card_gateway.create_refund.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_checkout_completed_checks_gateway(
        self, orchestrator, reservation, card_gateway
    ):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)
        card_gateway.confirm_checkout.return_value = CheckoutConfirmation(paid=False)

        payment = await orchestrator.handle_checkout_completed(PaymentChannel.CARD, "cs_test_1")

        assert payment.status == PaymentStatus.PENDING

    @pytest.mark.asyncio
    async def test_bank_transfer_confirmed_by_operator(
        self, orchestrator, db_session, reservation
    ):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.BANK_TRANSFER)

        payment = await orchestrator.confirm_bank_transfer(payment.payment_id)

        assert payment.status == PaymentStatus.COMPLETED
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_card_payment_is_not_bank_confirmable(self, orchestrator, reservation):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)

        with pytest.raises(InvalidTransitionError):
            await orchestrator.confirm_bank_transfer(payment.payment_id)


class TestFailAndRetry:

    @pytest.mark.asyncio
    async def test_failed_payment_can_be_retried(
        self, orchestrator, db_session, reservation, card_gateway
    ):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)
        first_id = payment.payment_id

        payment = await orchestrator.fail_payment(first_id, "card_declined", "Declined")
        db_session.refresh(reservation)
        assert payment.status == PaymentStatus.FAILED
        assert reservation.status == ReservationStatus.PAYMENT_FAILED

        retried = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)

        assert retried.status == PaymentStatus.PENDING
        assert retried.payment_id != first_id
        assert retried.failure_code is None
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.PENDING_PAYMENT
        assert card_gateway.create_checkout.await_args.args[0].idempotency_key == (
            f"checkout_{retried.payment_id}"
        )
        assert db_session.execute(select(func.count(Payment.id))).scalar() == 1


class TestRefund:

    async def _paid(self, orchestrator, reservation):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)
        return await orchestrator.confirm_payment(payment.payment_id, "pi_test_1")

    @pytest.mark.asyncio
    async def test_full_refund_early(self, orchestrator, reservation, card_gateway):
        payment = await self._paid(orchestrator, reservation)

        payment = await orchestrator.refund(reservation.id)

        assert payment.status == PaymentStatus.REFUNDED
        assert payment.refunded_amount == Decimal("2000")
        assert payment.gateway_refund_id == "re_test_1"
        request = card_gateway.create_refund.await_args.args[0]
        assert request.amount == Decimal("2000")
        assert request.external_charge_id == "pi_test_1"
        assert request.idempotency_key == f"refund_{payment.payment_id}"

    @pytest.mark.asyncio
    async def test_half_refund_two_days_out(
        self, orchestrator, make_event, make_reservation, card_gateway
    ):
        event = make_event(starts_in=timedelta(days=2), price=Decimal("1001"))
        reservation = make_reservation(event, adults=1)
        await self._paid(orchestrator, reservation)

        payment = await orchestrator.refund(reservation.id)

        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert payment.refunded_amount == Decimal("500")

    @pytest.mark.asyncio
    async def test_refund_excludes_voucher_portion(
        self, orchestrator, reservation, make_voucher, card_gateway
    ):
        voucher = make_voucher(balance=Decimal("1500"))
        payment = await orchestrator.create_payment(
            reservation.id, PaymentChannel.CARD, voucher_id=voucher.id
        )
        await orchestrator.confirm_payment(payment.payment_id, "pi_test_1")

        payment = await orchestrator.refund(reservation.id)

        assert payment.refunded_amount == Decimal("500")
        assert card_gateway.create_refund.await_args.args[0].amount == Decimal("500")

    @pytest.mark.asyncio
    async def test_no_refund_on_event_day(
        self, orchestrator, make_event, make_reservation, card_gateway
    ):
        event = make_event(starts_in=timedelta(hours=12))
        reservation = make_reservation(event)
        await self._paid(orchestrator, reservation)

        payment = await orchestrator.refund(reservation.id)

        assert payment.status == PaymentStatus.COMPLETED
        card_gateway.create_refund.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refund_requires_completed_payment(self, orchestrator, reservation):
        await orchestrator.create_payment(reservation.id, PaymentChannel.CARD)

        with pytest.raises(PaymentNotCompletedError):
            await orchestrator.refund(reservation.id)

    @pytest.mark.asyncio
    async def test_refund_without_payment(self, orchestrator, reservation):
        with pytest.raises(PaymentNotCompletedError):
            await orchestrator.refund(reservation.id)

    @pytest.mark.asyncio
    async def test_gateway_refund_failure_changes_nothing(
        self, orchestrator, db_session, reservation, card_gateway
    ):
        await self._paid(orchestrator, reservation)
        card_gateway.create_refund.side_effect = GatewayFailureError(
            "stripe", "create_refund", "timed out after 10s"
        )

        with pytest.raises(GatewayFailureError):
            await orchestrator.refund(reservation.id)

        payment = orchestrator.get_payment_for_reservation(reservation.id)
        db_session.refresh(payment)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.refunded_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_rejected_refund_raises(self, orchestrator, reservation, card_gateway):
        await self._paid(orchestrator, reservation)
        card_gateway.create_refund.return_value = RefundResponse(
            success=False, error_message="charge disputed"
        )

        with pytest.raises(GatewayFailureError):
            await orchestrator.refund(reservation.id)

    @pytest.mark.asyncio
    async def test_bank_transfer_refund_is_manual(
        self, orchestrator, reservation, notification_adapter
    ):
        payment = await orchestrator.create_payment(reservation.id, PaymentChannel.BANK_TRANSFER)
        await orchestrator.confirm_bank_transfer(payment.payment_id)

        payment = await orchestrator.refund(reservation.id)

        assert payment.status == PaymentStatus.REFUNDED
        _, message = notification_adapter.send_to_user.await_args.args
        assert message.template == NotificationTemplate.REFUND_ISSUED.value
        assert message.data["manual"] is True


class TestBuildGateways:

    def test_bank_transfer_always_available(self):
        from core.config import Settings

        gateways = build_gateways(Settings(stripe_secret_key=None, wallet_api_key=None))

        assert set(gateways) == {PaymentChannel.BANK_TRANSFER}

    def test_configured_channels(self):
        from core.config import Settings

        gateways = build_gateways(
            Settings(stripe_secret_key="sk_test_123", wallet_api_key="wallet-key")
        )

        assert set(gateways) == set(PaymentChannel)
        assert gateways[PaymentChannel.CARD].test_mode is True
