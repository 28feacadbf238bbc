# backend/modules/reservations/services/reservation_service.py

"""
Reservation lifecycle coordinator.

Creation reserves seats and inserts the reservation in one transaction.
Cancellation refunds first, then moves the reservation to CANCELLED and
returns its seats in one transaction, so capacity is never released
against a charge that was not refunded.
"""

from sqlalchemy.orm import Session
from sqlalchemy import or_, select
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from core.clock import Clock, utcnow
from core.config import settings
from core.exceptions import BookingError, InvalidTransitionError, NotFoundError, UnauthorizedError
from core.notification_service import NotificationService, NotificationTemplate
from modules.inventory.models.event_models import Event
from modules.inventory.services.inventory_ledger import InventoryLedger
from modules.payments.models.payment_models import PaymentStatus
from modules.payments.services.payment_orchestrator import PaymentOrchestrator, build_gateways
from modules.payments.services.refund_policy import refund_percentage
from .. import state_machine
from ..exceptions import AlreadyCancelledError
from ..models.reservation_models import (
    Reservation,
    ReservationParticipant,
    ReservationStatus,
    ACTIVE_STATUSES,
)
from ..schemas.reservation_schemas import ReservationCreate

logger = logging.getLogger(__name__)


class ReservationService:
    """Service for managing reservations"""

    def __init__(
        self,
        db: Session,
        payment_orchestrator: Optional[PaymentOrchestrator] = None,
        inventory: Optional[InventoryLedger] = None,
        notifier: Optional[NotificationService] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.clock = clock
        self.notifier = notifier or NotificationService()
        self.inventory = inventory or InventoryLedger(db)
        self.payment_orchestrator = payment_orchestrator or PaymentOrchestrator(
            db, build_gateways(settings), notifier=self.notifier, clock=clock
        )

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

    @staticmethod
    def calculate_total(event: Event, adults: int, children: int) -> Decimal:
        """Adults pay the full price, children the child price, infants nothing"""
        return (
            Decimal(event.price) * adults
            + Decimal(event.effective_child_price) * children
        )

    async def create_reservation(
        self, user_id: int, reservation_data: ReservationCreate
    ) -> Reservation:
        """Create a new reservation holding seats on the event"""
        event = self._get_event(reservation_data.event_id)
        headcount = (
            reservation_data.adults + reservation_data.children + reservation_data.infants
        )
        now = self.clock()

        try:
            self.inventory.reserve(event.id, headcount)

            reservation = Reservation(
                user_id=user_id,
                event_id=event.id,
                adults=reservation_data.adults,
                children=reservation_data.children,
                infants=reservation_data.infants,
                total_price=self.calculate_total(
                    event, reservation_data.adults, reservation_data.children
                ),
                status=ReservationStatus.PENDING_PAYMENT,
                created_at=now,
                updated_at=now,
            )
            self.db.add(reservation)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(reservation)
        logger.info(
            f"Created reservation {reservation.id} for user {user_id} on event {event.id}: "
            f"{headcount} seat(s), total {reservation.total_price}"
        )

        await self.notifier.notify(
            user_id,
            NotificationTemplate.RESERVATION_CREATED,
            {"reservation_id": reservation.id, "event_id": event.id},
        )
        return reservation

    async def cancel_reservation(
        self, reservation_id: int, user_id: int, reason: Optional[str] = None
    ) -> Reservation:
        """
        Cancel a reservation on behalf of its owner.

        A completed payment is refunded first; if the refund fails the
        error propagates and the reservation stays CONFIRMED with its
        seats held.
        """
        reservation = self._get_reservation(reservation_id)

        if reservation.user_id != user_id:
            raise UnauthorizedError(user_id, "cancel this reservation", reservation_id)
        if reservation.status == ReservationStatus.CANCELLED:
            raise AlreadyCancelledError(reservation_id)
        if reservation.status == ReservationStatus.COMPLETED:
            raise InvalidTransitionError(
                "Reservation", reservation_id,
                reservation.status.value, ReservationStatus.CANCELLED.value,
            )

        payment = self.payment_orchestrator.get_payment_for_reservation(reservation_id)
        if payment is not None and payment.status == PaymentStatus.COMPLETED:
            await self.payment_orchestrator.refund(reservation_id, commit=False)

        event_id = reservation.event_id
        headcount = reservation.headcount

        try:
            won = state_machine.transition(
                self.db,
                reservation_id,
                ReservationStatus.CANCELLED,
                cancelled_at=self.clock(),
                cancellation_reason=reason or "Cancelled by user",
            )
            if not won:
                self.db.rollback()
                self.db.refresh(reservation)
                if reservation.status == ReservationStatus.CANCELLED:
                    raise AlreadyCancelledError(reservation_id)
                raise InvalidTransitionError(
                    "Reservation", reservation_id,
                    reservation.status.value, ReservationStatus.CANCELLED.value,
                )

            self.inventory.release(event_id, headcount)
            self.payment_orchestrator.cancel_pending_payment(reservation_id)
            self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to cancel reservation {reservation_id}: {e}")
            raise

        self.db.refresh(reservation)
        logger.info(f"Reservation {reservation_id} cancelled by user {user_id}, released {headcount} seat(s)")

        await self.notifier.notify(
            user_id,
            NotificationTemplate.RESERVATION_CANCELLED,
            {"reservation_id": reservation_id},
        )
        return reservation

    def get_reservation(self, reservation_id: int, user_id: int) -> Reservation:
        """Visible to the owner, the event provider and joined participants"""
        reservation = self._get_reservation(reservation_id)
        if reservation.user_id == user_id:
            return reservation

        event = self._get_event(reservation.event_id)
        if event.provider_id == user_id:
            return reservation

        is_participant = (
            self.db.query(ReservationParticipant.id)
            .filter(
                ReservationParticipant.reservation_id == reservation_id,
                ReservationParticipant.user_id == user_id,
            )
            .first()
        )
        if is_participant:
            return reservation

        raise UnauthorizedError(user_id, "view this reservation", reservation_id)

    def list_user_reservations(self, user_id: int) -> List[Reservation]:
        """Reservations the user owns or has joined, newest first"""
        joined = select(ReservationParticipant.reservation_id).where(
            ReservationParticipant.user_id == user_id
        )
        return (
            self.db.query(Reservation)
            .filter(or_(Reservation.user_id == user_id, Reservation.id.in_(joined)))
            .order_by(Reservation.created_at.desc(), Reservation.id.desc())
            .all()
        )

    def list_active_reservations(self, user_id: int) -> List[Reservation]:
        return (
            self.db.query(Reservation)
            .filter(
                Reservation.user_id == user_id,
                Reservation.status.in_(list(ACTIVE_STATUSES)),
            )
            .order_by(Reservation.created_at.desc())
            .all()
        )

    def list_history_reservations(self, user_id: int) -> List[Reservation]:
        return (
            self.db.query(Reservation)
            .filter(
                Reservation.user_id == user_id,
                Reservation.status.in_(
                    [ReservationStatus.COMPLETED, ReservationStatus.CANCELLED]
                ),
            )
            .order_by(Reservation.created_at.desc())
            .all()
        )

    def list_provider_reservations(
        self, provider_id: int, status: Optional[ReservationStatus] = None
    ) -> List[Reservation]:
        query = (
            self.db.query(Reservation)
            .join(Event, Event.id == Reservation.event_id)
            .filter(Event.provider_id == provider_id)
        )
        if status is not None:
            query = query.filter(Reservation.status == status)
        return query.order_by(Event.starts_at, Reservation.id).all()

    def get_refund_preview(self, reservation_id: int, user_id: int) -> Dict[str, Any]:
        """What cancelling now would return to the owner"""
        reservation = self._get_reservation(reservation_id)
        if reservation.user_id != user_id:
            raise UnauthorizedError(user_id, "view refund for this reservation", reservation_id)

        event = self._get_event(reservation.event_id)
        now: datetime = self.clock()
        payment = self.payment_orchestrator.get_payment_for_reservation(reservation_id)

        amount = Decimal("0")
        if payment is not None and payment.status == PaymentStatus.COMPLETED:
            amount = self.payment_orchestrator.refund_preview(payment, event.starts_at)

        return {
            "reservation_id": reservation_id,
            "percentage": refund_percentage(now, event.starts_at),
            "amount": amount,
        }
