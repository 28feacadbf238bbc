# backend/modules/reservations/services/participant_roster.py

import logging
import uuid
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.clock import Clock, utcnow
from core.config import Settings, settings as default_settings
from core.exceptions import InvalidTransitionError, NotFoundError, UnauthorizedError
from core.notification_service import NotificationService, NotificationTemplate
from modules.inventory.models.event_models import Event
from ..exceptions import (
    AlreadyJoinedError,
    CapacityFullError,
    NotParticipantError,
    OwnerCannotJoinError,
    ReservationCancelledError,
)
from ..models.reservation_models import (
    ParticipantCategory,
    Reservation,
    ReservationParticipant,
    ReservationStatus,
)
from ..schemas.reservation_schemas import ReservationRemainingSlots


logger = logging.getLogger(__name__)


class ParticipantRoster:
    """
    Group members who joined a reservation through its invite code.

    Each category's open seats are the reservation's headcount for that
    category; the owner always occupies one adult seat.
    """

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationService] = None,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.notifier = notifier or NotificationService()
        self.settings = settings or default_settings
        self.clock = clock

    def _get_reservation(self, reservation_id: int) -> Reservation:
        reservation = self.db.get(Reservation, reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    def get_invite_code(self, reservation_id: int, user_id: int) -> str:
        """Invite code for the reservation, generated on first request"""
        reservation = self._get_reservation(reservation_id)
        if reservation.user_id != user_id:
            raise UnauthorizedError(user_id, "create an invite code", reservation_id)
        if reservation.invite_code:
            return reservation.invite_code

        while True:
            code = uuid.uuid4().hex[: self.settings.invite_code_length]
            try:
                self.db.execute(
                    update(Reservation)
                    .where(Reservation.id == reservation_id, Reservation.invite_code.is_(None))
                    .values(invite_code=code)
                    .execution_options(synchronize_session=False)
                )
                self.db.commit()
                break
            except IntegrityError:
                # Code collided with another reservation's
                self.db.rollback()

        self.db.refresh(reservation)
        logger.info(f"Invite code issued for reservation {reservation_id}")
        return reservation.invite_code

    def _count(self, reservation_id: int, category: ParticipantCategory) -> int:
        return (
            self.db.query(func.count(ReservationParticipant.id))
            .filter(
                ReservationParticipant.reservation_id == reservation_id,
                ReservationParticipant.category == category,
            )
            .scalar()
        )

    def _find(self, reservation_id: int, user_id: int) -> Optional[ReservationParticipant]:
        return (
            self.db.query(ReservationParticipant)
            .filter(
                ReservationParticipant.reservation_id == reservation_id,
                ReservationParticipant.user_id == user_id,
            )
            .first()
        )

    async def join(
        self,
        invite_code: str,
        user_id: int,
        category: ParticipantCategory = ParticipantCategory.ADULT,
    ) -> ReservationParticipant:
        reservation = (
            self.db.query(Reservation)
            .filter(Reservation.invite_code == invite_code.strip())
            .with_for_update()
            .first()
        )
        if reservation is None:
            raise NotFoundError("Invite", invite_code)

        try:
            if reservation.user_id == user_id:
                raise OwnerCannotJoinError(reservation.id)
            if self._find(reservation.id, user_id) is not None:
                raise AlreadyJoinedError(reservation.id, user_id)
            if reservation.status == ReservationStatus.CANCELLED:
                raise ReservationCancelledError(reservation.id)
            if reservation.status == ReservationStatus.COMPLETED:
                raise InvalidTransitionError(
                    "Reservation", reservation.id, reservation.status.value, "join"
                )

            capacity = reservation.category_capacity(category)
            if self._count(reservation.id, category) >= capacity:
                raise CapacityFullError(reservation.id, category.value, capacity)

            participant = ReservationParticipant(
                reservation_id=reservation.id,
                user_id=user_id,
                category=category,
                joined_at=self.clock(),
            )
            self.db.add(participant)
            self.db.flush()

            # Re-check inside the transaction in case a concurrent join won the seat
            if self._count(reservation.id, category) > capacity:
                raise CapacityFullError(reservation.id, category.value, capacity)

            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise AlreadyJoinedError(reservation.id, user_id)
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(participant)
        logger.info(
            f"User {user_id} joined reservation {reservation.id} as {category.value}"
        )
        await self.notifier.notify(
            reservation.user_id,
            NotificationTemplate.PARTICIPANT_JOINED,
            {"reservation_id": reservation.id, "user_id": user_id, "category": category.value},
        )
        return participant

    def leave(self, reservation_id: int, user_id: int) -> None:
        participant = self._find(reservation_id, user_id)
        if participant is None:
            raise NotParticipantError(reservation_id, user_id)

        self.db.delete(participant)
        self.db.commit()
        logger.info(f"User {user_id} left reservation {reservation_id}")

    async def remove(
        self, reservation_id: int, participant_id: int, requesting_user_id: int
    ) -> None:
        """Owner-only removal of a participant"""
        reservation = self._get_reservation(reservation_id)
        if reservation.user_id != requesting_user_id:
            raise UnauthorizedError(requesting_user_id, "remove participants", reservation_id)

        participant = self.db.get(ReservationParticipant, participant_id)
        if participant is None or participant.reservation_id != reservation_id:
            raise NotFoundError("Participant", participant_id)

        removed_user_id = participant.user_id
        self.db.delete(participant)
        self.db.commit()

        logger.info(
            f"Participant {participant_id} removed from reservation {reservation_id} "
            f"by owner {requesting_user_id}"
        )
        await self.notifier.notify(
            removed_user_id,
            NotificationTemplate.PARTICIPANT_REMOVED,
            {"reservation_id": reservation_id},
        )

    def list_participants(
        self, reservation_id: int, user_id: int
    ) -> List[ReservationParticipant]:
        """Visible to the owner, the event provider and the participants themselves"""
        reservation = self._get_reservation(reservation_id)
        allowed = reservation.user_id == user_id or self._find(reservation_id, user_id) is not None
        if not allowed:
            provider_id = (
                self.db.query(Event.provider_id)
                .filter(Event.id == reservation.event_id)
                .scalar()
            )
            allowed = provider_id == user_id
        if not allowed:
            raise UnauthorizedError(user_id, "view participants", reservation_id)

        return (
            self.db.query(ReservationParticipant)
            .filter(ReservationParticipant.reservation_id == reservation_id)
            .order_by(ReservationParticipant.joined_at, ReservationParticipant.id)
            .all()
        )

    def remaining_slots(self, reservation_id: int) -> ReservationRemainingSlots:
        reservation = self._get_reservation(reservation_id)
        return ReservationRemainingSlots(
            adults=reservation.category_capacity(ParticipantCategory.ADULT)
            - self._count(reservation_id, ParticipantCategory.ADULT),
            children=reservation.category_capacity(ParticipantCategory.CHILD)
            - self._count(reservation_id, ParticipantCategory.CHILD),
            infants=reservation.category_capacity(ParticipantCategory.INFANT)
            - self._count(reservation_id, ParticipantCategory.INFANT),
        )
