# backend/modules/reservations/tests/test_participant_roster.py

"""
Tests for joining reservations through invite codes.
"""

import pytest

from core.exceptions import InvalidTransitionError, NotFoundError, UnauthorizedError
from core.notification_service import NotificationTemplate
from modules.reservations.exceptions import (
    AlreadyJoinedError,
    CapacityFullError,
    NotParticipantError,
    OwnerCannotJoinError,
    ReservationCancelledError,
)
from modules.reservations.models.reservation_models import (
    ParticipantCategory,
    ReservationStatus,
)
from modules.reservations.services.participant_roster import ParticipantRoster


OWNER = 1
PROVIDER = 900


class TestParticipantRoster:
    """Invite codes, joins and removals"""

    @pytest.fixture
    def roster(self, db_session, notifier, clock):
        return ParticipantRoster(db_session, notifier=notifier, clock=clock)

    @pytest.fixture
    def reservation(self, make_event, make_reservation):
        event = make_event(capacity=10)
        return make_reservation(event, user_id=OWNER, adults=3, children=1)

    @pytest.fixture
    def invite_code(self, roster, reservation):
        return roster.get_invite_code(reservation.id, OWNER)

    def test_invite_code_is_stable(self, roster, reservation):
        code = roster.get_invite_code(reservation.id, OWNER)

        assert len(code) == 8
        assert roster.get_invite_code(reservation.id, OWNER) == code

    def test_invite_code_owner_only(self, roster, reservation):
        with pytest.raises(UnauthorizedError):
            roster.get_invite_code(reservation.id, 2)

    @pytest.mark.asyncio
    async def test_join_until_category_full(self, roster, reservation, invite_code):
        # Three adults booked: the owner holds one seat, two are open
        await roster.join(invite_code, 2)
        await roster.join(invite_code, 3)

        with pytest.raises(CapacityFullError) as exc_info:
            await roster.join(invite_code, 4)

        assert exc_info.value.details["category"] == "adult"
        assert exc_info.value.details["capacity"] == 2

    @pytest.mark.asyncio
    async def test_join_child_seat(self, roster, reservation, invite_code):
        participant = await roster.join(invite_code, 5, ParticipantCategory.CHILD)

        assert participant.category == ParticipantCategory.CHILD
        with pytest.raises(CapacityFullError):
            await roster.join(invite_code, 6, ParticipantCategory.CHILD)

    @pytest.mark.asyncio
    async def test_join_category_not_booked(self, roster, reservation, invite_code):
        with pytest.raises(CapacityFullError):
            await roster.join(invite_code, 5, ParticipantCategory.INFANT)

    @pytest.mark.asyncio
    async def test_join_notifies_owner(self, roster, reservation, invite_code, notification_adapter):
        await roster.join(invite_code, 2)

        user_id, message = notification_adapter.send_to_user.await_args.args
        assert user_id == OWNER
        assert message.template == NotificationTemplate.PARTICIPANT_JOINED.value

    @pytest.mark.asyncio
    async def test_owner_cannot_join(self, roster, reservation, invite_code):
        with pytest.raises(OwnerCannotJoinError):
            await roster.join(invite_code, OWNER)

    @pytest.mark.asyncio
    async def test_join_twice(self, roster, reservation, invite_code):
        await roster.join(invite_code, 2)

        with pytest.raises(AlreadyJoinedError):
            await roster.join(invite_code, 2)

    @pytest.mark.asyncio
    async def test_join_cancelled_reservation(self, roster, db_session, reservation, invite_code):
        reservation.status = ReservationStatus.CANCELLED
        db_session.commit()

        with pytest.raises(ReservationCancelledError):
            await roster.join(invite_code, 2)

    @pytest.mark.asyncio
    async def test_already_joined_reported_before_cancellation(
        self, roster, db_session, reservation, invite_code
    ):
        await roster.join(invite_code, 2)
        reservation.status = ReservationStatus.CANCELLED
        db_session.commit()

        with pytest.raises(AlreadyJoinedError):
            await roster.join(invite_code, 2)

    @pytest.mark.asyncio
    async def test_join_completed_reservation(self, roster, db_session, reservation, invite_code):
        reservation.status = ReservationStatus.COMPLETED
        db_session.commit()

        with pytest.raises(InvalidTransitionError):
            await roster.join(invite_code, 2)

    @pytest.mark.asyncio
    async def test_join_unknown_code(self, roster, reservation):
        with pytest.raises(NotFoundError):
            await roster.join("deadbeef", 2)

    @pytest.mark.asyncio
    async def test_leave_frees_seat(self, roster, reservation, invite_code):
        await roster.join(invite_code, 2)
        await roster.join(invite_code, 3)

        roster.leave(reservation.id, 2)
        participant = await roster.join(invite_code, 4)

        assert participant.user_id == 4

    def test_leave_without_joining(self, roster, reservation):
        with pytest.raises(NotParticipantError):
            roster.leave(reservation.id, 2)

    @pytest.mark.asyncio
    async def test_owner_removes_participant(
        self, roster, reservation, invite_code, notification_adapter
    ):
        participant = await roster.join(invite_code, 2)

        await roster.remove(reservation.id, participant.id, OWNER)

        assert roster.list_participants(reservation.id, OWNER) == []
        user_id, message = notification_adapter.send_to_user.await_args.args
        assert user_id == 2
        assert message.template == NotificationTemplate.PARTICIPANT_REMOVED.value

    @pytest.mark.asyncio
    async def test_only_owner_removes(self, roster, reservation, invite_code):
        participant = await roster.join(invite_code, 2)
        await roster.join(invite_code, 3)

        with pytest.raises(UnauthorizedError):
            await roster.remove(reservation.id, participant.id, 3)

    @pytest.mark.asyncio
    async def test_remove_unknown_participant(self, roster, reservation):
        with pytest.raises(NotFoundError):
            await roster.remove(reservation.id, 999, OWNER)

    @pytest.mark.asyncio
    async def test_participant_list_visibility(self, roster, reservation, invite_code):
        await roster.join(invite_code, 2)

        for viewer in (OWNER, 2, PROVIDER):
            participants = roster.list_participants(reservation.id, viewer)
            assert [p.user_id for p in participants] == [2]

        with pytest.raises(UnauthorizedError):
            roster.list_participants(reservation.id, 77)

    @pytest.mark.asyncio
    async def test_remaining_slots(self, roster, reservation, invite_code):
        await roster.join(invite_code, 2)
        await roster.join(invite_code, 5, ParticipantCategory.CHILD)

        slots = roster.remaining_slots(reservation.id)

        assert (slots.adults, slots.children, slots.infants) == (1, 0, 0)
