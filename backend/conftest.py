"""
Pytest configuration and shared fixtures for the reservation core.

Every test gets its own SQLite file so that services opening their own
sessions (the reconciliation sweeps, the concurrency tests) see the same
committed data as the test's ``db_session``.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.orm import sessionmaker

from core.database import Base, build_engine
from core.notification_service import NotificationService
from modules.inventory.models.event_models import Event
from modules.inventory.services.inventory_ledger import InventoryLedger
from modules.payments.gateways import (
    BankTransferGateway,
    CheckoutConfirmation,
    CheckoutResponse,
    RefundResponse,
)
from modules.payments.models.payment_models import Payment, PaymentChannel, PaymentWebhook  # noqa: F401
from modules.reservations.models.reservation_models import (  # noqa: F401
    Reservation,
    ReservationParticipant,
    ReservationStatus,
)
from modules.vouchers.models.voucher_models import (  # noqa: F401
    GiftVoucher,
    GiftVoucherConsumption,
    VoucherStatus,
)


PROVIDER_ID = 900
OWNER_ID = 1


class FrozenClock:
    """
    Deterministic clock for services.

    Each read returns the current instant and then moves it forward by
    ``tick`` so that consecutive writes get strictly increasing times.
    """

    def __init__(self, start: datetime = datetime(2026, 3, 1, 9, 0, 0),
                 tick: timedelta = timedelta(seconds=1)):
        self.now = start
        self.tick = tick

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.tick
        return current

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'reservations_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def notification_adapter():
    adapter = MagicMock()
    adapter.send_to_user = AsyncMock(return_value=True)
    adapter.get_adapter_name.return_value = "mock"
    return adapter


@pytest.fixture
def notifier(notification_adapter):
    return NotificationService(adapter=notification_adapter)


@pytest.fixture
def card_gateway():
    """Card gateway double that accepts every call"""
    gateway = MagicMock()
    gateway.name = "stripe"
    gateway.create_checkout = AsyncMock(
        return_value=CheckoutResponse(
            success=True,
            session_id="cs_test_1",
            redirect_url="https://checkout.test/cs_test_1",
        )
    )
    gateway.confirm_checkout = AsyncMock(
        return_value=CheckoutConfirmation(paid=True, external_charge_id="pi_test_1")
    )
    gateway.create_refund = AsyncMock(
        return_value=RefundResponse(success=True, gateway_refund_id="re_test_1")
    )
    return gateway


@pytest.fixture
def gateways(card_gateway):
    return {
        PaymentChannel.CARD: card_gateway,
        PaymentChannel.BANK_TRANSFER: BankTransferGateway(
            {"instructions_url": "https://reservations.test"}
        ),
    }


@pytest.fixture
def make_event(db_session, clock):
    def _make_event(
        capacity: int = 10,
        starts_in: timedelta = timedelta(days=10),
        price: Decimal = Decimal("1000"),
        child_price: Decimal = None,
        provider_id: int = PROVIDER_ID,
    ) -> Event:
        event = Event(
            provider_id=provider_id,
            title="Tea ceremony workshop",
            capacity=capacity,
            remaining_capacity=capacity,
            starts_at=clock.now + starts_in,
            price=price,
            child_price=child_price,
        )
        db_session.add(event)
        db_session.commit()
        db_session.refresh(event)
        return event

    return _make_event


@pytest.fixture
def make_reservation(db_session, clock):
    """Insert a reservation holding seats on ``event`` without going through the service"""

    def _make_reservation(
        event: Event,
        user_id: int = OWNER_ID,
        adults: int = 1,
        children: int = 0,
        infants: int = 0,
        status: ReservationStatus = ReservationStatus.PENDING_PAYMENT,
        total_price: Decimal = None,
    ) -> Reservation:
        InventoryLedger(db_session).reserve(event.id, adults + children + infants)
        now = clock.now
        reservation = Reservation(
            user_id=user_id,
            event_id=event.id,
            adults=adults,
            children=children,
            infants=infants,
            total_price=(
                total_price
                if total_price is not None
                else Decimal(event.price) * (adults + children)
            ),
            status=status,
            created_at=now,
            updated_at=now,
        )
        db_session.add(reservation)
        db_session.commit()
        db_session.refresh(reservation)
        return reservation

    return _make_reservation


@pytest.fixture
def make_voucher(db_session, clock):
    def _make_voucher(
        balance: Decimal = Decimal("1500"),
        owner_id: int = OWNER_ID,
        status: VoucherStatus = VoucherStatus.REDEEMED,
        code: str = None,
        expires_in: timedelta = timedelta(days=180),
        face_amount: Decimal = None,
    ) -> GiftVoucher:
        voucher = GiftVoucher(
            code=code,
            face_amount=face_amount if face_amount is not None else balance,
            balance=balance,
            status=status,
            owner_id=owner_id,
            expires_at=clock.now + expires_in,
        )
        db_session.add(voucher)
        db_session.commit()
        db_session.refresh(voucher)
        return voucher

    return _make_voucher
