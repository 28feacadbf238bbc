# backend/modules/vouchers/services/voucher_ledger.py

import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from core.clock import Clock, utcnow
from core.config import Settings, settings as default_settings
from core.exceptions import InvalidTransitionError, NotFoundError
from ..exceptions import (
    VoucherAlreadyRedeemedError,
    VoucherExpiredError,
    VoucherNotActivatedError,
    VoucherNotOwnerError,
    VoucherNotUsableError,
)
from ..models.voucher_models import (
    GiftVoucher,
    GiftVoucherConsumption,
    VoucherStatus,
    SPENDABLE_STATUSES,
)


logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud or retyped
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class VoucherLedger:
    """
    Owns gift voucher balances and status.

    ``apply`` is a dry run used while pricing a payment; ``consume`` is the
    only operation that lowers a balance and is keyed by payment id so a
    replayed confirmation never spends twice. ``consume`` runs inside the
    caller's transaction. Issuance, activation and redemption commit on
    their own.
    """

    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock
        self.settings = settings or default_settings

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(
        self,
        face_amount: Decimal,
        purchaser_id: Optional[int] = None,
        recipient_name: Optional[str] = None,
        recipient_email: Optional[str] = None,
        message: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> GiftVoucher:
        """Create a PENDING voucher for a purchase that has not settled yet"""
        face_amount = Decimal(face_amount)
        if face_amount <= 0:
            raise ValueError("Voucher face amount must be positive")

        now = self.clock()
        voucher = GiftVoucher(
            face_amount=face_amount,
            balance=face_amount,
            status=VoucherStatus.PENDING,
            purchaser_id=purchaser_id,
            recipient_name=recipient_name,
            recipient_email=recipient_email,
            message=message,
            expires_at=expires_at or now + timedelta(days=self.settings.voucher_validity_days),
        )
        self.db.add(voucher)
        self.db.commit()
        self.db.refresh(voucher)

        logger.info(f"Issued gift voucher {voucher.id} for {face_amount}")
        return voucher

    def activate(self, voucher_id: int) -> GiftVoucher:
        """Settle a purchased voucher and assign its redeemable code"""
        voucher = self._get(voucher_id)
        if voucher.status != VoucherStatus.PENDING:
            raise InvalidTransitionError(
                "GiftVoucher", voucher_id, voucher.status.value, VoucherStatus.ACTIVE.value
            )

        code = self._generate_unique_code()
        result = self.db.execute(
            update(GiftVoucher)
            .where(
                GiftVoucher.id == voucher_id,
                GiftVoucher.status == VoucherStatus.PENDING,
            )
            .values(code=code, status=VoucherStatus.ACTIVE, activated_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.db.refresh(voucher)
            raise InvalidTransitionError(
                "GiftVoucher", voucher_id, voucher.status.value, VoucherStatus.ACTIVE.value
            )

        self.db.commit()
        self.db.refresh(voucher)
        logger.info(f"Activated gift voucher {voucher_id}")
        return voucher

    # ------------------------------------------------------------------
    # Spending
    # ------------------------------------------------------------------

    def apply(self, voucher_id: int, owner_id: int, requested_amount: Decimal) -> Decimal:
        """Amount of ``requested_amount`` the voucher would cover. Never mutates."""
        voucher = self._get(voucher_id)

        if voucher.owner_id != owner_id:
            raise VoucherNotOwnerError(voucher_id, owner_id)

        self._ensure_usable(voucher)

        requested_amount = Decimal(requested_amount)
        if requested_amount <= 0:
            return Decimal("0")
        return min(voucher.balance, requested_amount)

    def consume(self, voucher_id: int, amount: Decimal, payment_id: str) -> bool:
        """
        Deduct ``amount`` from the voucher for ``payment_id``.

        Returns False when this payment already consumed the voucher.
        Raises VoucherNotUsableError when the balance was spent or the
        voucher stopped being usable since it was applied.
        """
        amount = Decimal(amount)
        if amount <= 0:
            return False

        already = self.db.execute(
            select(GiftVoucherConsumption.id).where(
                GiftVoucherConsumption.payment_id == payment_id
            )
        ).first()
        if already:
            logger.info(f"Voucher {voucher_id} already consumed for payment {payment_id}")
            return False

        result = self.db.execute(
            update(GiftVoucher)
            .where(
                GiftVoucher.id == voucher_id,
                GiftVoucher.balance >= amount,
                GiftVoucher.status.in_(SPENDABLE_STATUSES),
            )
            .values(balance=GiftVoucher.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise VoucherNotUsableError(voucher_id, "insufficient balance")

        self.db.execute(
            update(GiftVoucher)
            .where(GiftVoucher.id == voucher_id, GiftVoucher.balance <= 0)
            .values(status=VoucherStatus.USED)
            .execution_options(synchronize_session=False)
        )

        self.db.add(
            GiftVoucherConsumption(
                voucher_id=voucher_id,
                payment_id=payment_id,
                amount=amount,
                consumed_at=self.clock(),
            )
        )
        self.db.flush()

        logger.info(f"Consumed {amount} from voucher {voucher_id} for payment {payment_id}")
        return True

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------

    def redeem(self, code: str, user_id: int) -> GiftVoucher:
        """Bind an activated, unowned voucher to ``user_id``"""
        voucher = self.check(code)
        now = self.clock()

        if voucher.status == VoucherStatus.PENDING:
            raise VoucherNotActivatedError(voucher.id)
        if voucher.owner_id is not None:
            raise VoucherAlreadyRedeemedError(voucher.id, voucher.owner_id == user_id)
        if voucher.status == VoucherStatus.EXPIRED or voucher.expires_at <= now:
            raise VoucherExpiredError(voucher.id)
        if voucher.status != VoucherStatus.ACTIVE:
            raise VoucherNotUsableError(voucher.id, voucher.status.value)

        result = self.db.execute(
            update(GiftVoucher)
            .where(
                and_(
                    GiftVoucher.id == voucher.id,
                    GiftVoucher.owner_id.is_(None),
                    GiftVoucher.status == VoucherStatus.ACTIVE,
                )
            )
            .values(owner_id=user_id, status=VoucherStatus.REDEEMED, redeemed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Lost the race to another redeemer
            self.db.rollback()
            self.db.refresh(voucher)
            raise VoucherAlreadyRedeemedError(voucher.id, voucher.owner_id == user_id)

        self.db.commit()
        self.db.refresh(voucher)
        logger.info(f"Gift voucher {voucher.id} redeemed by user {user_id}")
        return voucher

    def check(self, code: str) -> GiftVoucher:
        """Look a voucher up by code without changing it"""
        normalized = (code or "").strip().upper()
        voucher = self.db.execute(
            select(GiftVoucher).where(GiftVoucher.code == normalized)
        ).scalar_one_or_none()
        if voucher is None:
            raise NotFoundError("GiftVoucher", normalized)
        return voucher

    def list_usable(self, owner_id: int) -> List[GiftVoucher]:
        now = self.clock()
        return list(
            self.db.execute(
                select(GiftVoucher)
                .where(
                    GiftVoucher.owner_id == owner_id,
                    GiftVoucher.status.in_(SPENDABLE_STATUSES),
                    GiftVoucher.balance > 0,
                    GiftVoucher.expires_at > now,
                )
                .order_by(GiftVoucher.expires_at)
            ).scalars()
        )

    def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """Mark spendable vouchers past their expiry as EXPIRED. Balance is kept."""
        now = now or self.clock()
        result = self.db.execute(
            update(GiftVoucher)
            .where(
                GiftVoucher.status.in_(SPENDABLE_STATUSES),
                GiftVoucher.expires_at <= now,
            )
            .values(status=VoucherStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} gift voucher(s)")
        return result.rowcount

    # ------------------------------------------------------------------

    def _get(self, voucher_id: int) -> GiftVoucher:
        voucher = self.db.get(GiftVoucher, voucher_id)
        if voucher is None:
            raise NotFoundError("GiftVoucher", voucher_id)
        return voucher

    def _ensure_usable(self, voucher: GiftVoucher) -> None:
        if voucher.status not in SPENDABLE_STATUSES:
            raise VoucherNotUsableError(voucher.id, voucher.status.value)
        if voucher.balance <= 0:
            raise VoucherNotUsableError(voucher.id, "no balance left")
        if voucher.expires_at <= self.clock():
            raise VoucherNotUsableError(voucher.id, "expired")

    def _generate_unique_code(self) -> str:
        length = self.settings.voucher_code_length
        while True:
            code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
            exists = self.db.execute(
                select(GiftVoucher.id).where(GiftVoucher.code == code)
            ).first()
            if not exists:
                return code
