# backend/modules/vouchers/exceptions.py

from typing import Any, Dict, Optional

from core.exceptions import BookingError


class InvalidVoucherError(BookingError):
    """Base exception for voucher apply/redeem violations"""

    def __init__(
        self,
        message: str,
        error_code: str = "VOUCHER_INVALID",
        voucher_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.voucher_id = voucher_id
        payload = {"voucher_id": voucher_id}
        payload.update(details or {})
        super().__init__(message, error_code, payload)


class VoucherNotOwnerError(InvalidVoucherError):
    """The voucher is bound to a different user"""

    def __init__(self, voucher_id: int, user_id: int):
        super().__init__(
            f"Voucher {voucher_id} does not belong to user {user_id}",
            "VOUCHER_NOT_OWNER",
            voucher_id,
            {"user_id": user_id},
        )


class VoucherNotUsableError(InvalidVoucherError):
    """The voucher cannot be spent (status, balance or expiry)"""

    def __init__(self, voucher_id: Optional[int], reason: str):
        self.reason = reason
        super().__init__(
            f"Voucher {voucher_id} is not usable: {reason}",
            "VOUCHER_NOT_USABLE",
            voucher_id,
            {"reason": reason},
        )


class VoucherExpiredError(InvalidVoucherError):
    def __init__(self, voucher_id: int):
        super().__init__(f"Voucher {voucher_id} has expired", "VOUCHER_EXPIRED", voucher_id)


class VoucherAlreadyRedeemedError(InvalidVoucherError):
    def __init__(self, voucher_id: int, by_same_user: bool = False):
        self.by_same_user = by_same_user
        message = (
            f"Voucher {voucher_id} is already registered to this account"
            if by_same_user
            else f"Voucher {voucher_id} has already been redeemed"
        )
        super().__init__(
            message, "VOUCHER_ALREADY_REDEEMED", voucher_id, {"by_same_user": by_same_user}
        )


class VoucherNotActivatedError(InvalidVoucherError):
    def __init__(self, voucher_id: int):
        super().__init__(
            f"Voucher {voucher_id} has not been activated", "VOUCHER_NOT_ACTIVATED", voucher_id
        )
