# backend/modules/vouchers/models/__init__.py

from .voucher_models import (
    VoucherStatus,
    GiftVoucher,
    GiftVoucherConsumption,
    SPENDABLE_STATUSES,
)

__all__ = [
    "VoucherStatus",
    "GiftVoucher",
    "GiftVoucherConsumption",
    "SPENDABLE_STATUSES",
]
