# backend/modules/payments/services/refund_policy.py

"""
Cancellation refund tiers.

The refundable share of a charge depends only on how far ahead of the
event the cancellation happens:

    >= 4 days   100%
    >= 1 day     50%
    otherwise     0%  (including after the event has started)

Amounts are rounded down to the smallest unit of the currency. Voucher
portions are never part of the charged amount passed in here.
"""

from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN

FULL_REFUND_LEAD = timedelta(days=4)
PARTIAL_REFUND_LEAD = timedelta(days=1)

FULL_REFUND_PERCENTAGE = 100
PARTIAL_REFUND_PERCENTAGE = 50
NO_REFUND_PERCENTAGE = 0

# Currencies without minor units
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "VND", "CLP", "TWD"}


def refund_percentage(now: datetime, event_start: datetime) -> int:
    lead = event_start - now
    if lead >= FULL_REFUND_LEAD:
        return FULL_REFUND_PERCENTAGE
    if lead >= PARTIAL_REFUND_LEAD:
        return PARTIAL_REFUND_PERCENTAGE
    return NO_REFUND_PERCENTAGE


def currency_unit(currency: str) -> Decimal:
    """Smallest representable amount for ``currency``"""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return Decimal("1")
    return Decimal("0.01")


def refund_amount(charged: Decimal, percentage: int, currency: str = "JPY") -> Decimal:
    raw = Decimal(charged) * Decimal(percentage) / Decimal(100)
    return raw.quantize(currency_unit(currency), rounding=ROUND_DOWN)
