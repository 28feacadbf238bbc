# backend/modules/vouchers/services/__init__.py

from .voucher_ledger import VoucherLedger, CODE_ALPHABET

__all__ = ["VoucherLedger", "CODE_ALPHABET"]
