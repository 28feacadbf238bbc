# backend/modules/vouchers/tests/__init__.py
