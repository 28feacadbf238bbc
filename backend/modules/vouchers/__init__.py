# backend/modules/vouchers/__init__.py
