# backend/modules/payments/tests/__init__.py
