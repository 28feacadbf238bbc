# backend/modules/payments/services/__init__.py
