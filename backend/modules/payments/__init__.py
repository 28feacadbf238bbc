# backend/modules/payments/__init__.py
