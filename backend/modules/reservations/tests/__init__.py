# backend/modules/reservations/tests/__init__.py
