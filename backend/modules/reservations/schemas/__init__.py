# backend/modules/reservations/schemas/__init__.py
