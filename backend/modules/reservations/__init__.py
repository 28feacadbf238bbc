# backend/modules/reservations/__init__.py
