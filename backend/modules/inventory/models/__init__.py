# backend/modules/inventory/models/__init__.py

from .event_models import Event

__all__ = ["Event"]
