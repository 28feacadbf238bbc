# backend/modules/reservations/tasks/__init__.py

"""
Background tasks for the reservation lifecycle.
"""

from .reconciliation_tasks import ReconciliationScheduler

__all__ = ["ReconciliationScheduler"]
