# backend/modules/inventory/services/__init__.py

from .inventory_ledger import InventoryLedger

__all__ = ["InventoryLedger"]
