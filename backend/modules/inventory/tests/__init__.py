# backend/modules/inventory/tests/__init__.py
