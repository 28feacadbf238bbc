# backend/workers/__init__.py
