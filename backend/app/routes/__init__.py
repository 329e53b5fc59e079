# backend/app/routes/__init__.py
"""HTTP routes. All application routes live in v1/."""
