"""
asgi.py -- ASGI entry point for Sentinel.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers have a stable import
path that does not change if the app module is reorganized.
"""

from api.main import app

__all__ = ["app"]
