"""
asgi.py -- ASGI entry point for the TinyAuth reference server.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
