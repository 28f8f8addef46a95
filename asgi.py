"""
asgi.py -- ASGI entry point for Gatehouse.

The presentation layer (pages, todo handlers) mounts its own routers onto
this app and reads identity through auth.dependencies.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
