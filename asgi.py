"""
asgi.py -- ASGI entry point.

Run with:  uvicorn asgi:app --reload

api/main.py owns the application; this module only re-exports it so the
server command does not depend on the package layout.
"""

from api.main import app

__all__ = ["app"]
