"""
asgi.py -- ASGI entry point for boardkeep.

The HTTP layer that serves posts, tags and pages lives outside this
repository; it mounts its own routers on this app and calls into auth/ via
the SessionTransaction dependency.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
