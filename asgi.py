"""
asgi.py -- ASGI entry point for hrauth.

Run with:  uvicorn asgi:app --host 0.0.0.0 --port 8080
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
