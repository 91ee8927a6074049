"""FastAPI application entrypoint.

Usage:
    uvicorn cutroom.app:app --reload
"""
import logging

from cutroom.main import create_app

app = create_app()
logging.getLogger("cutroom.app").info("[startup] Application created successfully")

__all__ = ["app"]
