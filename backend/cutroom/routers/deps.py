"""Shared request dependencies.

Authentication happens upstream; the gateway forwards the resolved identity
in ``X-Actor``. Every write endpoint requires it so audit entries and
decision fields always name a person.
"""
from typing import Optional

from fastapi import Header, HTTPException


def require_actor(x_actor: Optional[str] = Header(default=None)) -> str:
    actor = (x_actor or "").strip()
    if not actor:
        raise HTTPException(status_code=401, detail="X-Actor header is required")
    return actor
