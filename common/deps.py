"""
Karat Pricing - Shared FastAPI Dependencies
============================================
Authentication is out of scope; the caller names itself in X-Actor and
that name is written into audit fields (frozen_by, triggered_by, ...).
"""

from typing import Optional

from fastapi import Header


def get_actor(x_actor: Optional[str] = Header(None)) -> str:
    actor = (x_actor or "").strip()
    return actor[:100] if actor else "system"
