from __future__ import annotations

from paperdesk.shared.db import Base, SessionLocal, engine, init_db

__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "init_db",
]
