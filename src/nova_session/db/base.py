"""
nova_session.db.base

SQLAlchemy declarative base.

Responsibilities:
- Provide a shared DeclarativeBase for the local cache tables.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# --- Module Notes -----------------------------------------------------------
# All ORM models inherit from `Base` so `init_db` can create their tables from metadata.
