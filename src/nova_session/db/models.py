"""
nova_session.db.models

Local persistence schema.

Responsibilities:
- Define the keyed record holding the serialized session snapshot.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from nova_session.db.base import Base


class CachedSessionRow(Base):
    __tablename__ = "cached_sessions"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    # Raw JSON payload; validated on read so a corrupt row is detectable and purgeable.
    payload: Mapped[Any] = mapped_column(JSON, nullable=False)
    saved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# --- Module Notes -----------------------------------------------------------
# One table holds both keyed rows: the warm session snapshot and the provider token pair.
