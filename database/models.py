"""
SQLAlchemy ORM models — cross-database compatible.

Supports: PostgreSQL, MySQL 8+, SQLite.

JSON type instead of PostgreSQL-specific JSONB: on PG the dialect maps JSON
to jsonb, on MySQL it uses native JSON, on SQLite it serializes to TEXT.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import String, Integer, DateTime, JSON, Index
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRow(Base):
    """One row per WhatsApp user: the current step plus captured fields."""
    __tablename__ = "conversation_sessions"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_step: Mapped[str] = mapped_column(String(64), nullable=False, default="idle")
    fields: Mapped[Any] = mapped_column(JSON, default=dict)
    processed_events: Mapped[Any] = mapped_column(JSON, default=list)
    version: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_sessions_updated", "updated_at"),
    )
