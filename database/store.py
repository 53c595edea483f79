"""
SqlSessionStore — portable SQL session persistence for PostgreSQL, MySQL, SQLite.

SQLAlchemy errors are raised as PersistenceError; the engine never sees them raw.
"""
from __future__ import annotations

import json
import structlog
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from core.errors import PersistenceError
from database.models import SessionRow
from database.session import transaction
from database.store_base import BaseSessionStore
from models.schemas import Session, as_utc

logger = structlog.get_logger()


def _as_json(value: Any, default: Any) -> Any:
    # SQLite may hand JSON columns back as text
    if isinstance(value, str):
        return json.loads(value)
    return value if value is not None else default


class SqlSessionStore(BaseSessionStore):
    """Persistent session store backed by any SQLAlchemy-supported database."""

    async def get(self, user_id: str) -> Session:
        try:
            async with transaction() as db:
                row = await db.get(SessionRow, user_id)
                if row is None:
                    return Session(user_id=user_id)
                return self._row_to_session(row)
        except SQLAlchemyError as e:
            logger.error("session_load_failed", user_id=user_id, error=str(e))
            raise PersistenceError(f"Cannot load session for {user_id}", cause=e)

    async def set(self, user_id: str, session: Session) -> None:
        data = session.model_dump(mode="json")
        try:
            async with transaction() as db:
                row = await db.get(SessionRow, user_id)
                if row is None:
                    row = SessionRow(user_id=user_id, created_at=session.created_at)
                    db.add(row)
                row.current_step = session.current_step.value
                row.fields = data["fields"]
                row.processed_events = data["processed_events"]
                row.version = session.version
                row.updated_at = session.updated_at
        except SQLAlchemyError as e:
            logger.error("session_save_failed", user_id=user_id, error=str(e))
            raise PersistenceError(f"Cannot save session for {user_id}", cause=e)

    async def delete(self, user_id: str) -> bool:
        try:
            async with transaction() as db:
                result = await db.execute(delete(SessionRow).where(SessionRow.user_id == user_id))
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot delete session for {user_id}", cause=e)

    async def list_sessions(self, limit: int = 100) -> list[Session]:
        try:
            async with transaction() as db:
                stmt = select(SessionRow).order_by(SessionRow.updated_at.desc()).limit(limit)
                result = await db.execute(stmt)
                return [self._row_to_session(row) for row in result.scalars()]
        except SQLAlchemyError as e:
            raise PersistenceError("Cannot list sessions", cause=e)

    @staticmethod
    def _row_to_session(row: SessionRow) -> Session:
        return Session(
            user_id=row.user_id,
            current_step=row.current_step,
            fields=_as_json(row.fields, {}),
            processed_events=_as_json(row.processed_events, []),
            version=row.version or 0,
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )
