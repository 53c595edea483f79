"""
InMemorySessionStore — dict-backed store for development and testing.

Sessions are kept as JSON-mode dumps, so what a caller gets back is always
a fresh object and never aliases stored state. All data is lost on restart.
"""
from __future__ import annotations

import structlog
from typing import Any

from database.store_base import BaseSessionStore
from models.schemas import Session

logger = structlog.get_logger()


class InMemorySessionStore(BaseSessionStore):

    def __init__(self):
        self._sessions: dict[str, dict[str, Any]] = {}     # user_id → session dump
        logger.info("inmemory_store_initialized")

    async def get(self, user_id: str) -> Session:
        data = self._sessions.get(user_id)
        if data is None:
            return Session(user_id=user_id)
        return Session.model_validate(data)

    async def set(self, user_id: str, session: Session) -> None:
        self._sessions[user_id] = session.model_dump(mode="json")
        self._changed()

    async def delete(self, user_id: str) -> bool:
        removed = self._sessions.pop(user_id, None) is not None
        if removed:
            self._changed()
        return removed

    async def list_sessions(self, limit: int = 100) -> list[Session]:
        sessions = [Session.model_validate(d) for d in self._sessions.values()]
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions[:limit]

    def _changed(self) -> None:
        """Hook for subclasses that persist the dict."""
        pass

    def __len__(self):
        return len(self._sessions)
