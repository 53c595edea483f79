"""
Abstract Session Store — interface for all session storage backends.

Implementations:
  - SqlSessionStore      (PostgreSQL / MySQL / SQLite via SQLAlchemy)
  - InMemorySessionStore (dict-based, single-process, no persistence)
  - FileSessionStore     (JSON file on disk, single-process, durable)

Contract shared by every backend:
  - get() never returns None: an unknown user gets a fresh Idle session
  - returned sessions are copies; mutating one never changes stored state
  - any I/O failure is raised as core.errors.PersistenceError
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from models.schemas import Session


class BaseSessionStore(ABC):
    """Interface that all session store backends must implement."""

    @abstractmethod
    async def get(self, user_id: str) -> Session:
        ...

    @abstractmethod
    async def set(self, user_id: str, session: Session) -> None:
        ...

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        ...

    @abstractmethod
    async def list_sessions(self, limit: int = 100) -> list[Session]:
        ...

    async def close(self) -> None:
        pass
