"""
FileSessionStore — JSON file-backed store with persistence across restarts.

Data layout:
  {data_dir}/
    sessions.json      user_id → session

On init the file is loaded into memory; every write rewrites it through a
temporary file and an atomic rename. Single-process only.
"""
from __future__ import annotations

import json
import os
import structlog
from pathlib import Path

from core.errors import PersistenceError
from database.store_memory import InMemorySessionStore
from models.schemas import Session

logger = structlog.get_logger()


class FileSessionStore(InMemorySessionStore):
    """Extends InMemorySessionStore with JSON file persistence."""

    def __init__(self, data_dir: str = "./data"):
        super().__init__()
        self._data_dir = Path(data_dir)
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create data dir {data_dir}", cause=e)
        self._load()
        logger.info("file_store_initialized", data_dir=str(self._data_dir), sessions=len(self))

    @property
    def path(self) -> Path:
        return self._data_dir / "sessions.json"

    def _load(self):
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            # A corrupt file must not take the service down; start empty
            logger.warning("file_store_load_error", file=str(self.path), error=str(e))
            return
        if isinstance(data, dict):
            self._sessions = data

    def _changed(self) -> None:
        tmp = self.path.with_suffix(".json.tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self._sessions, f, ensure_ascii=False, default=str)
            os.replace(tmp, self.path)
        except (OSError, TypeError) as e:
            logger.error("file_store_write_failed", file=str(self.path), error=str(e))
            raise PersistenceError(f"Cannot write {self.path}", cause=e)

    async def set(self, user_id: str, session: Session) -> None:
        previous = self._sessions.get(user_id)
        try:
            await super().set(user_id, session)
        except PersistenceError:
            # Keep memory in line with what is on disk
            if previous is None:
                self._sessions.pop(user_id, None)
            else:
                self._sessions[user_id] = previous
            raise

    async def delete(self, user_id: str) -> bool:
        previous = self._sessions.get(user_id)
        try:
            return await super().delete(user_id)
        except PersistenceError:
            if previous is not None:
                self._sessions[user_id] = previous
            raise
