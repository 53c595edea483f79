"""
Database layer — multi-backend session persistence.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)
  - File (JSON file on disk, for small deployments)

Quick start:
  from database import create_store, get_store
  store = create_store({"store_backend": "memory"})
  session = await store.get("573001234567")
"""
from database.models import Base, SessionRow
from database.session import get_engine, transaction, init_db, close_db
from database.store_base import BaseSessionStore
from database.store import SqlSessionStore
from database.store_memory import InMemorySessionStore
from database.store_file import FileSessionStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # ORM models
    "Base", "SessionRow",
    # Engine and transactions
    "get_engine", "transaction", "init_db", "close_db",
    # Store interface
    "BaseSessionStore",
    # Store backends
    "SqlSessionStore", "InMemorySessionStore", "FileSessionStore",
    # Factory
    "create_store", "get_store", "reset_store",
]
