"""Data storage layer."""

from app.storage.database import Database, get_database, init_database
from app.storage.memory import InMemoryTradingStore
from app.storage.trading_repo import SqlTradingStore

__all__ = [
    "Database",
    "get_database",
    "init_database",
    "InMemoryTradingStore",
    "SqlTradingStore",
]
