"""Expose constructed client wrappers."""

from .session_store import InMemorySessionStore, SQLiteSessionStore, SessionStore
from .sqlite_store import ConnectionState, SQLiteConnectionManager
from .token_exchange import TokenExchangeClient
from .token_repository import TokenRepository

__all__ = [
    "ConnectionState",
    "InMemorySessionStore",
    "SQLiteConnectionManager",
    "SQLiteSessionStore",
    "SessionStore",
    "TokenExchangeClient",
    "TokenRepository",
]
