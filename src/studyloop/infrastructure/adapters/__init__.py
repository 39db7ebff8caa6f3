# Store adapters
from .hosted_store import HostedStore
from .memory_store import InMemoryStore
from .sqlite_store import SqliteStore

__all__ = ["HostedStore", "InMemoryStore", "SqliteStore"]
