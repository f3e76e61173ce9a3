"""Remote backend client, local fallback cache and the database service that mediates them."""

from .database import DatabaseService
from .local_store import LocalCache, LocalStore
from .remote import InMemoryRemote, RemoteClient, RemoteConfigError, RemoteError, build_remote

__all__ = [
    "DatabaseService",
    "InMemoryRemote",
    "LocalCache",
    "LocalStore",
    "RemoteClient",
    "RemoteConfigError",
    "RemoteError",
    "build_remote",
]
