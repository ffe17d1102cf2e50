"""Store clients for scheduled jobs and jobs."""

from cronkeeper.store.base import StoreClient, with_timeout
from cronkeeper.store.document import DocumentStore, StoreData
from cronkeeper.store.file import FileStore
from cronkeeper.store.memory import InMemoryStore

__all__ = [
    "StoreClient",
    "DocumentStore",
    "StoreData",
    "InMemoryStore",
    "FileStore",
    "with_timeout",
]
