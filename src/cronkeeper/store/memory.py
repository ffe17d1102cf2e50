"""In-memory store for tests and embedding."""

from contextlib import contextmanager
from typing import Iterator

from cronkeeper.clock import Clock
from cronkeeper.config import Settings
from cronkeeper.store.document import DocumentStore, StoreData


class InMemoryStore(DocumentStore):
    """Store that keeps every object in process memory.

    Example:
        store = InMemoryStore()
        scheduled_job = await store.create_scheduled_job(scheduled_job)
        jobs = await store.list_jobs("default", scheduled_job.metadata.name)
    """

    def __init__(self, settings: Settings | None = None, clock: Clock | None = None) -> None:
        self._data = StoreData()
        super().__init__(settings=settings, clock=clock)

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[StoreData]:
        yield self._data
