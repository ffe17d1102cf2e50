"""Object store semantics over a single in-process document.

DocumentStore implements the store operations (uids, resource versions,
optimistic concurrency, owner index, cascading deletes) against a
StoreData document. Subclasses decide where the document lives.
"""

import logging
import uuid
from abc import abstractmethod
from collections import defaultdict
from contextlib import AbstractContextManager
from typing import Callable

from pydantic import BaseModel, Field

from cronkeeper.clock import Clock, RealClock
from cronkeeper.config import Settings
from cronkeeper.errors import AlreadyExistsError, ConflictError, NotFoundError
from cronkeeper.ownership import owner_index_value, set_controller_reference
from cronkeeper.store.base import StoreClient
from cronkeeper.types import Job, NamespacedName, PropagationPolicy, ScheduledJob

logger = logging.getLogger(__name__)

# Storage format version for future migrations
STORAGE_VERSION = 1

IndexFunc = Callable[[Job], list[str]]


def _key(key: NamespacedName) -> str:
    return f"{key.namespace}/{key.name}"


class StoreData(BaseModel):
    """Root structure of a store document.

    Attributes:
        version: Storage format version.
        resource_version: Last resource version handed out.
        scheduled_jobs: Scheduled jobs keyed by 'namespace/name'.
        jobs: Jobs keyed by 'namespace/name'.
    """

    version: int = Field(default=STORAGE_VERSION, description="Storage format version")
    resource_version: int = Field(default=0, description="Last assigned resource version")
    scheduled_jobs: dict[str, ScheduledJob] = Field(default_factory=dict)
    jobs: dict[str, Job] = Field(default_factory=dict)


class DocumentStore(StoreClient):
    """StoreClient backed by a StoreData document.

    Jobs are indexed by their controlling scheduled job so that listing
    the children of one owner does not scan the namespace.
    """

    def __init__(self, settings: Settings | None = None, clock: Clock | None = None) -> None:
        self._settings = settings or Settings()
        self._clock = clock or RealClock()
        self._indexers: dict[str, IndexFunc] = {}
        self._indices: dict[str, dict[tuple[str, str], set[str]]] = {}
        self.index_field(
            self._settings.owner_index_key,
            lambda job: owner_index_value(
                job, self._settings.owner_api_version, self._settings.owner_kind
            ),
        )

    @abstractmethod
    def _transaction(self, write: bool = False) -> AbstractContextManager[StoreData]:
        """Open the document for reading, or for reading and writing."""

    # Indexing

    def index_field(self, index_key: str, func: IndexFunc) -> None:
        """Register an index over jobs.

        Args:
            index_key: Name of the index.
            func: Maps a job to the values it is indexed under.
        """
        self._indexers[index_key] = func
        with self._transaction() as data:
            self._rebuild_indices(data)

    def _rebuild_indices(self, data: StoreData) -> None:
        self._indices = {key: defaultdict(set) for key in self._indexers}
        for job in data.jobs.values():
            self._index_add(job)

    def _index_add(self, job: Job) -> None:
        for index_key, func in self._indexers.items():
            for value in func(job):
                self._indices[index_key][(job.metadata.namespace, value)].add(job.metadata.name)

    def _index_remove(self, job: Job) -> None:
        for index_key, func in self._indexers.items():
            for value in func(job):
                names = self._indices[index_key].get((job.metadata.namespace, value))
                if names is not None:
                    names.discard(job.metadata.name)

    def _next_version(self, data: StoreData) -> int:
        data.resource_version += 1
        return data.resource_version

    def _stamp_new(self, data: StoreData, obj: ScheduledJob | Job) -> None:
        if not obj.metadata.uid:
            obj.metadata.uid = uuid.uuid4().hex
        if obj.metadata.creation_timestamp is None:
            obj.metadata.creation_timestamp = self._clock.now()
        obj.metadata.resource_version = self._next_version(data)

    # Scheduled jobs

    async def create_scheduled_job(self, scheduled_job: ScheduledJob) -> ScheduledJob:
        """Create a scheduled job.

        Raises:
            AlreadyExistsError: If one with that name exists.
        """
        with self._transaction(write=True) as data:
            key = _key(scheduled_job.metadata.key)
            if key in data.scheduled_jobs:
                raise AlreadyExistsError(f"scheduled job {key} already exists")
            stored = scheduled_job.model_copy(deep=True)
            self._stamp_new(data, stored)
            data.scheduled_jobs[key] = stored
            logger.info(f"Created scheduled job {key}")
            return stored.model_copy(deep=True)

    async def get_scheduled_job(self, key: NamespacedName) -> ScheduledJob:
        with self._transaction() as data:
            stored = data.scheduled_jobs.get(_key(key))
            if stored is None:
                raise NotFoundError(f"scheduled job {key} not found")
            return stored.model_copy(deep=True)

    async def list_scheduled_jobs(self, namespace: str | None = None) -> list[ScheduledJob]:
        """List scheduled jobs, optionally restricted to one namespace."""
        with self._transaction() as data:
            return [
                sj.model_copy(deep=True)
                for sj in data.scheduled_jobs.values()
                if namespace is None or sj.metadata.namespace == namespace
            ]

    async def update_scheduled_job_status(self, scheduled_job: ScheduledJob) -> ScheduledJob:
        with self._transaction(write=True) as data:
            key = _key(scheduled_job.metadata.key)
            stored = data.scheduled_jobs.get(key)
            if stored is None:
                raise NotFoundError(f"scheduled job {key} not found")
            self._check_version(key, stored.metadata.resource_version,
                                scheduled_job.metadata.resource_version)
            stored.status = scheduled_job.status.model_copy(deep=True)
            stored.metadata.resource_version = self._next_version(data)
            return stored.model_copy(deep=True)

    async def delete_scheduled_job(
        self,
        key: NamespacedName,
        propagation: PropagationPolicy = PropagationPolicy.BACKGROUND,
    ) -> None:
        """Delete a scheduled job and handle the jobs it owns.

        Background propagation deletes the owned jobs; Orphan strips the
        owner link from them and leaves them in place.
        """
        with self._transaction(write=True) as data:
            stored = data.scheduled_jobs.pop(_key(key), None)
            if stored is None:
                raise NotFoundError(f"scheduled job {key} not found")
            uid = stored.metadata.uid
            for job_key, job in list(data.jobs.items()):
                if not any(ref.uid == uid for ref in job.metadata.owner_references):
                    continue
                self._index_remove(job)
                if propagation == PropagationPolicy.BACKGROUND:
                    del data.jobs[job_key]
                    logger.debug(f"Garbage collected job {job_key}")
                else:
                    job.metadata.owner_references = [
                        ref for ref in job.metadata.owner_references if ref.uid != uid
                    ]
                    job.metadata.resource_version = self._next_version(data)
                    self._index_add(job)
            logger.info(f"Deleted scheduled job {key} ({propagation.value})")

    # Jobs

    async def create_job(self, job: Job) -> Job:
        with self._transaction(write=True) as data:
            key = _key(job.metadata.key)
            if key in data.jobs:
                raise AlreadyExistsError(f"job {key} already exists")
            stored = job.model_copy(deep=True)
            self._stamp_new(data, stored)
            data.jobs[key] = stored
            self._index_add(stored)
            return stored.model_copy(deep=True)

    async def get_job(self, key: NamespacedName) -> Job:
        """Fetch a job.

        Raises:
            NotFoundError: If it does not exist.
        """
        with self._transaction() as data:
            stored = data.jobs.get(_key(key))
            if stored is None:
                raise NotFoundError(f"job {key} not found")
            return stored.model_copy(deep=True)

    async def list_jobs(self, namespace: str, owner_name: str) -> list[Job]:
        with self._transaction() as data:
            index = self._indices[self._settings.owner_index_key]
            names = sorted(index.get((namespace, owner_name), ()))
            return [data.jobs[f"{namespace}/{name}"].model_copy(deep=True) for name in names]

    async def update_job_status(self, job: Job) -> Job:
        """Persist the status of a job, as its executor would.

        Raises:
            NotFoundError: If it no longer exists.
            ConflictError: If its resource version is stale.
        """
        with self._transaction(write=True) as data:
            key = _key(job.metadata.key)
            stored = data.jobs.get(key)
            if stored is None:
                raise NotFoundError(f"job {key} not found")
            self._check_version(key, stored.metadata.resource_version, job.metadata.resource_version)
            stored.status = job.status.model_copy(deep=True)
            stored.metadata.resource_version = self._next_version(data)
            return stored.model_copy(deep=True)

    async def delete_job(
        self,
        job: Job,
        propagation: PropagationPolicy = PropagationPolicy.BACKGROUND,
    ) -> None:
        with self._transaction(write=True) as data:
            key = _key(job.metadata.key)
            stored = data.jobs.pop(key, None)
            if stored is None:
                raise NotFoundError(f"job {key} not found")
            self._index_remove(stored)
            logger.debug(f"Deleted job {key} ({propagation.value})")

    def set_owner_link(self, owner: ScheduledJob, child: Job) -> None:
        set_controller_reference(owner, child)

    def _check_version(self, key: str, stored: int | None, given: int | None) -> None:
        if given is not None and given != stored:
            raise ConflictError(
                f"{key}: the object has been modified (resource version {given} != {stored})"
            )
