"""Store client interface used by the reconciler.

The reconciler only talks to the store through StoreClient. Every call
is a coroutine so that a networked implementation can be cancelled or
timed out by the caller.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, TypeVar

from cronkeeper.errors import StoreError
from cronkeeper.types import Job, NamespacedName, PropagationPolicy, ScheduledJob

T = TypeVar("T")


class StoreClient(ABC):
    """Access to scheduled jobs and their child jobs."""

    @abstractmethod
    async def get_scheduled_job(self, key: NamespacedName) -> ScheduledJob:
        """Fetch a scheduled job.

        Raises:
            NotFoundError: If it does not exist.
        """

    @abstractmethod
    async def list_jobs(self, namespace: str, owner_name: str) -> list[Job]:
        """List the jobs in a namespace controlled by the named scheduled job.

        Uses the owner index rather than scanning the namespace.
        """

    @abstractmethod
    async def create_job(self, job: Job) -> Job:
        """Create a job.

        Raises:
            AlreadyExistsError: If a job with that name exists.
        """

    @abstractmethod
    async def update_scheduled_job_status(self, scheduled_job: ScheduledJob) -> ScheduledJob:
        """Persist the status of a scheduled job.

        Raises:
            NotFoundError: If it no longer exists.
            ConflictError: If its resource version is stale.
        """

    @abstractmethod
    async def delete_job(
        self,
        job: Job,
        propagation: PropagationPolicy = PropagationPolicy.BACKGROUND,
    ) -> None:
        """Delete a job.

        Raises:
            NotFoundError: If it is already gone.
        """

    @abstractmethod
    def set_owner_link(self, owner: ScheduledJob, child: Job) -> None:
        """Mark owner as the controller of child so owner-indexed listing finds it.

        Raises:
            OwnerReferenceError: If the link cannot be set.
        """


async def with_timeout(call: Awaitable[T], timeout: float | None) -> T:
    """Await a store call, turning a timeout into a StoreError.

    Args:
        call: The pending store call.
        timeout: Seconds to wait, or None to wait forever.

    Returns:
        The call's result.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoreError(f"Store call timed out after {timeout} seconds") from e
