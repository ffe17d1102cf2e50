"""Pruning of finished job history."""

import logging
from datetime import datetime, timezone

from cronkeeper.errors import NotFoundError, StoreError
from cronkeeper.store.base import StoreClient, with_timeout
from cronkeeper.types import Job, PropagationPolicy

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _start_time_key(job: Job) -> tuple[bool, datetime]:
    # Jobs that never started sort first, i.e. as the oldest
    start = job.status.start_time
    if start is None:
        return (False, _OLDEST)
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return (True, start)


def jobs_to_prune(jobs: list[Job], limit: int | None) -> list[Job]:
    """Select the jobs that exceed a history limit.

    Args:
        jobs: Finished jobs of one kind (successful or failed).
        limit: Number of jobs to keep, or None to keep all.

    Returns:
        The oldest len(jobs) - limit jobs, oldest first.
    """
    if limit is None or len(jobs) <= limit:
        return []
    ordered = sorted(jobs, key=_start_time_key)
    return ordered[: len(ordered) - limit]


async def prune_history(
    store: StoreClient,
    jobs: list[Job],
    limit: int | None,
    kind: str,
    timeout: float | None = None,
) -> list[Job]:
    """Delete finished jobs beyond the retention limit.

    Deletion is best effort: a job that cannot be deleted is logged and
    left for the next reconcile to pick up.

    Args:
        store: Store client.
        jobs: Finished jobs of one kind.
        limit: Number of jobs to keep, or None to keep all.
        kind: 'successful' or 'failed', for log messages.
        timeout: Timeout for each delete call.

    Returns:
        The jobs that were deleted.
    """
    deleted = []
    for job in jobs_to_prune(jobs, limit):
        try:
            await with_timeout(store.delete_job(job, PropagationPolicy.BACKGROUND), timeout)
        except NotFoundError:
            logger.info(f"Old {kind} job {job.metadata.key} already deleted")
        except StoreError as e:
            logger.error(f"Unable to delete old {kind} job {job.metadata.key}: {e}")
        else:
            logger.info(f"Deleted old {kind} job {job.metadata.key}")
            deleted.append(job)
    return deleted
