"""Concurrency policy enforcement."""

import logging

from cronkeeper.errors import NotFoundError, ReplacePolicyDeleteError, StoreError
from cronkeeper.store.base import StoreClient, with_timeout
from cronkeeper.types import ConcurrencyPolicy, Job, PropagationPolicy

logger = logging.getLogger(__name__)


async def enforce_concurrency_policy(
    store: StoreClient,
    policy: ConcurrencyPolicy,
    active: list[Job],
    timeout: float | None = None,
) -> bool:
    """Apply a concurrency policy before starting a new run.

    Args:
        store: Store client.
        policy: The scheduled job's concurrency policy.
        active: Jobs of the scheduled job that are still running.
        timeout: Timeout for each delete call.

    Returns:
        True if a new run may be started, False if it must be skipped.

    Raises:
        ReplacePolicyDeleteError: If an active job could not be deleted
            under the Replace policy.
    """
    if policy == ConcurrencyPolicy.FORBID and active:
        logger.debug(f"Concurrency policy blocks concurrent runs ({len(active)} active)")
        return False

    if policy == ConcurrencyPolicy.REPLACE:
        for job in active:
            try:
                await with_timeout(store.delete_job(job, PropagationPolicy.BACKGROUND), timeout)
            except NotFoundError:
                # Already gone is what Replace wants
                continue
            except StoreError as e:
                logger.error(f"Unable to delete active job {job.metadata.key}: {e}")
                raise ReplacePolicyDeleteError(
                    f"unable to delete active job {job.metadata.key}: {e}"
                ) from e
            logger.info(f"Deleted active job {job.metadata.key} to replace it")

    return True
