"""Reconciliation of scheduled jobs into jobs.

This module provides the Reconciler, whose reconcile() is called by a
work queue whenever a scheduled job (or one of its jobs) changes, and
again after the delay it asks for. Every call recomputes everything from
the store, so missed notifications and restarts are harmless.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, TypeVar

from cronkeeper.builder import construct_job
from cronkeeper.classify import classify_jobs
from cronkeeper.clock import Clock, RealClock
from cronkeeper.config import Settings
from cronkeeper.errors import (
    AlreadyExistsError,
    ConstructionError,
    NotFoundError,
    ScheduleError,
)
from cronkeeper.history import prune_history
from cronkeeper.policy import enforce_concurrency_policy
from cronkeeper.schedule import get_next_schedule
from cronkeeper.store.base import StoreClient, with_timeout
from cronkeeper.types import NamespacedName, ScheduledJob

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ReconcileResult:
    """What the work queue should do after a successful reconcile.

    Attributes:
        requeue_after: Delay before reconciling again, or None to wait
            for the next change notification.
    """

    requeue_after: timedelta | None = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


class Reconciler:
    """Drives one scheduled job towards its desired set of jobs.

    Errors that a retry may fix (store failures) are raised so the caller
    can requeue with backoff. Errors that need a spec change are logged
    and end the reconcile without a requeue.

    Example:
        reconciler = Reconciler(store, settings=Settings(), clock=RealClock())
        result = await reconciler.reconcile(NamespacedName("default", "backup"))
    """

    def __init__(
        self,
        store: StoreClient,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            store: Client for scheduled jobs and jobs.
            settings: Controller settings.
            clock: Time source (defaults to the system clock).
        """
        self._store = store
        self._settings = settings or Settings()
        self._clock = clock or RealClock()

    async def _call(self, call: Awaitable[T]) -> T:
        return await with_timeout(call, self._settings.request_timeout_seconds)

    async def reconcile(self, key: NamespacedName) -> ReconcileResult:
        """Reconcile one scheduled job.

        Args:
            key: Namespace and name of the scheduled job.

        Returns:
            When to reconcile again.

        Raises:
            StoreError: If a store call failed; the caller should retry
                with backoff.
        """
        settings = self._settings
        timeout = settings.request_timeout_seconds

        try:
            scheduled_job = await self._call(self._store.get_scheduled_job(key))
        except NotFoundError:
            # Deleted objects still get one last notification
            logger.debug(f"Scheduled job {key} not found, ignoring")
            return ReconcileResult()

        try:
            child_jobs = await self._call(self._store.list_jobs(key.namespace, key.name))
        except Exception as e:
            logger.error(f"Unable to list child jobs of {key}: {e}")
            raise

        jobs = classify_jobs(child_jobs, settings.scheduled_time_annotation)

        scheduled_job.status.last_schedule_time = jobs.most_recent_time
        scheduled_job.status.active = [job.reference() for job in jobs.active]

        logger.debug(
            f"{key}: {len(jobs.active)} active, {len(jobs.successful)} successful, "
            f"{len(jobs.failed)} failed jobs"
        )
        try:
            scheduled_job = await self._call(
                self._store.update_scheduled_job_status(scheduled_job)
            )
        except Exception as e:
            logger.error(f"Unable to update status of {key}: {e}")
            raise

        await prune_history(
            self._store, jobs.failed, scheduled_job.spec.failed_jobs_history_limit,
            "failed", timeout,
        )
        await prune_history(
            self._store, jobs.successful, scheduled_job.spec.successful_jobs_history_limit,
            "successful", timeout,
        )

        if scheduled_job.spec.suspend:
            logger.debug(f"{key} suspended, skipping")
            return ReconcileResult()

        now = self._clock.now()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        try:
            schedule = get_next_schedule(
                scheduled_job.spec.schedule,
                self._earliest_bound(scheduled_job, now),
                now,
                scheduled_job.spec.starting_deadline_seconds,
                settings.max_missed_starts,
            )
        except ScheduleError as e:
            # Retrying won't help until the schedule is fixed
            logger.error(f"Unable to figure out schedule of {key}: {e}")
            return ReconcileResult()

        scheduled_result = ReconcileResult(requeue_after=schedule.time_until_next_run(now))

        missed_run = schedule.missed_run
        if missed_run is None:
            logger.debug(f"{key}: no missed runs, sleeping until {schedule.next_run}")
            return scheduled_result

        deadline = scheduled_job.spec.starting_deadline_seconds
        if deadline is not None and missed_run + timedelta(seconds=deadline) < now:
            logger.info(
                f"{key}: missed starting deadline for run at {missed_run}, "
                f"sleeping until {schedule.next_run}"
            )
            return scheduled_result

        proceed = await enforce_concurrency_policy(
            self._store, scheduled_job.spec.concurrency_policy, jobs.active, timeout
        )
        if not proceed:
            logger.info(
                f"{key}: concurrency policy forbids run at {missed_run} "
                f"({len(jobs.active)} active)"
            )
            return scheduled_result

        try:
            job = construct_job(
                scheduled_job,
                missed_run,
                annotation=settings.scheduled_time_annotation,
                set_owner_link=self._store.set_owner_link,
            )
        except ConstructionError as e:
            # A broken template won't fix itself before the next tick
            logger.error(f"Unable to construct job from template of {key}: {e}")
            return scheduled_result

        try:
            await self._call(self._store.create_job(job))
        except AlreadyExistsError:
            logger.info(f"{key}: job {job.metadata.name} for run at {missed_run} already exists")
            return scheduled_result
        except Exception as e:
            logger.error(f"Unable to create job {job.metadata.name} for {key}: {e}")
            raise

        logger.info(f"{key}: created job {job.metadata.name} for run at {missed_run}")
        return scheduled_result

    def _earliest_bound(self, scheduled_job: ScheduledJob, now: datetime) -> datetime:
        if scheduled_job.status.last_schedule_time is not None:
            return scheduled_job.status.last_schedule_time
        if scheduled_job.metadata.creation_timestamp is not None:
            return scheduled_job.metadata.creation_timestamp
        return now
