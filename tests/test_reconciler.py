"""Tests for the reconciler."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from cronkeeper.config import Settings
from cronkeeper.errors import OwnerReferenceError, ReplacePolicyDeleteError, StoreError
from cronkeeper.reconciler import ReconcileResult, Reconciler
from cronkeeper.schedule import ScheduleResult, format_scheduled_time
from cronkeeper.store.memory import InMemoryStore
from cronkeeper.types import (
    ConcurrencyPolicy,
    Job,
    JobCondition,
    JobConditionType,
    JobStatus,
    NamespacedName,
    ObjectMeta,
    ScheduledJob,
    ScheduledJobSpec,
)

KEY = NamespacedName("default", "backup")
CREATED = datetime(2024, 1, 1, 12, 0, 30, tzinfo=timezone.utc)
ANNOTATION = "cronkeeper.io/scheduled-at"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _create_scheduled_job(store: InMemoryStore, **spec) -> ScheduledJob:
    spec.setdefault("schedule", "* * * * *")
    return await store.create_scheduled_job(ScheduledJob(
        metadata=ObjectMeta(name=KEY.name, namespace=KEY.namespace, creation_timestamp=CREATED),
        spec=ScheduledJobSpec(**spec),
    ))


async def _create_child(
    store: InMemoryStore,
    owner: ScheduledJob,
    scheduled: datetime,
    condition: JobConditionType | None = None,
) -> Job:
    job = Job(
        metadata=ObjectMeta(
            name=f"{owner.metadata.name}-{int(scheduled.timestamp())}",
            namespace=owner.metadata.namespace,
            annotations={ANNOTATION: format_scheduled_time(scheduled)},
        ),
        status=JobStatus(
            start_time=scheduled,
            conditions=[JobCondition(type=condition)] if condition else [],
        ),
    )
    store.set_owner_link(owner, job)
    return await store.create_job(job)


def _minute(minute: int) -> datetime:
    return datetime(2024, 1, 1, 12, minute, tzinfo=timezone.utc)


class _NaiveClock:
    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now


@pytest.fixture
def reconciler(store, settings, clock) -> Reconciler:
    return Reconciler(store, settings=settings, clock=clock)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestReconcile:
    @pytest.mark.asyncio
    async def test_missing_scheduled_job(self, reconciler) -> None:
        result = await reconciler.reconcile(NamespacedName("default", "gone"))
        assert result == ReconcileResult()
        assert not result.requeue

    @pytest.mark.asyncio
    async def test_creates_job_for_missed_run(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store)
        clock.set(datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc))

        result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        [job] = await store.list_jobs("default", "backup")
        assert job.metadata.name == f"backup-{int(_minute(1).timestamp())}"
        assert job.metadata.annotations[ANNOTATION] == "2024-01-01T12:01:00Z"

    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store)
        clock.set(datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc))

        await reconciler.reconcile(KEY)
        result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        jobs = await store.list_jobs("default", "backup")
        assert len(jobs) == 1

        scheduled_job = await store.get_scheduled_job(KEY)
        assert scheduled_job.status.last_schedule_time == _minute(1)
        assert [ref.name for ref in scheduled_job.status.active] == [jobs[0].metadata.name]

    @pytest.mark.asyncio
    async def test_existing_job_counts_as_created(self, store, reconciler, clock) -> None:
        """A create rejected as a duplicate is a harmless retry."""
        await _create_scheduled_job(store)
        clock.set(datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc))
        # Same name, but not linked to the owner, so the owner index misses it
        await store.create_job(Job(metadata=ObjectMeta(
            name=f"backup-{int(_minute(1).timestamp())}",
        )))

        result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        assert await store.list_jobs("default", "backup") == []

    @pytest.mark.asyncio
    async def test_nothing_due(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store, schedule="0 * * * *")
        clock.set(datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc))

        result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(minutes=30)
        assert await store.list_jobs("default", "backup") == []

    @pytest.mark.asyncio
    async def test_status_tracks_active_jobs_only(self, store, reconciler, clock) -> None:
        owner = await _create_scheduled_job(store, schedule="0 * * * *")
        running = await _create_child(store, owner, _minute(0))
        await _create_child(store, owner, _minute(0) - timedelta(hours=1), JobConditionType.COMPLETE)
        clock.set(datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc))

        await reconciler.reconcile(KEY)

        status = (await store.get_scheduled_job(KEY)).status
        assert [ref.name for ref in status.active] == [running.metadata.name]
        assert status.active[0].uid == running.metadata.uid
        assert status.last_schedule_time == _minute(0)

    @pytest.mark.asyncio
    async def test_stale_active_entries_dropped(self, store, reconciler, clock) -> None:
        owner = await _create_scheduled_job(store, schedule="0 * * * *")
        job = await _create_child(store, owner, _minute(0))
        clock.set(datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc))
        await reconciler.reconcile(KEY)

        job.status.conditions = [JobCondition(type=JobConditionType.COMPLETE)]
        await store.update_job_status(job)
        await reconciler.reconcile(KEY)

        status = (await store.get_scheduled_job(KEY)).status
        assert status.active == []
        assert status.last_schedule_time == _minute(0)

    @pytest.mark.asyncio
    async def test_suspended(self, store, reconciler, clock) -> None:
        """Suspended: status still reflects active jobs, nothing is created."""
        owner = await _create_scheduled_job(store, suspend=True)
        await _create_child(store, owner, _minute(0))
        await _create_child(store, owner, _minute(1))
        clock.set(datetime(2024, 1, 1, 12, 5, 10, tzinfo=timezone.utc))

        with patch("cronkeeper.reconciler.construct_job") as mock_construct:
            result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()
        mock_construct.assert_not_called()
        status = (await store.get_scheduled_job(KEY)).status
        assert len(status.active) == 2
        assert len(await store.list_jobs("default", "backup")) == 2

    @pytest.mark.asyncio
    async def test_prunes_failed_history(self, store, reconciler, clock) -> None:
        owner = await _create_scheduled_job(store, schedule="0 * * * *", failed_jobs_history_limit=1)
        for hours in (3, 2, 1):
            await _create_child(store, owner, _minute(0) - timedelta(hours=hours),
                                JobConditionType.FAILED)
        clock.set(datetime(2024, 1, 1, 11, 30, tzinfo=timezone.utc))

        await reconciler.reconcile(KEY)

        [kept] = await store.list_jobs("default", "backup")
        assert kept.metadata.annotations[ANNOTATION] == "2024-01-01T11:00:00Z"

    @pytest.mark.asyncio
    async def test_prune_failure_does_not_block(self, store, reconciler, clock) -> None:
        owner = await _create_scheduled_job(store, successful_jobs_history_limit=0)
        await _create_child(store, owner, _minute(0), JobConditionType.COMPLETE)
        clock.set(datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc))

        async def failing_delete(job, propagation=None):
            raise StoreError("unavailable")

        with patch.object(store, "delete_job", side_effect=failing_delete):
            result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        names = {j.metadata.name for j in await store.list_jobs("default", "backup")}
        assert f"backup-{int(_minute(1).timestamp())}" in names
        assert len(names) == 2

    @pytest.mark.asyncio
    async def test_forbid_skips_while_active(self, store, reconciler, clock) -> None:
        owner = await _create_scheduled_job(store, concurrency_policy=ConcurrencyPolicy.FORBID)
        await _create_child(store, owner, _minute(0))
        clock.set(datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc))

        with patch("cronkeeper.reconciler.construct_job") as mock_construct:
            result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        mock_construct.assert_not_called()
        assert len(await store.list_jobs("default", "backup")) == 1

    @pytest.mark.asyncio
    async def test_replace_deletes_active_before_creating(self, store, reconciler, clock) -> None:
        owner = await _create_scheduled_job(store, concurrency_policy=ConcurrencyPolicy.REPLACE)
        old = await _create_child(store, owner, _minute(0))
        clock.set(datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc))

        result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        [job] = await store.list_jobs("default", "backup")
        assert job.metadata.name != old.metadata.name
        assert job.metadata.annotations[ANNOTATION] == "2024-01-01T12:01:00Z"

    @pytest.mark.asyncio
    async def test_replace_delete_failure_propagates(self, store, reconciler, clock) -> None:
        owner = await _create_scheduled_job(store, concurrency_policy=ConcurrencyPolicy.REPLACE)
        await _create_child(store, owner, _minute(0))
        clock.set(datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc))

        with patch.object(store, "delete_job", new=AsyncMock(side_effect=StoreError("boom"))), \
             patch("cronkeeper.reconciler.construct_job") as mock_construct:
            with pytest.raises(ReplacePolicyDeleteError):
                await reconciler.reconcile(KEY)

        mock_construct.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_schedule_pauses(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store, schedule="every minute please")
        clock.set(datetime(2024, 1, 1, 12, 5, tzinfo=timezone.utc))

        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()
        assert await store.list_jobs("default", "backup") == []

    @pytest.mark.asyncio
    async def test_schedule_that_never_fires_pauses(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store, schedule="0 0 30 2 *")
        clock.set(datetime(2024, 1, 1, 12, 5, tzinfo=timezone.utc))

        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()
        assert await store.list_jobs("default", "backup") == []

    @pytest.mark.asyncio
    async def test_too_many_missed_runs_pauses(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store)
        clock.set(CREATED + timedelta(days=2))

        result = await reconciler.reconcile(KEY)

        assert result == ReconcileResult()
        assert await store.list_jobs("default", "backup") == []

    @pytest.mark.asyncio
    async def test_deadline_bounds_backlog(self, store, reconciler, clock) -> None:
        """With a deadline, a long outage starts only the latest run."""
        await _create_scheduled_job(store, starting_deadline_seconds=60)
        clock.set(CREATED + timedelta(days=2, seconds=15))

        result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=15)
        [job] = await store.list_jobs("default", "backup")
        assert job.metadata.annotations[ANNOTATION] == "2024-01-03T12:00:00Z"

    @pytest.mark.asyncio
    async def test_deadline_passed_skips_run(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store, schedule="0 * * * *", starting_deadline_seconds=30)
        clock.set(datetime(2024, 1, 1, 13, 1, tzinfo=timezone.utc))

        result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(minutes=59)
        assert await store.list_jobs("default", "backup") == []

    @pytest.mark.asyncio
    async def test_run_exactly_at_deadline_is_started(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store, starting_deadline_seconds=60)
        now = datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc)
        clock.set(now)
        at_deadline = ScheduleResult(missed_run=now - timedelta(seconds=60), next_run=_minute(2))

        with patch("cronkeeper.reconciler.get_next_schedule", return_value=at_deadline):
            result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        [job] = await store.list_jobs("default", "backup")
        assert job.metadata.annotations[ANNOTATION] == "2024-01-01T12:00:10Z"

    @pytest.mark.asyncio
    async def test_run_just_past_deadline_is_skipped(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store, starting_deadline_seconds=60)
        now = datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc)
        clock.set(now)
        too_late = ScheduleResult(missed_run=now - timedelta(seconds=61), next_run=_minute(2))

        with patch("cronkeeper.reconciler.get_next_schedule", return_value=too_late):
            result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        assert await store.list_jobs("default", "backup") == []

    @pytest.mark.asyncio
    async def test_naive_clock_is_treated_as_utc(self, store, settings) -> None:
        await _create_scheduled_job(store, starting_deadline_seconds=60)
        clock = _NaiveClock(datetime(2024, 1, 1, 12, 1, 10))
        reconciler = Reconciler(store, settings=settings, clock=clock)

        result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        [job] = await store.list_jobs("default", "backup")
        assert job.metadata.annotations[ANNOTATION] == "2024-01-01T12:01:00Z"

    @pytest.mark.asyncio
    async def test_construction_failure_waits_for_next_tick(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store)
        clock.set(datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc))

        with patch.object(store, "set_owner_link", side_effect=OwnerReferenceError("no type")):
            result = await reconciler.reconcile(KEY)

        assert result.requeue_after == timedelta(seconds=50)
        assert await store.list_jobs("default", "backup") == []

    @pytest.mark.asyncio
    async def test_list_failure_propagates(self, store, reconciler) -> None:
        await _create_scheduled_job(store)

        with patch.object(store, "list_jobs", new=AsyncMock(side_effect=StoreError("down"))):
            with pytest.raises(StoreError):
                await reconciler.reconcile(KEY)

    @pytest.mark.asyncio
    async def test_status_update_failure_propagates(self, store, reconciler) -> None:
        await _create_scheduled_job(store)

        with patch.object(store, "update_scheduled_job_status",
                          new=AsyncMock(side_effect=StoreError("conflict"))):
            with pytest.raises(StoreError):
                await reconciler.reconcile(KEY)

    @pytest.mark.asyncio
    async def test_create_failure_propagates(self, store, reconciler, clock) -> None:
        await _create_scheduled_job(store)
        clock.set(datetime(2024, 1, 1, 12, 1, 10, tzinfo=timezone.utc))

        with patch.object(store, "create_job", new=AsyncMock(side_effect=StoreError("quota"))):
            with pytest.raises(StoreError):
                await reconciler.reconcile(KEY)

    @pytest.mark.asyncio
    async def test_store_timeout(self, clock) -> None:
        settings = Settings(_env_file=None, request_timeout_seconds=0.01)
        store = InMemoryStore(settings=settings, clock=clock)
        await _create_scheduled_job(store)

        async def slow_list(namespace, owner_name):
            await asyncio.sleep(1)
            return []

        reconciler = Reconciler(store, settings=settings, clock=clock)
        with patch.object(store, "list_jobs", side_effect=slow_list):
            with pytest.raises(StoreError, match="timed out"):
                await reconciler.reconcile(KEY)

    @pytest.mark.asyncio
    async def test_replay_over_several_ticks(self, store, reconciler, clock) -> None:
        """Each tick creates exactly one job; lastScheduleTime never goes back."""
        await _create_scheduled_job(store)
        seen = []

        for minute in range(1, 4):
            clock.set(_minute(minute) + timedelta(seconds=5))
            await reconciler.reconcile(KEY)
            status = (await store.get_scheduled_job(KEY)).status
            if status.last_schedule_time is not None:
                seen.append(status.last_schedule_time)

        jobs = await store.list_jobs("default", "backup")
        assert len(jobs) == 3
        assert seen == sorted(seen)
