"""cronkeeper - a level-triggered controller turning cron schedules into jobs.

Example:
    from cronkeeper import InMemoryStore, NamespacedName, Reconciler

    store = InMemoryStore()
    reconciler = Reconciler(store)
    result = await reconciler.reconcile(NamespacedName("default", "backup"))
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("cronkeeper")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from cronkeeper.clock import Clock, FakeClock, RealClock
from cronkeeper.config import Settings
from cronkeeper.reconciler import ReconcileResult, Reconciler
from cronkeeper.store import FileStore, InMemoryStore, StoreClient
from cronkeeper.types import (
    ConcurrencyPolicy,
    Job,
    JobTemplate,
    NamespacedName,
    ObjectMeta,
    ScheduledJob,
    ScheduledJobSpec,
    ScheduledJobStatus,
)

__all__ = [
    "Reconciler",
    "ReconcileResult",
    "Settings",
    "Clock",
    "RealClock",
    "FakeClock",
    "StoreClient",
    "InMemoryStore",
    "FileStore",
    "ConcurrencyPolicy",
    "Job",
    "JobTemplate",
    "NamespacedName",
    "ObjectMeta",
    "ScheduledJob",
    "ScheduledJobSpec",
    "ScheduledJobStatus",
]
