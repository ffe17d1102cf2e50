"""Error types for the scheduled job controller.

The reconciler classifies failures by type:
- StoreError and subclasses: propagated so the delivery layer retries
  with backoff (NotFoundError on the initial fetch is the exception).
- ScheduleError: the object is paused until its schedule is corrected.
- ConstructionError: the run is skipped until the next nominal tick.
- AnnotationParseError: logged per job, never raised out of a reconcile.
"""


class CronkeeperError(Exception):
    """Base exception for cronkeeper."""
    pass


class StoreError(CronkeeperError):
    """A call against the object store failed."""
    pass


class NotFoundError(StoreError):
    """The requested object does not exist."""
    pass


class AlreadyExistsError(StoreError):
    """An object with the same namespace and name already exists."""
    pass


class ConflictError(StoreError):
    """The write was based on a stale resource version."""
    pass


class ReplacePolicyDeleteError(StoreError):
    """An active job could not be deleted under the Replace policy."""
    pass


class ScheduleError(CronkeeperError):
    """Base class for errors computing a schedule."""
    pass


class ScheduleParseError(ScheduleError):
    """The cron expression could not be parsed."""
    pass


class TooManyMissedRunsError(ScheduleError):
    """More missed start times than the controller is willing to enumerate."""

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Too many missed start times (> {limit}). Set or decrease "
            f"starting_deadline_seconds or check clock skew."
        )
        self.limit = limit


class ConstructionError(CronkeeperError):
    """A child job could not be built from the template."""
    pass


class OwnerReferenceError(CronkeeperError):
    """An owner link could not be set on a child object."""
    pass


class AnnotationParseError(CronkeeperError):
    """A job's scheduled-time annotation is not a valid timestamp."""
    pass


class ManifestError(CronkeeperError):
    """A manifest file could not be loaded or validated."""
    pass
