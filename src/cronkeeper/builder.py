"""Construction of child jobs from a scheduled job's template."""

from datetime import datetime, timezone
from typing import Callable

from cronkeeper.errors import ConstructionError, OwnerReferenceError
from cronkeeper.schedule import format_scheduled_time
from cronkeeper.types import Job, ObjectMeta, ScheduledJob

OwnerLinker = Callable[[ScheduledJob, Job], None]


def job_name_for(scheduled_job_name: str, scheduled_time: datetime) -> str:
    """Deterministic job name for one nominal run of a scheduled job.

    The same run always maps to the same name, which is what lets the store
    reject a second creation attempt for it.
    """
    if scheduled_time.tzinfo is None:
        scheduled_time = scheduled_time.replace(tzinfo=timezone.utc)
    return f"{scheduled_job_name}-{int(scheduled_time.timestamp())}"


def construct_job(
    scheduled_job: ScheduledJob,
    scheduled_time: datetime,
    *,
    annotation: str,
    set_owner_link: OwnerLinker,
) -> Job:
    """Build the job for one nominal run.

    Args:
        scheduled_job: The owning scheduled job.
        scheduled_time: Nominal time of the run.
        annotation: Annotation key that records scheduled_time.
        set_owner_link: Links the job to its owner (usually the store's).

    Returns:
        The job, ready to be created.

    Raises:
        ConstructionError: If the owner link cannot be set.
    """
    template = scheduled_job.spec.job_template

    annotations = dict(template.metadata.annotations)
    annotations[annotation] = format_scheduled_time(scheduled_time)

    job = Job(
        metadata=ObjectMeta(
            name=job_name_for(scheduled_job.metadata.name, scheduled_time),
            namespace=scheduled_job.metadata.namespace,
            labels=dict(template.metadata.labels),
            annotations=annotations,
        ),
        spec=template.model_copy(deep=True).spec,
    )

    try:
        set_owner_link(scheduled_job, job)
    except OwnerReferenceError as e:
        raise ConstructionError(f"unable to set owner of {job.metadata.key}: {e}") from e

    return job
