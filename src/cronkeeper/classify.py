"""Classification of child jobs by lifecycle state."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from cronkeeper.errors import AnnotationParseError
from cronkeeper.schedule import parse_scheduled_time
from cronkeeper.types import Job, JobConditionType

logger = logging.getLogger(__name__)


@dataclass
class JobClassification:
    """Child jobs of one scheduled job, partitioned by finish state.

    Attributes:
        active: Jobs with no terminal condition yet.
        successful: Jobs that completed.
        failed: Jobs that failed.
        most_recent_time: Latest scheduled time recovered from any job.
    """

    active: list[Job] = field(default_factory=list)
    successful: list[Job] = field(default_factory=list)
    failed: list[Job] = field(default_factory=list)
    most_recent_time: datetime | None = None


def is_job_finished(job: Job) -> tuple[bool, JobConditionType | None]:
    """Check whether a job has reached a terminal condition.

    Returns:
        (True, condition type) for a finished job, (False, None) otherwise.
    """
    for condition in job.status.conditions:
        if condition.type in (JobConditionType.COMPLETE, JobConditionType.FAILED) \
                and condition.status == "True":
            return True, condition.type
    return False, None


def get_scheduled_time_for_job(job: Job, annotation: str) -> datetime | None:
    """Recover the nominal run time a job was created for.

    Args:
        job: The job to inspect.
        annotation: Annotation key holding the scheduled time.

    Returns:
        The scheduled time, or None if the job carries no annotation.

    Raises:
        AnnotationParseError: If the annotation is present but unparsable.
    """
    raw = job.metadata.annotations.get(annotation)
    if not raw:
        return None
    try:
        return parse_scheduled_time(raw)
    except ValueError as e:
        raise AnnotationParseError(
            f"job {job.metadata.key}: invalid {annotation} annotation {raw!r}"
        ) from e


def classify_jobs(jobs: Iterable[Job], annotation: str) -> JobClassification:
    """Partition jobs into active, successful and failed.

    A job whose annotation cannot be parsed is still classified; it only
    drops out of the most recent time computation.
    """
    result = JobClassification()

    for job in jobs:
        _, finished_type = is_job_finished(job)
        if finished_type is None:
            result.active.append(job)
        elif finished_type == JobConditionType.FAILED:
            result.failed.append(job)
        else:
            result.successful.append(job)

        try:
            scheduled_time = get_scheduled_time_for_job(job, annotation)
        except AnnotationParseError as e:
            logger.error(f"Unable to parse schedule time for child job: {e}")
            continue
        if scheduled_time is not None and (
            result.most_recent_time is None or result.most_recent_time < scheduled_time
        ):
            result.most_recent_time = scheduled_time

    return result
