"""Type definitions for scheduled jobs and their child jobs.

This module defines the Pydantic models for the declarative objects the
controller reads and writes. Field names are snake_case in Python and
camelCase on the wire, so manifests can be written the familiar way
(``startingDeadlineSeconds``, ``jobTemplate``...).
"""

from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SCHEDULED_JOB_API_VERSION = "cronkeeper.io/v1"
SCHEDULED_JOB_KIND = "ScheduledJob"
JOB_API_VERSION = "batch/v1"
JOB_KIND = "Job"


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NamespacedName(NamedTuple):
    """Identity of a namespaced object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ConcurrencyPolicy(str, Enum):
    """How concurrent runs of the same scheduled job are treated.

    Attributes:
        ALLOW: Runs may overlap.
        FORBID: Skip a run while a previous one is still active.
        REPLACE: Delete active runs before starting a new one.
    """

    ALLOW = "Allow"
    FORBID = "Forbid"
    REPLACE = "Replace"


class PropagationPolicy(str, Enum):
    """How dependents are handled when an owner is deleted."""

    BACKGROUND = "Background"
    ORPHAN = "Orphan"


class JobConditionType(str, Enum):
    """Terminal condition types reported on a job."""

    COMPLETE = "Complete"
    FAILED = "Failed"


class OwnerReference(_Model):
    """Link from a dependent object to its owner."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False


class ObjectReference(_Model):
    """Reference to a specific object, as stored in status lists."""

    api_version: str
    kind: str
    namespace: str
    name: str
    uid: str | None = None


class ObjectMeta(_Model):
    """Metadata common to all stored objects.

    Attributes:
        name: Object name, unique within the namespace.
        namespace: Namespace the object lives in.
        uid: Store-assigned unique identifier.
        resource_version: Store-assigned version for optimistic concurrency.
        creation_timestamp: Time the store accepted the object.
        labels: Arbitrary string labels.
        annotations: Arbitrary string annotations.
        owner_references: Owners of this object.
    """

    name: str
    namespace: str = "default"
    uid: str | None = None
    resource_version: int | None = None
    creation_timestamp: datetime | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)


class TemplateMeta(_Model):
    """Labels and annotations copied onto every job created from a template."""

    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class JobTemplate(_Model):
    """Template for child jobs.

    The spec is opaque to the controller; it is handed to the executor
    untouched.
    """

    metadata: TemplateMeta = Field(default_factory=TemplateMeta)
    spec: dict[str, Any] = Field(default_factory=dict)


class ScheduledJobSpec(_Model):
    """Desired state of a scheduled job.

    Attributes:
        schedule: Cron expression (e.g., '*/5 * * * *').
        starting_deadline_seconds: Deadline for starting a missed run.
        concurrency_policy: How to treat overlapping runs.
        suspend: Stop creating new runs when set.
        job_template: Template for the jobs that are created.
        successful_jobs_history_limit: Finished successful jobs to keep.
        failed_jobs_history_limit: Finished failed jobs to keep.
    """

    schedule: str = Field(..., description="Cron expression")
    starting_deadline_seconds: int | None = Field(
        default=None,
        ge=0,
        description="Seconds after the nominal time a missed run may still start",
    )
    concurrency_policy: ConcurrencyPolicy = Field(
        default=ConcurrencyPolicy.ALLOW,
        description="Allow, Forbid or Replace",
    )
    suspend: bool = Field(
        default=False,
        description="Suspend subsequent runs; already started runs are unaffected",
    )
    job_template: JobTemplate = Field(
        default_factory=JobTemplate,
        description="Template for created jobs",
    )
    successful_jobs_history_limit: int | None = Field(
        default=None,
        ge=0,
        description="Number of successful finished jobs to retain (None keeps all)",
    )
    failed_jobs_history_limit: int | None = Field(
        default=None,
        ge=0,
        description="Number of failed finished jobs to retain (None keeps all)",
    )


class ScheduledJobStatus(_Model):
    """Observed state of a scheduled job.

    Attributes:
        active: References to jobs that have not finished yet.
        last_schedule_time: Most recent nominal time a job was scheduled for.
    """

    active: list[ObjectReference] = Field(default_factory=list)
    last_schedule_time: datetime | None = None


class ScheduledJob(_Model):
    """A cron schedule plus the template of the jobs it creates."""

    api_version: str = SCHEDULED_JOB_API_VERSION
    kind: str = SCHEDULED_JOB_KIND
    metadata: ObjectMeta
    spec: ScheduledJobSpec
    status: ScheduledJobStatus = Field(default_factory=ScheduledJobStatus)


class JobCondition(_Model):
    """A condition reported on a job by its executor."""

    type: JobConditionType
    status: str = "True"
    last_transition_time: datetime | None = None
    reason: str | None = None
    message: str | None = None


class JobStatus(_Model):
    """Observed state of a job, written by the executor."""

    start_time: datetime | None = None
    completion_time: datetime | None = None
    conditions: list[JobCondition] = Field(default_factory=list)


class Job(_Model):
    """A single run created from a scheduled job's template."""

    api_version: str = JOB_API_VERSION
    kind: str = JOB_KIND
    metadata: ObjectMeta
    spec: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = Field(default_factory=JobStatus)

    def reference(self) -> ObjectReference:
        """Build a reference to this job for status lists."""
        return ObjectReference(
            api_version=self.api_version,
            kind=self.kind,
            namespace=self.metadata.namespace,
            name=self.metadata.name,
            uid=self.metadata.uid,
        )
