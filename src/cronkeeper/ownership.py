"""Owner references between scheduled jobs and their jobs."""

from cronkeeper.errors import OwnerReferenceError
from cronkeeper.types import Job, OwnerReference, ScheduledJob


def get_controller_of(job: Job) -> OwnerReference | None:
    """Get the controlling owner reference of a job, if any."""
    for ref in job.metadata.owner_references:
        if ref.controller:
            return ref
    return None


def set_controller_reference(owner: ScheduledJob, child: Job) -> None:
    """Make owner the controller of child.

    Raises:
        OwnerReferenceError: If the owner has not been persisted yet or the
            child is already controlled by a different object.
    """
    if not owner.metadata.uid:
        raise OwnerReferenceError(
            f"owner {owner.kind} {owner.metadata.key} has no uid; it must be stored first"
        )

    existing = get_controller_of(child)
    if existing is not None and existing.uid != owner.metadata.uid:
        raise OwnerReferenceError(
            f"{child.kind} {child.metadata.key} is already controlled by "
            f"{existing.kind} {existing.name}"
        )

    ref = OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )
    child.metadata.owner_references = [
        r for r in child.metadata.owner_references if r.uid != owner.metadata.uid
    ]
    child.metadata.owner_references.append(ref)


def owner_index_value(job: Job, api_version: str, kind: str) -> list[str]:
    """Index function mapping a job to the name of its scheduled job owner.

    Jobs without a controller, or controlled by another type, are not
    indexed.
    """
    owner = get_controller_of(job)
    if owner is None:
        return []
    if owner.api_version != api_version or owner.kind != kind:
        return []
    return [owner.name]
