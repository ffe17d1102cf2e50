"""Loading scheduled jobs from YAML manifests.

A manifest file holds one or more YAML documents, each describing a
scheduled job:

    apiVersion: cronkeeper.io/v1
    kind: ScheduledJob
    metadata:
      name: nightly-backup
    spec:
      schedule: "0 3 * * *"
      concurrencyPolicy: Forbid
      jobTemplate:
        spec:
          image: backup:latest
"""

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from cronkeeper.errors import AlreadyExistsError, ManifestError
from cronkeeper.schedule import validate_cron_expression
from cronkeeper.store.document import DocumentStore
from cronkeeper.types import SCHEDULED_JOB_KIND, ScheduledJob

logger = logging.getLogger(__name__)


def load_manifests(path: str | Path) -> list[ScheduledJob]:
    """Load scheduled jobs from a YAML manifest file.

    Args:
        path: Path to the manifest.

    Returns:
        The scheduled jobs, in file order.

    Raises:
        ManifestError: If the file cannot be read or a document is invalid.
    """
    path = Path(path)
    try:
        documents = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
    except (OSError, yaml.YAMLError) as e:
        raise ManifestError(f"Unable to read manifest {path}: {e}") from e

    scheduled_jobs = []
    for index, document in enumerate(documents):
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ManifestError(f"{path}: document {index} is not a mapping")
        kind = document.get("kind", SCHEDULED_JOB_KIND)
        if kind != SCHEDULED_JOB_KIND:
            logger.warning(f"{path}: skipping document {index} of kind {kind}")
            continue
        try:
            scheduled_job = ScheduledJob.model_validate(document)
        except ValidationError as e:
            raise ManifestError(f"{path}: document {index} is invalid: {e}") from e
        if not validate_cron_expression(scheduled_job.spec.schedule):
            # Accepted anyway; the reconciler pauses it until it is fixed
            logger.warning(
                f"{path}: {scheduled_job.metadata.key} has an invalid schedule "
                f"{scheduled_job.spec.schedule!r}"
            )
        scheduled_jobs.append(scheduled_job)

    return scheduled_jobs


async def apply_manifests(store: DocumentStore, path: str | Path) -> list[ScheduledJob]:
    """Create the scheduled jobs of a manifest that are not stored yet.

    Args:
        store: Store to create them in.
        path: Path to the manifest.

    Returns:
        The scheduled jobs that were created.
    """
    created = []
    for scheduled_job in load_manifests(path):
        try:
            created.append(await store.create_scheduled_job(scheduled_job))
        except AlreadyExistsError:
            logger.info(f"Scheduled job {scheduled_job.metadata.key} already exists, skipping")
    return created
