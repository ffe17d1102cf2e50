"""Configuration management for cronkeeper."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cronkeeper.types import SCHEDULED_JOB_API_VERSION, SCHEDULED_JOB_KIND

CRONKEEPER_DIR = Path.home() / ".cronkeeper"


class Settings(BaseSettings):
    """Controller settings loaded from environment variables.

    An instance is built once by the embedding application and passed to
    the reconciler and the store; nothing reads a module-level instance.
    """

    model_config = SettingsConfigDict(
        env_prefix="CRONKEEPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Owner type whose children are tracked
    owner_api_version: str = Field(
        default=SCHEDULED_JOB_API_VERSION,
        description="API version of the owning scheduled job type",
    )
    owner_kind: str = Field(
        default=SCHEDULED_JOB_KIND,
        description="Kind of the owning scheduled job type",
    )
    owner_index_key: str = Field(
        default=".metadata.controller",
        description="Name of the store index mapping jobs to their owner",
    )

    # Scheduling
    scheduled_time_annotation: str = Field(
        default="cronkeeper.io/scheduled-at",
        description="Annotation recording the nominal run time of a job",
    )
    max_missed_starts: int = Field(
        default=100,
        ge=1,
        description="Missed start times enumerated before giving up",
    )

    # Store access
    request_timeout_seconds: float | None = Field(
        default=30.0,
        description="Timeout for each store call (None disables it)",
    )
    store_path: Path | None = Field(
        default=None,
        description="Path of the JSON file store (default: ~/.cronkeeper/store.json)",
    )

    log_level: str = Field(
        default="INFO",
        description="Log level used by setup_logging",
    )

    def get_store_path(self) -> Path:
        """Get the file store path, using default if not set."""
        if self.store_path:
            return self.store_path
        return CRONKEEPER_DIR / "store.json"
