"""JSON file persistence for scheduled jobs and jobs.

This module keeps the whole store in one JSON file, with file locking
so that several processes can share it.
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from filelock import FileLock

from cronkeeper.clock import Clock
from cronkeeper.config import Settings
from cronkeeper.store.document import STORAGE_VERSION, DocumentStore, StoreData

logger = logging.getLogger(__name__)


class FileStore(DocumentStore):
    """JSON file-based store.

    Every operation takes the file lock, reads the document, and writes
    it back if the operation changed anything.

    Example:
        store = FileStore("/path/to/store.json")
        scheduled_job = await store.get_scheduled_job(NamespacedName("default", "backup"))
    """

    def __init__(
        self,
        path: str | Path | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
        create_if_missing: bool = True,
    ) -> None:
        """Initialize the file store.

        Args:
            path: Path to the JSON file (default: settings.get_store_path()).
            settings: Controller settings.
            clock: Clock used for creation timestamps.
            create_if_missing: Create file if it doesn't exist.
        """
        settings = settings or Settings()
        self._path = Path(path) if path else settings.get_store_path()
        self._lock = FileLock(str(self._path.with_suffix(".lock")))
        self._create_if_missing = create_if_missing
        super().__init__(settings=settings, clock=clock)

    @property
    def path(self) -> Path:
        """Get the storage file path."""
        return self._path

    @contextmanager
    def _transaction(self, write: bool = False) -> Iterator[StoreData]:
        with self._lock:
            data = self._read_data()
            self._rebuild_indices(data)
            yield data
            if write:
                self._write_data(data)

    def _ensure_file_exists(self) -> None:
        """Ensure the storage file and parent directory exist."""
        if not self._path.exists():
            if self._create_if_missing:
                self._write_data(StoreData())
                logger.info(f"Created store file: {self._path}")
            else:
                raise FileNotFoundError(f"Store file not found: {self._path}")

    def _read_data(self) -> StoreData:
        """Read and parse the storage file.

        Raises:
            FileNotFoundError: If file doesn't exist and create_if_missing is False.
            json.JSONDecodeError: If file contains invalid JSON.
        """
        self._ensure_file_exists()

        content = self._path.read_text(encoding="utf-8")
        if not content.strip():
            return StoreData()

        data = json.loads(content)

        version = data.get("version", 1)
        if version != STORAGE_VERSION:
            data = self._migrate_data(data, version)

        return StoreData.model_validate(data)

    def _write_data(self, data: StoreData) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(data.model_dump(mode="json", by_alias=True), indent=2)

        # Readers only ever see a complete file
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _migrate_data(self, data: dict[str, Any], from_version: int) -> dict[str, Any]:
        """Migrate data from an older version.

        Args:
            data: Raw data from file.
            from_version: Version of the stored data.

        Returns:
            Migrated data at current version.
        """
        # Currently no migrations needed
        logger.info(f"Migrating store from version {from_version} to {STORAGE_VERSION}")
        data["version"] = STORAGE_VERSION
        return data
