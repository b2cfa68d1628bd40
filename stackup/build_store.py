"""
BuildStore - Persist BuildRecords between orchestrator runs.

The build cache is process-wide state with an explicit lifecycle:
- Initialized from on-disk records at startup
- Updated after every successful build
- Never implicitly cleared ("down" does not invalidate it)

Storage backends:
- In-memory (for testing)
- File-based (one JSON file per service)
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from stackup.schemas import BuildRecord

logger = logging.getLogger(__name__)


class BuildStore(ABC):
    """
    Abstract base class for build record storage.

    Implementations must be safe to call from concurrent service
    pipelines; each pipeline only touches its own service's record.
    """

    @abstractmethod
    def get(self, service: str) -> Optional[BuildRecord]:
        """
        Retrieve the build record for a service.

        Args:
            service: Service name

        Returns:
            The BuildRecord if one exists, None otherwise
        """
        pass

    @abstractmethod
    def put(self, record: BuildRecord) -> None:
        """
        Store or replace the build record for record.service.

        Args:
            record: The BuildRecord to store
        """
        pass

    @abstractmethod
    def invalidate(self, service: str) -> bool:
        """
        Drop the record for a service.

        Returns:
            True if a record was removed
        """
        pass

    @abstractmethod
    def all(self) -> dict[str, BuildRecord]:
        """Return every stored record keyed by service name."""
        pass


class InMemoryBuildStore(BuildStore):
    """
    In-memory implementation of BuildStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self, records: Optional[dict[str, BuildRecord]] = None):
        self._records: dict[str, BuildRecord] = dict(records or {})
        self._lock = threading.Lock()

    def get(self, service: str) -> Optional[BuildRecord]:
        with self._lock:
            return self._records.get(service)

    def put(self, record: BuildRecord) -> None:
        with self._lock:
            self._records[record.service] = record

    def invalidate(self, service: str) -> bool:
        with self._lock:
            return self._records.pop(service, None) is not None

    def all(self) -> dict[str, BuildRecord]:
        with self._lock:
            return dict(self._records)

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        with self._lock:
            self._records.clear()


class FileBuildStore(BuildStore):
    """
    File-based implementation of BuildStore.

    Records are loaded once at construction and written through on
    every update:
        store_dir/
            builds/
                {service}.json
    """

    def __init__(self, store_dir: Path | str):
        self._store_dir = Path(store_dir)
        self._builds_dir = self._store_dir / "builds"
        self._builds_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._records = self._load_all()

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def _path_for(self, service: str) -> Path:
        return self._builds_dir / f"{service}.json"

    def _load_all(self) -> dict[str, BuildRecord]:
        records: dict[str, BuildRecord] = {}
        for record_path in sorted(self._builds_dir.glob("*.json")):
            try:
                with open(record_path) as f:
                    record = BuildRecord.from_dict(json.load(f))
            except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning(
                    f"Ignoring unreadable build record {record_path}: {e}",
                    extra={"event": "build_record_unreadable"},
                )
                continue
            records[record.service] = record
        logger.debug(f"Loaded {len(records)} build records from {self._builds_dir}")
        return records

    def get(self, service: str) -> Optional[BuildRecord]:
        with self._lock:
            return self._records.get(service)

    def put(self, record: BuildRecord) -> None:
        path = self._path_for(record.service)
        tmp_path = path.with_suffix(".json.tmp")
        with self._lock:
            with open(tmp_path, "w") as f:
                json.dump(record.to_dict(), f, indent=2)
            tmp_path.replace(path)
            self._records[record.service] = record

    def invalidate(self, service: str) -> bool:
        with self._lock:
            removed = self._records.pop(service, None) is not None
            path = self._path_for(service)
            if path.exists():
                path.unlink()
                removed = True
            return removed

    def all(self) -> dict[str, BuildRecord]:
        with self._lock:
            return dict(self._records)
