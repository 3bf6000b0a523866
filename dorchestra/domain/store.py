"""
DomainStore - persistence for the records domain setup creates.

Every write goes through find_or_create(kind, key, defaults): records are
keyed by a stable slug or composite key, so re-running a step against a store
that already holds its output returns the existing record instead of
inserting a duplicate.

Record kinds written by the built-in handlers:
    domain, subject, subject_domain, content_source, subject_source,
    assertion, identity_spec, playbook, content_spec, caller, goal, invite

composed_prompt records are written by the prompt composer and only read here.

Implementations:
- InMemoryDomainStore: dict-backed, for tests and single-process runs
- JsonFileDomainStore: persists to a JSON file after every write
"""

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from dorchestra.errors import TransientError
from dorchestra.utils import generate_ulid

logger = logging.getLogger(__name__)

Record = dict[str, Any]


def composite_key(*parts: Any) -> str:
    """Join key parts with ':' (e.g. subject_domain keys are 'subjectId:domainId')."""
    return ":".join(str(p) for p in parts)


class DomainStore(ABC):
    """Abstract base class for domain record storage."""

    @abstractmethod
    def find(self, kind: str, key: str) -> Optional[Record]:
        """Find a record by its stable key. Returns None if absent."""
        pass

    @abstractmethod
    def find_or_create(
        self, kind: str, key: str, defaults: Optional[dict[str, Any]] = None
    ) -> tuple[Record, bool]:
        """
        Return the record for key, creating it from defaults if absent.

        Returns:
            (record, created) where created is False when the record existed
        """
        pass

    @abstractmethod
    def get(self, kind: str, record_id: str) -> Optional[Record]:
        """Get a record by its generated id. Returns None if absent."""
        pass

    @abstractmethod
    def update(self, kind: str, record_id: str, changes: dict[str, Any]) -> Record:
        """
        Apply field changes to an existing record.

        Raises:
            KeyError: If no record of this kind has the id
        """
        pass

    @abstractmethod
    def list(self, kind: str, **filters: Any) -> list[Record]:
        """List records of a kind whose fields equal every filter value."""
        pass

    def count(self, kind: str, **filters: Any) -> int:
        return len(self.list(kind, **filters))


class InMemoryDomainStore(DomainStore):
    """
    In-memory implementation of DomainStore.

    Thread-safe; readiness checks read concurrently. Records are copied on
    the way in and out so callers cannot mutate stored state.
    """

    def __init__(self, records: Optional[dict[str, dict[str, Record]]] = None):
        # kind -> key -> record
        self._records: dict[str, dict[str, Record]] = copy.deepcopy(records or {})
        self._lock = threading.RLock()

    def find(self, kind: str, key: str) -> Optional[Record]:
        with self._lock:
            record = self._records.get(kind, {}).get(key)
            return copy.deepcopy(record) if record is not None else None

    def find_or_create(
        self, kind: str, key: str, defaults: Optional[dict[str, Any]] = None
    ) -> tuple[Record, bool]:
        with self._lock:
            bucket = self._records.setdefault(kind, {})
            existing = bucket.get(key)
            if existing is not None:
                return copy.deepcopy(existing), False

            record = {**copy.deepcopy(defaults or {}), "id": f"{kind}_{generate_ulid()}", "key": key}
            bucket[key] = record
            self._changed()
            logger.debug(f"Created {kind} {key} ({record['id']})")
            return copy.deepcopy(record), True

    def get(self, kind: str, record_id: str) -> Optional[Record]:
        with self._lock:
            for record in self._records.get(kind, {}).values():
                if record["id"] == record_id:
                    return copy.deepcopy(record)
            return None

    def update(self, kind: str, record_id: str, changes: dict[str, Any]) -> Record:
        with self._lock:
            for record in self._records.get(kind, {}).values():
                if record["id"] == record_id:
                    protected = {"id": record["id"], "key": record["key"]}
                    record.update(copy.deepcopy(changes))
                    record.update(protected)
                    self._changed()
                    return copy.deepcopy(record)
            raise KeyError(f"{kind} not found: {record_id}")

    def list(self, kind: str, **filters: Any) -> list[Record]:
        with self._lock:
            return [
                copy.deepcopy(r)
                for r in self._records.get(kind, {}).values()
                if all(r.get(k) == v for k, v in filters.items())
            ]

    def dump(self) -> dict[str, dict[str, Record]]:
        with self._lock:
            return copy.deepcopy(self._records)

    def _changed(self) -> None:
        """Hook called after every write, with the lock held."""
        pass


class JsonFileDomainStore(InMemoryDomainStore):
    """
    DomainStore persisted as a single JSON file.

    The file is loaded once on construction and rewritten (temp file, then
    rename) after every write.
    """

    def __init__(self, path: Path | str):
        self._path = Path(path)
        records: dict[str, dict[str, Record]] = {}
        if self._path.exists():
            with open(self._path) as f:
                records = json.load(f)
        super().__init__(records)

    @property
    def path(self) -> Path:
        return self._path

    def _changed(self) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(self._records, f, indent=2, default=str)
            tmp_path.replace(self._path)
        except OSError as e:
            logger.error(f"Failed to persist domain store to {self._path}: {e}")
            raise TransientError(f"Domain store unavailable: {e}") from e
