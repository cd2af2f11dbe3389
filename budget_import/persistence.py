"""
Record-store boundary.

The importer only produces records; storing them belongs to whatever backend
the host application uses. Any object with the four RecordStore methods can
be passed to persist_records. Inserts are keyed by ``import_key`` so running
the same file twice, or resuming after a failed batch, never duplicates rows.
"""

from __future__ import annotations

import copy
import itertools
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict], None]
DEFAULT_PERSIST_BATCH = 100


class RecordStore(Protocol):
    def query(self, filters: Optional[Mapping[str, Any]] = None) -> list[dict]:
        ...

    def insert_many(self, records: list[dict]) -> list[str]:
        ...

    def update(self, record_id: str, changes: Mapping[str, Any]) -> dict:
        ...

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        ...


def _matches(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for key, expected in filters.items():
        value = record.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class InMemoryRecordStore:
    """
    Dict-backed store. Filter values that are lists/sets match by membership.
    Listeners receive ("insert" | "update", record) after each change.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict] = {}
        self._listeners: list[Listener] = []
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._records)

    def query(self, filters: Optional[Mapping[str, Any]] = None) -> list[dict]:
        filters = filters or {}
        return [copy.deepcopy(record) for record in self._records.values() if _matches(record, filters)]

    def insert_many(self, records: list[dict]) -> list[str]:
        ids = []
        for record in records:
            record_id = str(next(self._ids))
            stored = {**copy.deepcopy(record), "id": record_id}
            self._records[record_id] = stored
            ids.append(record_id)
            self._notify("insert", stored)
        return ids

    def update(self, record_id: str, changes: Mapping[str, Any]) -> dict:
        if record_id not in self._records:
            raise KeyError(f"No record with id {record_id}")
        stored = self._records[record_id]
        stored.update({key: value for key, value in changes.items() if key != "id"})
        self._notify("update", stored)
        return copy.deepcopy(stored)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, record: dict) -> None:
        for listener in list(self._listeners):
            listener(event, copy.deepcopy(record))


def persist_records(
    store: RecordStore,
    records: Iterable[Mapping[str, Any]],
    batch_size: int = DEFAULT_PERSIST_BATCH,
) -> dict[str, int]:
    """
    Insert records in batches, skipping any ``import_key`` the store already
    holds or that appeared earlier in this call. A failing insert_many
    propagates; batches before it stay stored and a re-run skips them.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    pending = list(records)
    inserted = skipped = batches = 0
    seen: set[str] = set()

    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]
        keys = [record.get("import_key") for record in batch if record.get("import_key")]
        existing = {item.get("import_key") for item in store.query({"import_key": keys})} if keys else set()

        to_insert = []
        for record in batch:
            key = record.get("import_key")
            if key and (key in existing or key in seen):
                skipped += 1
                continue
            if key:
                seen.add(key)
            to_insert.append(dict(record))

        if to_insert:
            store.insert_many(to_insert)
            inserted += len(to_insert)
        batches += 1
        logger.debug("Persisted batch %d: %d inserted, %d skipped so far", batches, inserted, skipped)

    logger.info("Persisted %d records (%d duplicates skipped)", inserted, skipped)
    return {
        "inserted": inserted,
        "skipped":  skipped,
        "batches":  batches,
    }
