from __future__ import annotations

import json
import logging
import os
import secrets
import tempfile
import threading
from typing import Dict, Iterable, List, Optional

from tallypoint.errors import NotFound, ValidationError
from tallypoint.models import Filter, Record

log = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class FilterStore:
    """
    In-memory table of filters and their result series.

    A single lock covers the table and every filter's results, so merges on
    the same filter never lose updates and readers only ever see whole
    batches. When ``path`` is set, each mutation rewrites the snapshot file;
    a failed write is logged and the mutation is kept.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._filters: Dict[str, Filter] = {}
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: Optional[str]) -> "FilterStore":
        store = cls(path=path)
        if path and os.path.exists(path):
            store.load()
        return store

    # ----------------------------
    # Registry operations
    # ----------------------------
    def create(self, name: str, owner: str, pattern: str) -> str:
        name = (name or "").strip()
        pattern = (pattern or "").strip()
        if not pattern:
            raise ValidationError("Please provide a regex")
        if not name:
            raise ValidationError("Please provide a name")

        with self._lock:
            filter_id = secrets.token_hex(16)
            while filter_id in self._filters:
                filter_id = secrets.token_hex(16)
            self._filters[filter_id] = Filter(id=filter_id, name=name, owner=owner, pattern=pattern)
            self._persist_locked()
        log.info("created filter %s (%s) for %s", filter_id, name, owner)
        return filter_id

    def get(self, filter_id: str) -> Filter:
        with self._lock:
            flt = self._filters.get(filter_id)
            if flt is None:
                raise NotFound(filter_id)
            return flt.model_copy(deep=True)

    def list(self) -> List[Filter]:
        with self._lock:
            return [flt.without_results() for flt in self._filters.values()]

    def delete(self, filter_id: str) -> bool:
        with self._lock:
            removed = self._filters.pop(filter_id, None) is not None
            if removed:
                self._persist_locked()
        if removed:
            log.info("deleted filter %s", filter_id)
        return removed

    def merge_results(self, filter_id: str, records: Iterable[Record]) -> int:
        with self._lock:
            flt = self._filters.get(filter_id)
            if flt is None:
                raise NotFound(filter_id)
            applied = 0
            for metric, bucket, delta in records:
                series = flt.results.setdefault(int(metric), {})
                series[int(bucket)] = series.get(int(bucket), 0) + int(delta)
                applied += 1
            if applied:
                self._persist_locked()
            return applied

    def __len__(self) -> int:
        with self._lock:
            return len(self._filters)

    # ----------------------------
    # Snapshot
    # ----------------------------
    def save(self) -> None:
        if not self.path:
            raise ValueError("store has no snapshot path")
        with self._lock:
            self._write_snapshot()

    def load(self) -> None:
        with open(self.path, "r", encoding="utf-8") as f:
            doc = json.load(f)
        filters = [Filter.model_validate(obj) for obj in doc.get("filters", [])]
        with self._lock:
            self._filters = {flt.id: flt for flt in filters}
        log.info("loaded %d filters from %s", len(filters), self.path)

    def _persist_locked(self) -> None:
        if not self.path:
            return
        try:
            self._write_snapshot()
        except OSError as exc:
            log.error("failed to write snapshot %s: %s", self.path, exc)

    def _write_snapshot(self) -> None:
        doc = {
            "version": SNAPSHOT_VERSION,
            "filters": [flt.model_dump(mode="json") for flt in self._filters.values()],
        }
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp = tempfile.mkstemp(prefix=".snapshot-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(doc, f)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
