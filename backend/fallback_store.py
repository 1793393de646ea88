# backend/fallback_store.py
"""
Local file-backed document store used when MongoDB is unreachable.

One JSON file, keyed by collection name, each value the list of that
collection's documents. Writes go to a temp file first and are renamed
into place so a crash never leaves a half-written store. Mirrored copies
may be staged in memory and written later by flush().
"""
import copy
import logging
import os
import threading
from datetime import timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from bson import json_util

logger = logging.getLogger(__name__)

JSON_OPTIONS = json_util.RELAXED_JSON_OPTIONS.with_options(tz_aware=True, tzinfo=timezone.utc)

SortSpec = Sequence[Tuple[str, int]]


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if actual is None:
        return False
    try:
        if op == "$gt":
            return actual > expected
        if op == "$gte":
            return actual >= expected
        if op == "$lt":
            return actual < expected
        if op == "$lte":
            return actual <= expected
    except TypeError:
        return False
    return False


def matches(doc: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """Evaluate the subset of MongoDB query syntax the services use"""
    for key, condition in (filters or {}).items():
        actual = doc.get(key)
        if isinstance(condition, dict) and any(k.startswith("$") for k in condition):
            for op, expected in condition.items():
                if op == "$in":
                    if actual not in expected:
                        return False
                elif op == "$nin":
                    if actual in expected:
                        return False
                elif op == "$ne":
                    if actual == expected:
                        return False
                elif op in ("$gt", "$gte", "$lt", "$lte"):
                    if not _compare(op, actual, expected):
                        return False
                else:
                    raise ValueError(f"Unsupported query operator: {op}")
        elif actual != condition:
            return False
    return True


def sort_documents(docs: List[Dict[str, Any]], sort: Optional[SortSpec]) -> List[Dict[str, Any]]:
    ordered = list(docs)
    # apply keys last-to-first so the first key has the highest precedence
    for field, direction in reversed(list(sort or [])):
        present = [d for d in ordered if d.get(field) is not None]
        missing = [d for d in ordered if d.get(field) is None]
        present.sort(key=lambda d: d[field], reverse=direction < 0)
        ordered = missing + present if direction > 0 else present + missing
    return ordered


class FallbackStore:
    """Thread-safe JSON file store keyed by collection name"""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()
        self._data: Optional[Dict[str, List[Dict[str, Any]]]] = None
        self._dirty = False

    # ===== FILE I/O =====
    def _load(self) -> Dict[str, List[Dict[str, Any]]]:
        if self._data is not None:
            return self._data

        if not os.path.exists(self.path):
            self._data = {}
            return self._data

        try:
            with open(self.path, "r") as f:
                raw = f.read()
            self._data = json_util.loads(raw, json_options=JSON_OPTIONS) if raw.strip() else {}
            logger.info(f"📂 Loaded fallback store from {self.path} ({len(self._data)} collections)")
        except (OSError, ValueError) as e:
            logger.error(f"❌ Fallback store at {self.path} is unreadable, starting empty: {e}")
            self._data = {}
        return self._data

    def _save(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        temp_path = self.path + ".tmp"
        with open(temp_path, "w") as f:
            f.write(json_util.dumps(self._data, json_options=JSON_OPTIONS))
        os.replace(temp_path, self.path)
        self._dirty = False

    # ===== PUBLIC API =====
    def has(self, collection: str) -> bool:
        with self._lock:
            return collection in self._load()

    def read(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._load().get(collection, []))

    def mutate(self, collection: str, fn: Callable[[List[Dict[str, Any]]], Any], persist: bool = True) -> Any:
        """Run fn against the live document list under the lock.

        With persist=False the change stays in memory until the next flush().
        """
        with self._lock:
            data = self._load()
            docs = data.setdefault(collection, [])
            result = fn(docs)
            self._dirty = True
            if persist:
                self._save()
            return copy.deepcopy(result)

    @property
    def dirty(self) -> bool:
        return self._dirty

    def flush(self) -> bool:
        """Write pending in-memory changes to disk; False when there was nothing to write"""
        with self._lock:
            if not self._dirty:
                return False
            self._save()
            return True

    def upsert_many(self, collection: str, docs: List[Dict[str, Any]], persist: bool = True) -> int:
        def apply(existing: List[Dict[str, Any]]) -> int:
            index = {d.get("_id"): i for i, d in enumerate(existing)}
            for doc in docs:
                doc_id = doc.get("_id")
                if doc_id in index:
                    existing[index[doc_id]] = copy.deepcopy(doc)
                else:
                    index[doc_id] = len(existing)
                    existing.append(copy.deepcopy(doc))
            return len(docs)

        return self.mutate(collection, apply, persist)

    def remove(self, collection: str, doc_id: str, persist: bool = True) -> bool:
        def apply(existing: List[Dict[str, Any]]) -> bool:
            for i, doc in enumerate(existing):
                if doc.get("_id") == doc_id:
                    del existing[i]
                    return True
            return False

        return self.mutate(collection, apply, persist)

    def clear(self) -> None:
        with self._lock:
            self._data = {}
            self._save()
