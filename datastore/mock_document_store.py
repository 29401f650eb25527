from __future__ import annotations
import json
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Mapping, Optional

from app.schemas import UserRecord
from settings import get_settings


class _Sentinel:

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return self.name


# Replaced with the collection clock at commit time.
SERVER_TIMESTAMP: Any = _Sentinel("SERVER_TIMESTAMP")
# Removes the addressed field.
DELETE_FIELD: Any = _Sentinel("DELETE_FIELD")


class DocumentStoreError(Exception):
    """Base class for record store failures."""


class DocumentNotFound(DocumentStoreError):
    pass


class PreconditionFailed(DocumentStoreError):
    """A conditional update found a field different from the expected value."""

    def __init__(self, key: str, paths: list[str]) -> None:
        super().__init__(f"Precondition failed for document {key!r} on {', '.join(paths)}.")
        self.key = key
        self.paths = paths


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def read_path(document: Mapping[str, Any], path: str) -> Any:
    """Return the value at a dotted field path, or ``None`` when any segment is absent."""
    node: Any = document
    for segment in path.split("."):
        if not isinstance(node, Mapping) or segment not in node:
            return None
        node = node[segment]
    return node


def _write_path(document: Dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    node = document
    for segment in parents:
        child = node.get(segment)
        if not isinstance(child, dict):
            if value is DELETE_FIELD:
                return
            child = {}
            node[segment] = child
        node = child
    if value is DELETE_FIELD:
        node.pop(leaf, None)
    else:
        node[leaf] = value


class MockDocumentCollection:
    """In-memory stand-in for a document collection of user records.

    ``update_fields`` applies every dotted path of one call atomically and can be
    guarded by ``expected`` values, which makes it usable as a compare-and-swap
    across concurrent writers.
    """

    def __init__(
        self,
        name: str,
        persistence_path: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.name = name
        self._items: Dict[str, UserRecord] = {}
        self.persistence_path = persistence_path
        self._clock = clock or _utc_now
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put_item(self, item: UserRecord) -> None:
        with self._lock:
            self._items[item.user_id] = item.model_copy(deep=True)
            self._persist()

    def get_item(self, key: str) -> Optional[UserRecord]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            return item.model_copy(deep=True)

    def scan(self) -> list[UserRecord]:
        """Return deep copies of all documents in insertion order."""

        with self._lock:
            return [item.model_copy(deep=True) for item in self._items.values()]

    def update_fields(
        self,
        key: str,
        updates: Mapping[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> UserRecord:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                raise DocumentNotFound(f"Document {key!r} not found in collection {self.name!r}.")

            document = item.model_dump(by_alias=True)
            if expected:
                mismatched = [
                    path for path, value in expected.items() if read_path(document, path) != value
                ]
                if mismatched:
                    raise PreconditionFailed(key, mismatched)

            commit_time = self._clock()
            for path, value in updates.items():
                _write_path(document, path, commit_time if value is SERVER_TIMESTAMP else value)

            updated = UserRecord.model_validate(document)
            self._items[key] = updated
            self._persist()
            return updated.model_copy(deep=True)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            user_id: item.model_dump(mode="json", by_alias=True)
            for user_id, item in self._items.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for user_id, payload in data.items():
            payload.setdefault("userId", user_id)
            self._items[user_id] = UserRecord.model_validate(payload)


@lru_cache
def build_default_collection(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockDocumentCollection:
    settings = get_settings()
    collection_name = settings.store_collection if name is None else name
    store_path = settings.store_persistence_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return MockDocumentCollection(name=collection_name, persistence_path=persistence)
