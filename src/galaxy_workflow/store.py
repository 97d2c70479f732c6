"""Document store used as the persistence boundary.

Documents are plain JSON objects grouped into named collections and addressed
by id. All writes go through `DocumentStore.transaction()`, which serialises
writers and commits the whole unit of work or nothing:

    with store.transaction() as tx:
        session = tx.get("sessions", key)
        tx.update("sessions", key, step=session["step"] + 1)

The store keeps everything in memory when no path is given (tests, demos) and
otherwise persists to a single JSON file, replaced atomically on commit.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from galaxy_workflow.errors import Conflict, NotFound, UpstreamFailure

logger = logging.getLogger(__name__)

Document = dict[str, Any]
Collections = dict[str, dict[str, Document]]


class Transaction:
    """A mutable view over a snapshot of the store.

    Reads return copies so callers cannot mutate the snapshot behind the
    transaction's back.
    """

    def __init__(self, data: Collections) -> None:
        self._data = data

    def _collection(self, name: str) -> dict[str, Document]:
        return self._data.setdefault(name, {})

    def get(self, collection: str, doc_id: str) -> Document | None:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    def require(self, collection: str, doc_id: str) -> Document:
        doc = self.get(collection, doc_id)
        if doc is None:
            raise NotFound(f"{collection} document {doc_id!r} not found")
        return doc

    def find(self, collection: str, **match: object) -> list[Document]:
        return [
            copy.deepcopy(doc)
            for doc in self._collection(collection).values()
            if all(doc.get(key) == value for key, value in match.items())
        ]

    def insert(self, collection: str, doc_id: str, doc: Document) -> Document:
        docs = self._collection(collection)
        if doc_id in docs:
            raise Conflict(f"{collection} document {doc_id!r} already exists")
        docs[doc_id] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    def put(self, collection: str, doc_id: str, doc: Document) -> None:
        self._collection(collection)[doc_id] = copy.deepcopy(doc)

    def update(self, collection: str, doc_id: str, **fields: object) -> Document:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise NotFound(f"{collection} document {doc_id!r} not found")
        docs[doc_id].update(copy.deepcopy(fields))
        return copy.deepcopy(docs[doc_id])

    def increment(self, collection: str, doc_id: str, field: str, amount: float) -> float:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise NotFound(f"{collection} document {doc_id!r} not found")
        current = docs[doc_id].get(field) or 0
        docs[doc_id][field] = current + amount
        return docs[doc_id][field]


class DocumentStore:
    """JSON-file (or in-memory) backed document store.

    A single lock serialises transactions, which gives single-writer semantics
    for every session and resource handled by this process.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._memory: Collections = {}
        self._lock = threading.RLock()

    @property
    def path(self) -> Path | None:
        return self._path

    def _load_unlocked(self) -> Collections:
        if self._path is None:
            return copy.deepcopy(self._memory)
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Document store is unreadable", extra={"path": str(self._path)})
            raise UpstreamFailure(f"Document store {self._path} is unreadable: {e}") from e
        if not isinstance(raw, dict):
            raise UpstreamFailure(f"Document store {self._path} has unexpected shape")
        return {
            name: dict(docs) for name, docs in raw.items() if isinstance(docs, dict)
        }

    def _save_unlocked(self, data: Collections) -> None:
        if self._path is None:
            self._memory = data
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            tmp.write_text(
                json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
            )
            os.replace(tmp, self._path)
        except OSError as e:
            raise UpstreamFailure(f"Failed to write document store {self._path}: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run a unit of work; commit on normal exit, discard on any exception."""

        with self._lock:
            data = self._load_unlocked()
            yield Transaction(data)
            self._save_unlocked(data)

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            return Transaction(self._load_unlocked()).get(collection, doc_id)

    def find(self, collection: str, **match: object) -> list[Document]:
        with self._lock:
            return Transaction(self._load_unlocked()).find(collection, **match)


# Collection names shared by the session gate and the ledgers.
SESSIONS = "sessions"
PARTICIPANTS = "participants"
GALAXIES = "galaxies"
DONATIONS = "donations"
PLACEMENTS = "placements"
