"""SQLite document store that serves as a local search backend."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from entityfinder.errors import CollectionNotFoundError
from entityfinder.index.evaluator import filter_documents
from entityfinder.resolution.job import SearchHit, SearchResponse
from entityfinder.resolution.predicates import Predicate

LOGGER = logging.getLogger(__name__)


class SQLiteDocumentStore:
    """Persistence layer for JSON documents grouped in named collections."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        # Batch resolution searches from worker threads.
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._lock = threading.Lock()
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS collections (
                    id INTEGER PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    collection_id INTEGER NOT NULL,
                    doc_id TEXT NOT NULL,
                    source TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(collection_id, doc_id),
                    FOREIGN KEY(collection_id) REFERENCES collections(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS documents_updated
                AFTER UPDATE ON documents
                BEGIN
                    UPDATE documents SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
                END;
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_documents_collection_id
                    ON documents(collection_id)
                """
            )

    def _collection_id(self, name: str) -> int | None:
        row = self._conn.execute("SELECT id FROM collections WHERE name = ?", (name,)).fetchone()
        return row["id"] if row else None

    def ensure_collection(self, name: str) -> int:
        """Return the id of a collection, creating it if needed."""
        # Note: This should be called within a transaction
        existing = self._collection_id(name)
        if existing is not None:
            return existing
        return self._conn.execute("INSERT INTO collections(name) VALUES (?)", (name,)).lastrowid

    def upsert_documents(self, collection: str, documents: Iterable[Tuple[str, Dict[str, Any]]]) -> Dict[str, int]:
        """Insert or replace documents by id.

        Returns counts of ``inserted``, ``updated`` and ``skipped`` (unchanged) documents.
        """
        stats = {"inserted": 0, "updated": 0, "skipped": 0}
        with self.transaction() as conn:
            collection_id = self.ensure_collection(collection)
            for doc_id, source in documents:
                payload = json.dumps(source, ensure_ascii=True, sort_keys=True)
                existing = conn.execute(
                    "SELECT id, source FROM documents WHERE collection_id = ? AND doc_id = ?",
                    (collection_id, doc_id),
                ).fetchone()
                if existing and existing["source"] == payload:
                    stats["skipped"] += 1
                    continue
                if existing:
                    conn.execute("UPDATE documents SET source = ? WHERE id = ?", (payload, existing["id"]))
                    stats["updated"] += 1
                else:
                    conn.execute(
                        "INSERT INTO documents(collection_id, doc_id, source) VALUES (?, ?, ?)",
                        (collection_id, doc_id, payload),
                    )
                    stats["inserted"] += 1
        LOGGER.info("Indexed into '%s': %s", collection, stats)
        return stats

    def get_document(self, collection: str, doc_id: str) -> Dict[str, Any] | None:
        row = self._conn.execute(
            """
            SELECT d.source AS source
            FROM documents d
            JOIN collections c ON c.id = d.collection_id
            WHERE c.name = ? AND d.doc_id = ?
            """,
            (collection, doc_id),
        ).fetchone()
        return json.loads(row["source"]) if row else None

    def list_collections(self) -> List[Dict[str, Any]]:
        """List all collections with their document counts."""
        rows = self._conn.execute(
            """
            SELECT c.name AS name, c.created_at AS created_at, COUNT(d.id) AS document_count
            FROM collections c
            LEFT JOIN documents d ON d.collection_id = c.id
            GROUP BY c.id
            ORDER BY c.name
            """
        ).fetchall()
        return [
            {"name": row["name"], "created_at": row["created_at"], "document_count": row["document_count"]}
            for row in rows
        ]

    def drop_collection(self, name: str) -> bool:
        """Delete a collection and its documents. Returns False if it did not exist."""
        with self.transaction() as conn:
            collection_id = self._collection_id(name)
            if collection_id is None:
                return False
            conn.execute("DELETE FROM documents WHERE collection_id = ?", (collection_id,))
            conn.execute("DELETE FROM collections WHERE id = ?", (collection_id,))
        return True

    def get_stats(self) -> Dict[str, int]:
        row = self._conn.execute(
            """
            SELECT
                (SELECT COUNT(*) FROM collections) AS collection_count,
                (SELECT COUNT(*) FROM documents) AS document_count
            """
        ).fetchone()
        return {"collection_count": row["collection_count"], "document_count": row["document_count"]}

    def _load(self, collection_id: int) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT doc_id, source FROM documents WHERE collection_id = ? ORDER BY doc_id",
                (collection_id,),
            ).fetchall()
        return [(row["doc_id"], json.loads(row["source"])) for row in rows]

    def search(self, collection: str, predicate: Predicate, size: int, profile: bool = False) -> SearchResponse:
        """Return up to ``size`` documents of ``collection`` matching ``predicate``."""
        started = time.perf_counter()
        with self._lock:
            collection_id = self._collection_id(collection)
        if collection_id is None:
            raise CollectionNotFoundError(collection)
        documents = self._load(collection_id)
        matches = filter_documents(predicate, documents, size)
        took_ms = int((time.perf_counter() - started) * 1000)
        LOGGER.debug("Searched '%s': %d of %d documents matched", collection, len(matches), len(documents))
        return SearchResponse(
            hits=[
                SearchHit(id=doc_id, source=source, matched_tags=sorted(tags))
                for doc_id, source, tags in matches
            ],
            took_ms=took_ms,
            profile={"documents_evaluated": len(documents), "documents_matched": len(matches)} if profile else None,
        )
