from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from .db import DBConn, connect_db
from .errors import PersistenceError
from .models import BatchStats
from .utils import json_dumps, log_event, utc_now_iso

logger = logging.getLogger("thumbreel.storage")

_LOOKUP_CHUNK = 200


def init_db(path: str) -> DBConn:
    return connect_db(path)


def get_document(conn: Any, collection: str, doc_id: str) -> dict[str, object] | None:
    cursor = conn.execute(
        "SELECT data_json FROM documents WHERE collection = ? AND doc_id = ?",
        (collection, doc_id),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _load_json(row[0], collection, doc_id)


def document_exists(conn: Any, collection: str, doc_id: str) -> bool:
    try:
        cursor = conn.execute(
            "SELECT 1 FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
        return cursor.fetchone() is not None
    except Exception as exc:  # noqa: BLE001
        raise PersistenceError(f"lookup {collection}/{doc_id} failed: {exc}") from exc


def existing_doc_ids(conn: Any, collection: str, doc_ids: Iterable[str]) -> set[str]:
    wanted = list(dict.fromkeys(doc_ids))
    found: set[str] = set()
    for start in range(0, len(wanted), _LOOKUP_CHUNK):
        chunk = wanted[start : start + _LOOKUP_CHUNK]
        placeholders = ", ".join("?" for _ in chunk)
        try:
            cursor = conn.execute(
                f"SELECT doc_id FROM documents WHERE collection = ? AND doc_id IN ({placeholders})",
                (collection, *chunk),
            )
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(f"bulk lookup in {collection} failed: {exc}") from exc
        found.update(row[0] for row in cursor.fetchall())
    return found


def merge_document(
    conn: Any, collection: str, doc_id: str, data: dict[str, object]
) -> dict[str, object]:
    """Upsert ``data`` into the stored document, keeping fields it does not name.

    Concurrent writers race with last-write-wins; there is no cross-run lock.
    """
    try:
        existing = get_document(conn, collection, doc_id) or {}
        merged = dict(existing)
        merged.update(data)
        _write(conn, collection, doc_id, merged)
    except Exception as exc:  # noqa: BLE001
        _rollback_quietly(conn)
        raise PersistenceError(f"merge {collection}/{doc_id} failed: {exc}") from exc
    return merged


def set_document(conn: Any, collection: str, doc_id: str, data: dict[str, object]) -> None:
    try:
        _write(conn, collection, doc_id, dict(data))
    except Exception as exc:  # noqa: BLE001
        _rollback_quietly(conn)
        raise PersistenceError(f"set {collection}/{doc_id} failed: {exc}") from exc


def list_documents(conn: Any, collection: str, limit: int = 20) -> list[dict[str, object]]:
    cursor = conn.execute(
        """
        SELECT doc_id, data_json, updated_at
        FROM documents
        WHERE collection = ?
        ORDER BY updated_at DESC
        LIMIT ?
        """,
        (collection, limit),
    )
    documents: list[dict[str, object]] = []
    for doc_id, data_json, updated_at in cursor.fetchall():
        payload = _load_json(data_json, collection, doc_id) or {}
        payload.setdefault("_id", doc_id)
        payload.setdefault("_updated_at", updated_at)
        documents.append(payload)
    return documents


def count_documents(conn: Any, collection: str) -> int:
    cursor = conn.execute("SELECT COUNT(*) FROM documents WHERE collection = ?", (collection,))
    return int(cursor.fetchone()[0])


def write_batch_stats(conn: Any, collection: str, doc_id: str, stats: BatchStats) -> None:
    # One document per deployment, replaced each run.
    set_document(conn, collection, doc_id, json.loads(json_dumps(stats)))


def get_batch_stats(conn: Any, collection: str, doc_id: str) -> dict[str, object] | None:
    return get_document(conn, collection, doc_id)


def _write(conn: Any, collection: str, doc_id: str, data: dict[str, object]) -> None:
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO documents (collection, doc_id, data_json, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(collection, doc_id) DO UPDATE SET
            data_json = excluded.data_json,
            updated_at = excluded.updated_at
        """,
        (collection, doc_id, json_dumps(data), now, now),
    )
    conn.commit()


def _load_json(raw: str, collection: str, doc_id: str) -> dict[str, object] | None:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        log_event(
            logger, logging.WARNING, "document_corrupt", collection=collection, doc_id=doc_id
        )
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def _rollback_quietly(conn: Any) -> None:
    try:
        conn.rollback()
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.WARNING, "rollback_failed", error=str(exc))
