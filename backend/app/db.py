from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from rescue_ops.errors import PersistenceError
from rescue_ops.store import split_path

from .config import DB_PATH


class SQLiteDocumentStore:
    """DocumentStore keeping one JSON body per (collection, id) row."""

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path
        self.init_db()

    def init_db(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    PRIMARY KEY (collection, id)
                )
                """
            )

    @contextmanager
    def get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"sqlite error: {exc}") from exc
        finally:
            conn.close()

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        collection, key = split_path(path)
        with self.get_conn() as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection=? AND id=?", (collection, key)
            ).fetchone()
        return json.loads(row["body"]) if row else None

    def set(self, path: str, value: Dict[str, Any]) -> None:
        collection, key = split_path(path)
        with self.get_conn() as conn:
            conn.execute(
                "INSERT INTO documents (collection,id,body) VALUES (?,?,?) "
                "ON CONFLICT(collection,id) DO UPDATE SET body=excluded.body",
                (collection, key, json.dumps(value)),
            )

    def update(self, path: str, changes: Dict[str, Any]) -> None:
        collection, key = split_path(path)
        with self.get_conn() as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection=? AND id=?", (collection, key)
            ).fetchone()
            body = json.loads(row["body"]) if row else {}
            body.update(changes)
            conn.execute(
                "INSERT INTO documents (collection,id,body) VALUES (?,?,?) "
                "ON CONFLICT(collection,id) DO UPDATE SET body=excluded.body",
                (collection, key, json.dumps(body)),
            )

    def children(self, collection: str) -> Dict[str, Dict[str, Any]]:
        with self.get_conn() as conn:
            rows = conn.execute(
                "SELECT id, body FROM documents WHERE collection=? ORDER BY rowid", (collection,)
            ).fetchall()
        return {row["id"]: json.loads(row["body"]) for row in rows}
