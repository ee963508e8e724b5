import sqlite3
import threading
from typing import Any

import msgspec

from stackflow.application.port import OutputStore


class SQLiteOutputStore(OutputStore):
    """SQLite-based store for stack output documents."""

    def __init__(self, db_path: str = ":memory:"):
        """
        Initialize the SQLite output store.

        :param db_path: Path to SQLite database file (defaults to in-memory)
        :type db_path: str
        """
        self.db_path = db_path
        self._conn = None
        self._lock = threading.Lock()
        self._init_database()

    def _get_connection(self):
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        return self._conn

    def _init_database(self):
        """Initialize the database schema."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS stack_outputs (
                execution_id TEXT NOT NULL,
                path TEXT NOT NULL,
                document BLOB NOT NULL,
                PRIMARY KEY (execution_id, path)
            )
        """)
        conn.commit()

    @staticmethod
    def _split(key: str) -> tuple[str, str]:
        # <executionId>/<stackName>/output.json
        execution_id, _, path = key.partition("/")
        return execution_id, path

    def set(self, key: str, value: bytes):
        """
        Store a document under the given path.

        :param key: Path of the form ``<executionId>/<stackName>/output.json``
        :type key: str
        :param value: The encoded JSON body
        :type value: bytes
        """
        execution_id, path = self._split(key)
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                "INSERT OR REPLACE INTO stack_outputs (execution_id, path, document) VALUES (?, ?, ?)",
                (execution_id, path, bytes(value)),
            )
            conn.commit()

    def get(self, key: str) -> bytes:
        """
        Retrieve a document by path.

        :raises KeyError: If the key is not found
        """
        execution_id, path = self._split(key)
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT document FROM stack_outputs WHERE execution_id = ? AND path = ?", (execution_id, path)
            )
            row = cursor.fetchone()

        if row is None:
            raise KeyError(f"Key '{key}' not found")
        return bytes(row[0])

    def get_execution_outputs(self, execution_id: str) -> dict[str, Any]:
        """
        Retrieve every output document stored for an execution.

        :param execution_id: The execution identifier
        :type execution_id: str
        :returns: Mapping of stack name to decoded document
        :rtype: dict[str, Any]
        :raises KeyError: If no documents are found for the execution
        """
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT path, document FROM stack_outputs WHERE execution_id = ?", (execution_id,)
            )
            rows = cursor.fetchall()

        if not rows:
            raise KeyError(f"No outputs found for execution '{execution_id}'")

        return {path.split("/", 1)[0]: msgspec.json.decode(bytes(document)) for path, document in rows}

    def delete_execution_outputs(self, execution_id: str) -> bool:
        """
        Delete every document stored for an execution.

        :returns: True if any documents were deleted, False otherwise
        :rtype: bool
        """
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("DELETE FROM stack_outputs WHERE execution_id = ?", (execution_id,))
            conn.commit()
        return cursor.rowcount > 0

    def list_execution_ids(self) -> list[str]:
        with self._lock:
            cursor = self._get_connection().execute(
                "SELECT DISTINCT execution_id FROM stack_outputs ORDER BY execution_id"
            )
            rows = cursor.fetchall()
        return [row[0] for row in rows]

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __del__(self):
        """Close the database connection on cleanup."""
        self.close()
