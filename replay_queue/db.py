"""PostgreSQL persistence for queued requests and broadcast notifications."""
import threading
import psycopg2
from psycopg2.extras import RealDictCursor
from typing import List, Optional
from contextlib import contextmanager

from replay_queue import settings
from replay_queue.logging_conf import logger

TABLE_NAME = "replay_queue_store"


class Database:
    """Database connection and key/value operations for the durable store.

    Every key lives in a (namespace, version, store_name) object store, so one
    table serves any number of logical stores.
    """

    def __init__(self, dsn: Optional[str] = None):
        self.dsn = dsn or settings.DATABASE_URL
        self._conn = None
        # Store calls arrive from worker threads; one cursor at a time per connection
        self._lock = threading.RLock()
        self._schema_ready = False

    @property
    def conn(self):
        """Get or create database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg2.connect(self.dsn)
        return self._conn

    def close(self):
        """Close database connection."""
        with self._lock:
            if self._conn and not self._conn.closed:
                self._conn.close()
            self._conn = None

    @contextmanager
    def cursor(self):
        """Context manager for cursor with auto-commit/rollback."""
        with self._lock:
            cur = self.conn.cursor(cursor_factory=RealDictCursor)
            try:
                yield cur
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
            finally:
                cur.close()

    def ensure_schema(self) -> None:
        """Create the key/value table if it does not exist yet."""
        if self._schema_ready:
            return
        with self.cursor() as cur:
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                    namespace TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    store_name TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (namespace, version, store_name, key)
                )
            """)
        self._schema_ready = True
        logger.info(f"Store table {TABLE_NAME} ready")

    def get_value(self, namespace: str, version: int, store_name: str, key: str) -> Optional[str]:
        """Return the raw stored value for a key, or None."""
        with self.cursor() as cur:
            cur.execute(f"""
                SELECT value
                FROM {TABLE_NAME}
                WHERE namespace = %s AND version = %s AND store_name = %s AND key = %s
            """, (namespace, version, store_name, key))
            row = cur.fetchone()
            return row["value"] if row else None

    def put_value(self, namespace: str, version: int, store_name: str, key: str, value: str) -> None:
        """Insert or overwrite the value for a key."""
        with self.cursor() as cur:
            cur.execute(f"""
                INSERT INTO {TABLE_NAME} (namespace, version, store_name, key, value)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (namespace, version, store_name, key)
                DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
            """, (namespace, version, store_name, key, value))

    def delete_value(self, namespace: str, version: int, store_name: str, key: str) -> None:
        """Delete a key. Deleting a missing key is not an error."""
        with self.cursor() as cur:
            cur.execute(f"""
                DELETE FROM {TABLE_NAME}
                WHERE namespace = %s AND version = %s AND store_name = %s AND key = %s
            """, (namespace, version, store_name, key))

    def get_all_keys(self, namespace: str, version: int, store_name: str) -> List[str]:
        """List every key in an object store, oldest write first."""
        with self.cursor() as cur:
            cur.execute(f"""
                SELECT key
                FROM {TABLE_NAME}
                WHERE namespace = %s AND version = %s AND store_name = %s
                ORDER BY updated_at ASC, key ASC
            """, (namespace, version, store_name))
            return [row["key"] for row in cur.fetchall()]

    def notify(self, channel: str, payload: str) -> None:
        """Publish a payload to LISTEN-ers on a channel."""
        with self.cursor() as cur:
            cur.execute("SELECT pg_notify(%s, %s)", (channel, payload))
