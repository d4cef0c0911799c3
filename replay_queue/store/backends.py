"""Blocking key/value backends behind the durable store."""
import hashlib
import json
import os
import re
import uuid
from pathlib import Path
from typing import Any, List, Optional

from replay_queue.db import Database
from replay_queue.logging_conf import logger


class SpoolBackend:
    """Spool-directory backend: one JSON file per key.

    Each file carries the original key next to its value, so keys with
    characters that are not filename-safe (queue entry ids are URLs) survive
    a round trip through `get_all_keys`.
    """

    def __init__(self, base_dir: Path, namespace: str, version: int, store_name: str):
        self.directory: Path = (
            Path(base_dir) / self._safe_id(namespace) / f"v{version}" / self._safe_id(store_name)
        )

    def open(self) -> None:
        """Create the spool directory and make sure it is writable."""
        self.directory.mkdir(parents=True, exist_ok=True)
        if not os.access(self.directory, os.W_OK):
            raise PermissionError(f"Spool directory is not writable: {self.directory}")

    def close(self) -> None:
        pass

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping corrupted spool file {path}: {e}")
            return None
        return data.get("value")

    def put(self, key: str, value: Any) -> None:
        path = self._path(key)
        temp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(temp_path, "w") as f:
                json.dump({"key": key, "value": value}, f)
                f.flush()
                os.fsync(f.fileno())
            # Atomic swap; readers see either the old or the new document
            os.replace(temp_path, path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def get_all_keys(self) -> List[str]:
        keys = []
        for path in self._list_files(self.directory, ".json"):
            try:
                with open(path, "r") as f:
                    keys.append(json.load(f)["key"])
            except FileNotFoundError:
                continue  # deleted while listing
            except (json.JSONDecodeError, KeyError) as e:
                logger.warning(f"Skipping corrupted spool file {path}: {e}")
        return keys

    def _path(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _safe_id(self, value: str) -> str:
        """Make a safe directory name from a store identifier."""
        return re.sub(r"[^A-Za-z0-9._-]", "_", value)[:200]

    def _list_files(self, directory: Path, suffix: str) -> List[Path]:
        """List files with a given suffix, oldest first."""
        try:
            files = [p for p in directory.iterdir() if p.is_file() and p.suffix == suffix]
        except FileNotFoundError:
            return []
        stamped = []
        for p in files:
            try:
                stamped.append((p.stat().st_mtime, p.name, p))
            except FileNotFoundError:
                continue
        stamped.sort()
        return [p for _, _, p in stamped]


class PostgresBackend:
    """PostgreSQL backend; values are stored as JSON text."""

    def __init__(self, database: Database, namespace: str, version: int, store_name: str):
        self.database = database
        self.namespace = namespace
        self.version = version
        self.store_name = store_name

    def open(self) -> None:
        self.database.ensure_schema()

    def close(self) -> None:
        self.database.close()

    def get(self, key: str) -> Optional[Any]:
        raw = self.database.get_value(self.namespace, self.version, self.store_name, key)
        if raw is None:
            return None
        return json.loads(raw)

    def put(self, key: str, value: Any) -> None:
        self.database.put_value(self.namespace, self.version, self.store_name, key, json.dumps(value))

    def delete(self, key: str) -> None:
        self.database.delete_value(self.namespace, self.version, self.store_name, key)

    def get_all_keys(self) -> List[str]:
        return self.database.get_all_keys(self.namespace, self.version, self.store_name)
