"""
Namespaced key-value store: string keys, string values.

Backends are swappable behind the same get/set/delete interface:
- InMemoryKeyValueStore: dict guarded by a lock (tests, ephemeral runs).
- SQLiteKeyValueStore: one row per (namespace, key) in a local SQLite file.
- JSONFileKeyValueStore: one JSON object per namespace file.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path

from storm_writer.core.config import STORE_BACKEND, STORE_NAMESPACE, STORE_PATH
from storm_writer.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

# Project root (relative STORE_PATH values resolve against it)
_ROOT = Path(__file__).resolve().parent.parent.parent
_TABLE = "kv"


class KeyValueStore:
    """Interface: get/set/delete over a single namespace."""

    def __init__(self, namespace: str = STORE_NAMESPACE) -> None:
        self.namespace = namespace

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self, namespace: str = STORE_NAMESPACE) -> None:
        super().__init__(namespace)
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SQLiteKeyValueStore(KeyValueStore):
    """Rows in table kv (namespace, key, value). The file and table are created on first use."""

    def __init__(self, path: str | Path, namespace: str = STORE_NAMESPACE) -> None:
        super().__init__(namespace)
        self.path = Path(path)
        self._initialized = False

    def _get_conn(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path))
        if not self._initialized:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_TABLE} (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
                """
            )
            conn.commit()
            self._initialized = True
        return conn

    def get(self, key: str) -> str | None:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                f"SELECT value FROM {_TABLE} WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )
            row = cur.fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                f"INSERT OR REPLACE INTO {_TABLE} (namespace, key, value) VALUES (?, ?, ?)",
                (self.namespace, key, value),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("[kv_store:sqlite] set namespace=%s key=%s value_len=%d", self.namespace, key, len(value))

    def delete(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(f"DELETE FROM {_TABLE} WHERE namespace = ? AND key = ?", (self.namespace, key))
            conn.commit()
        finally:
            conn.close()
        logger.info("[kv_store:sqlite] delete namespace=%s key=%s", self.namespace, key)


class JSONFileKeyValueStore(KeyValueStore):
    """All keys of the namespace live in <directory>/<namespace>.json, rewritten wholesale."""

    def __init__(self, directory: str | Path, namespace: str = STORE_NAMESPACE) -> None:
        super().__init__(namespace)
        self.file = Path(directory) / f"{namespace}.json"
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.file.is_file():
            return {}
        data = json.loads(self.file.read_text(encoding="utf-8") or "{}")
        if not isinstance(data, dict):
            raise ValueError(f"{self.file} does not hold a JSON object")
        return data

    def _write(self, data: dict[str, str]) -> None:
        self.file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.file.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(self.file)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)
        logger.info("[kv_store:file] set file=%s key=%s value_len=%d", self.file.name, key, len(value))

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)
        logger.info("[kv_store:file] delete file=%s key=%s", self.file.name, key)


def build_store(backend: str = STORE_BACKEND, path: str = STORE_PATH, namespace: str = STORE_NAMESPACE) -> KeyValueStore:
    """Create the configured backend. Relative paths resolve against the project root."""
    resolved = Path(path)
    if not resolved.is_absolute():
        resolved = _ROOT / resolved
    logger.info("[kv_store:build_store] backend=%s path=%s namespace=%s", backend, resolved, namespace)
    if backend == "memory":
        return InMemoryKeyValueStore(namespace)
    if backend == "sqlite":
        return SQLiteKeyValueStore(resolved, namespace)
    if backend == "file":
        # For the file backend STORE_PATH names a directory
        return JSONFileKeyValueStore(resolved if resolved.suffix == "" else resolved.parent, namespace)
    raise ServiceUnavailableError(f"Unknown STORE_BACKEND {backend!r} (expected sqlite, memory or file)")
