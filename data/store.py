from __future__ import annotations

import json
import os
import re
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Iterable

import psycopg
from loguru import logger

from engine.errors import PersistenceFailure

Record = dict[str, Any]
KeyFn = Callable[[Record], Any]

_BUCKET_RE = re.compile(r"^[A-Za-z0-9_.\-]+(:[A-Za-z0-9_.\-]+)*$")


def _check_bucket(bucket: str) -> str:
    if not _BUCKET_RE.match(bucket):
        raise ValueError(f"Invalid bucket name: {bucket!r}")
    return bucket


def _decode(payload: str, bucket: str) -> list[Record]:
    data = json.loads(payload)
    if not isinstance(data, list):
        raise ValueError(f"bucket {bucket} does not hold a list")
    return data


def merge_records(existing: list[Record], records: Iterable[Record], key: KeyFn) -> tuple[list[Record], int]:
    """Append records whose key is not present yet. Existing records are kept as is."""
    seen = {key(r) for r in existing}
    combined = list(existing)
    added = 0
    for record in records:
        k = key(record)
        if k in seen:
            continue
        seen.add(k)
        combined.append(record)
        added += 1
    return combined, added


class BaseStore:
    """Storage port. The core only talks to named buckets of JSON records."""

    def read(self, bucket: str) -> list[Record]:
        raise NotImplementedError

    def overwrite(self, bucket: str, records: list[Record]) -> None:
        raise NotImplementedError

    def append_merge(self, bucket: str, records: list[Record], key: KeyFn) -> int:
        raise NotImplementedError

    def buckets(self, prefix: str = "") -> list[str]:
        raise NotImplementedError

    def get_setting(self, key: str, default: Any = None) -> Any:
        for record in self.read("settings"):
            if record.get("key") == key:
                return record.get("value", default)
        return default

    def set_setting(self, key: str, value: Any) -> None:
        records = [r for r in self.read("settings") if r.get("key") != key]
        records.append({"key": key, "value": value})
        self.overwrite("settings", records)


class JsonFileStore(BaseStore):
    def __init__(self, base_dir: str) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, bucket: str) -> Path:
        parts = _check_bucket(bucket).split(":")
        return self.base_dir.joinpath(*parts[:-1], f"{parts[-1]}.json")

    def _load(self, bucket: str) -> list[Record]:
        path = self._path(bucket)
        if not path.exists():
            return []
        raw = path.read_text(encoding="utf-8")
        if not raw.strip():
            return []
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"{path} does not hold a list")
        return data

    def read(self, bucket: str) -> list[Record]:
        _check_bucket(bucket)
        try:
            return self._load(bucket)
        except (OSError, ValueError) as exc:
            logger.error("Failed to read bucket {}: {}", bucket, exc)
            return []

    def overwrite(self, bucket: str, records: list[Record]) -> None:
        path = self._path(bucket)
        tmp = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            raise PersistenceFailure(bucket, exc) from exc

    def append_merge(self, bucket: str, records: list[Record], key: KeyFn) -> int:
        # an unreadable file must not be replaced, it may be the only copy of the history
        try:
            existing = self._load(bucket)
        except (OSError, ValueError) as exc:
            raise PersistenceFailure(bucket, exc) from exc
        combined, added = merge_records(existing, records, key)
        if added:
            self.overwrite(bucket, combined)
        return added

    def buckets(self, prefix: str = "") -> list[str]:
        names = []
        for path in self.base_dir.rglob("*.json"):
            rel = path.relative_to(self.base_dir).with_suffix("")
            name = ":".join(rel.parts)
            if name.startswith(prefix):
                names.append(name)
        return sorted(names)


class SQLiteStore(BaseStore):
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                "CREATE TABLE IF NOT EXISTS buckets ("
                "name TEXT PRIMARY KEY, payload TEXT NOT NULL, updated_at INTEGER NOT NULL)"
            )

    def _select(self, conn: sqlite3.Connection, bucket: str) -> list[Record]:
        row = conn.execute("SELECT payload FROM buckets WHERE name=?", (bucket,)).fetchone()
        return _decode(row["payload"], bucket) if row else []

    def _upsert(self, conn: sqlite3.Connection, bucket: str, records: list[Record]) -> None:
        conn.execute(
            "INSERT INTO buckets (name, payload, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(name) DO UPDATE SET payload=excluded.payload, updated_at=excluded.updated_at",
            (bucket, json.dumps(records), int(time.time())),
        )

    def read(self, bucket: str) -> list[Record]:
        _check_bucket(bucket)
        try:
            with self._connect() as conn:
                return self._select(conn, bucket)
        except (sqlite3.Error, ValueError) as exc:
            logger.error("Failed to read bucket {}: {}", bucket, exc)
            return []

    def overwrite(self, bucket: str, records: list[Record]) -> None:
        try:
            with self._connect() as conn:
                self._upsert(conn, _check_bucket(bucket), records)
        except sqlite3.Error as exc:
            raise PersistenceFailure(bucket, exc) from exc

    def append_merge(self, bucket: str, records: list[Record], key: KeyFn) -> int:
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                existing = self._select(conn, _check_bucket(bucket))
                combined, added = merge_records(existing, records, key)
                if added:
                    self._upsert(conn, bucket, combined)
                return added
        except (sqlite3.Error, ValueError) as exc:
            raise PersistenceFailure(bucket, exc) from exc

    def buckets(self, prefix: str = "") -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT name FROM buckets WHERE substr(name, 1, ?) = ? ORDER BY name",
                (len(prefix), prefix),
            ).fetchall()
            return [r["name"] for r in rows]


class PostgresStore(BaseStore):
    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self.dsn)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS buckets ("
                "name TEXT PRIMARY KEY, payload TEXT NOT NULL, updated_at BIGINT NOT NULL)"
            )

    def _upsert(self, conn, bucket: str, records: list[Record]) -> None:
        conn.execute(
            "INSERT INTO buckets (name, payload, updated_at) VALUES (%s, %s, %s) "
            "ON CONFLICT (name) DO UPDATE SET payload=excluded.payload, updated_at=excluded.updated_at",
            (bucket, json.dumps(records), int(time.time())),
        )

    def read(self, bucket: str) -> list[Record]:
        _check_bucket(bucket)
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT payload FROM buckets WHERE name=%s", (bucket,)).fetchone()
                return _decode(row[0], bucket) if row else []
        except (psycopg.Error, ValueError) as exc:
            logger.error("Failed to read bucket {}: {}", bucket, exc)
            return []

    def overwrite(self, bucket: str, records: list[Record]) -> None:
        try:
            with self._connect() as conn:
                self._upsert(conn, _check_bucket(bucket), records)
        except psycopg.Error as exc:
            raise PersistenceFailure(bucket, exc) from exc

    def append_merge(self, bucket: str, records: list[Record], key: KeyFn) -> int:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT payload FROM buckets WHERE name=%s FOR UPDATE",
                    (_check_bucket(bucket),),
                ).fetchone()
                existing = _decode(row[0], bucket) if row else []
                combined, added = merge_records(existing, records, key)
                if added:
                    self._upsert(conn, bucket, combined)
                return added
        except (psycopg.Error, ValueError) as exc:
            raise PersistenceFailure(bucket, exc) from exc

    def buckets(self, prefix: str = "") -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT name FROM buckets WHERE name LIKE %s ORDER BY name",
                (prefix.replace("%", r"\%").replace("_", r"\_") + "%",),
            ).fetchall()
            return [r[0] for r in rows]


def create_store(storage: str, data_dir: str, sqlite_path: str, database_url: str | None) -> BaseStore:
    if storage == "postgres":
        if not database_url:
            raise ValueError("DATABASE_URL is required for postgres storage")
        return PostgresStore(database_url)
    if storage == "sqlite":
        return SQLiteStore(sqlite_path)
    if storage == "json":
        return JsonFileStore(data_dir)
    raise ValueError(f"Unknown storage backend: {storage}")
