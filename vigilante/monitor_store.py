"""Persistent store of the monitor's latest verified epoch and BTC height."""

from __future__ import annotations

import sqlite3
import struct
import threading
from os import PathLike
from typing import Optional, Union

_EPOCHS_BUCKET = "epoch"
_HEIGHT_BUCKET = "height"
_LATEST_EPOCH_KEY = b"ltsepoch"
_LATEST_HEIGHT_KEY = b"ltsheight"

_UINT64 = struct.Struct(">Q")


class CorruptedDBError(Exception):
    """The on-disk layout of the store is not what it should be."""


def uint64_to_bytes(value: int) -> bytes:
    """Encode an unsigned 64-bit integer as 8 big-endian bytes."""
    if not 0 <= value < 1 << 64:
        raise ValueError(f"value {value} is out of uint64 range")
    return _UINT64.pack(value)


def uint64_from_bytes(data: bytes) -> int:
    """Decode 8 big-endian bytes into an unsigned integer."""
    if len(data) != 8:
        raise ValueError(f"invalid byte slice length: expected 8, got {len(data)}")
    return _UINT64.unpack(data)[0]


class MonitorStore:
    """Key-value store on SQLite, with one bucket for epochs and one for heights."""

    def __init__(self, path: Union[str, PathLike]) -> None:
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.execute("CREATE TABLE IF NOT EXISTS buckets (name TEXT PRIMARY KEY)")
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS entries ("
                "bucket TEXT NOT NULL, key BLOB NOT NULL, value BLOB NOT NULL, "
                "PRIMARY KEY (bucket, key))"
            )
            self._conn.executemany(
                "INSERT OR IGNORE INTO buckets (name) VALUES (?)",
                [(_EPOCHS_BUCKET,), (_HEIGHT_BUCKET,)],
            )

    def __enter__(self) -> "MonitorStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying database."""
        with self._lock:
            self._conn.close()

    def latest_epoch(self) -> Optional[int]:
        """The last stored epoch, or None if none was stored."""
        return self._get(_LATEST_EPOCH_KEY, _EPOCHS_BUCKET)

    def latest_height(self) -> Optional[int]:
        """The last stored BTC height, or None if none was stored."""
        return self._get(_LATEST_HEIGHT_KEY, _HEIGHT_BUCKET)

    def put_latest_epoch(self, epoch: int) -> None:
        self._put(_LATEST_EPOCH_KEY, epoch, _EPOCHS_BUCKET)

    def put_latest_height(self, height: int) -> None:
        self._put(_LATEST_HEIGHT_KEY, height, _HEIGHT_BUCKET)

    def _bucket_exists(self, bucket: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM buckets WHERE name = ?", (bucket,)).fetchone()
        return row is not None

    def _get(self, key: bytes, bucket: str) -> Optional[int]:
        with self._lock:
            if not self._bucket_exists(bucket):
                raise CorruptedDBError("db is corrupted")
            row = self._conn.execute(
                "SELECT value FROM entries WHERE bucket = ? AND key = ?", (bucket, key)
            ).fetchone()
        if row is None:
            return None
        return uint64_from_bytes(bytes(row[0]))

    def _put(self, key: bytes, value: int, bucket: str) -> None:
        encoded = uint64_to_bytes(value)
        with self._lock, self._conn:
            if not self._bucket_exists(bucket):
                raise CorruptedDBError("db is corrupted")
            self._conn.execute(
                "INSERT OR REPLACE INTO entries (bucket, key, value) VALUES (?, ?, ?)",
                (bucket, key, encoded),
            )