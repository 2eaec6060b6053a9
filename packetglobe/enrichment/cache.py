"""
PacketGlobe Intelligence Cache

Durable IP -> IntelligenceRecord store backed by SQLite.
Reads are served from memory; writes are batched and flushed explicitly.
"""

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

import structlog

from packetglobe.enrichment.models import IntelligenceRecord

logger = structlog.get_logger(__name__)


class PersistenceError(Exception):
    """Raised when the cache cannot be written to disk."""


_SCHEMA = """
CREATE TABLE IF NOT EXISTS ip_intelligence (
    ip TEXT PRIMARY KEY,
    record_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class IntelligenceCache:
    """
    Thread-safe intelligence cache with a SQLite backing file.

    Features:
    - Whole store loaded into memory on open
    - Dirty tracking, flushed in a single transaction
    - WAL journal so other processes can read while a flush runs
    - No expiry: entries are only ever overwritten
    - Hit/miss statistics
    """

    def __init__(self, path: Path | str):
        """
        Open (or create) the cache.

        An unreadable or corrupt store is logged and the cache starts empty.

        Args:
            path: SQLite file path
        """
        self.path = Path(path)
        self._records: dict[str, IntelligenceRecord] = {}
        self._dirty: set[str] = set()
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None

        self._stats = {
            "hits": 0,
            "misses": 0,
            "flushes": 0,
            "flushed_records": 0,
        }

        self._load()

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=30, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute(_SCHEMA)
        conn.commit()
        return conn

    def _load(self) -> None:
        try:
            self._conn = self._connect()
            rows = self._conn.execute(
                "SELECT ip, record_json FROM ip_intelligence"
            ).fetchall()
        except (sqlite3.Error, OSError) as e:
            logger.warning("cache_load_failed", path=str(self.path), error=str(e))
            return

        skipped = 0
        for ip, record_json in rows:
            try:
                self._records[ip] = IntelligenceRecord.from_dict(json.loads(record_json))
            except (ValueError, TypeError, AttributeError) as e:
                skipped += 1
                logger.warning("cache_entry_unreadable", ip=ip, error=str(e))

        logger.info(
            "cache_loaded",
            path=str(self.path),
            entries=len(self._records),
            skipped=skipped,
        )

    def get(self, ip: str) -> IntelligenceRecord | None:
        """
        Get the cached record for an IP.

        Counts towards hit/miss statistics.
        """
        with self._lock:
            record = self._records.get(ip)
            if record is None:
                self._stats["misses"] += 1
            else:
                self._stats["hits"] += 1
            return record

    def peek(self, ip: str) -> IntelligenceRecord | None:
        """Get the cached record without touching statistics."""
        with self._lock:
            return self._records.get(ip)

    def set(self, ip: str, record: IntelligenceRecord) -> None:
        """Store a record in memory and mark it for the next flush."""
        with self._lock:
            self._records[ip] = record
            self._dirty.add(ip)

    def snapshot(self, ips: Iterable[str] | None = None) -> Mapping[str, IntelligenceRecord]:
        """
        Read-only copy of the cache.

        Args:
            ips: Restrict the copy to these addresses (missing ones are omitted)
        """
        with self._lock:
            if ips is None:
                data = dict(self._records)
            else:
                data = {ip: self._records[ip] for ip in ips if ip in self._records}
        return MappingProxyType(data)

    @property
    def pending_writes(self) -> int:
        """Number of records not yet flushed."""
        with self._lock:
            return len(self._dirty)

    def flush(self) -> int:
        """
        Write all dirty records to disk in one transaction.

        Returns:
            Number of records written

        Raises:
            PersistenceError: If the store cannot be written. Dirty records
                are kept so a later flush can retry them.
        """
        with self._lock:
            if not self._dirty:
                return 0

            now = datetime.now(timezone.utc).isoformat()
            rows = [
                (ip, json.dumps(self._records[ip].to_dict()), now)
                for ip in self._dirty
            ]

            try:
                if self._conn is None:
                    self._conn = self._connect()
                with self._conn:
                    self._conn.executemany(
                        "INSERT OR REPLACE INTO ip_intelligence (ip, record_json, updated_at) "
                        "VALUES (?, ?, ?)",
                        rows,
                    )
            except (sqlite3.Error, OSError) as e:
                logger.error(
                    "cache_flush_failed",
                    path=str(self.path),
                    pending=len(rows),
                    error=str(e),
                )
                raise PersistenceError(f"Failed to write intelligence cache: {e}") from e

            self._dirty.clear()
            self._stats["flushes"] += 1
            self._stats["flushed_records"] += len(rows)

        logger.debug("cache_flushed", path=str(self.path), records=len(rows))
        return len(rows)

    def clear(self) -> None:
        """Drop every entry, in memory and on disk."""
        with self._lock:
            count = len(self._records)
            self._records.clear()
            self._dirty.clear()
            if self._conn is not None:
                try:
                    with self._conn:
                        self._conn.execute("DELETE FROM ip_intelligence")
                except sqlite3.Error as e:
                    raise PersistenceError(f"Failed to clear intelligence cache: {e}") from e

        logger.info("cache_cleared", entries=count)

    def close(self) -> None:
        """Close the underlying connection. Unflushed records are discarded."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __contains__(self, ip: object) -> bool:
        with self._lock:
            return ip in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = self._stats["hits"] / total if total > 0 else 0

            return {
                "size": len(self._records),
                "pending": len(self._dirty),
                "hits": self._stats["hits"],
                "misses": self._stats["misses"],
                "hit_rate": round(hit_rate, 3),
                "flushes": self._stats["flushes"],
                "flushed_records": self._stats["flushed_records"],
            }
