# lfspkg/db.py
"""
db.py - small sqlite3 wrapper for lfspkg state

Features:
- Lazily opened connection with sqlite3.Row rows and safe pragmas
  (WAL journal, busy timeout, NORMAL synchronous)
- execute / fetchone / fetchall helpers that raise DBError
- transaction() context manager: commit on success, rollback on error
- Versioned migrations recorded in lfspkg_migrations
"""

from __future__ import annotations

import time
import sqlite3
import threading
import contextlib
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

from lfspkg.errors import LfspkgError
from lfspkg.logging import get_logger

_logger = get_logger("db")


class DBError(LfspkgError):
    """Any sqlite failure in lfspkg state databases."""


class DB:
    """
    Thin wrapper around one sqlite3 database file.

        db = DB(path)
        with db.transaction() as cur:
            cur.execute("INSERT ...", (...))
        rows = db.fetchall("SELECT ...")
    """

    def __init__(self, path: Path, timeout: float = 5.0, busy_timeout_ms: int = 5000) -> None:
        self._path = Path(path).expanduser()
        self._timeout = timeout
        self._busy_timeout_ms = busy_timeout_ms
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # ------------------------
    # Connection and pragmas
    # ------------------------
    def connect(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is not None:
                return self._conn
            self._path.parent.mkdir(parents=True, exist_ok=True)
            try:
                conn = sqlite3.connect(str(self._path), timeout=self._timeout)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode = WAL;")
                conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)};")
                conn.execute("PRAGMA synchronous = NORMAL;")
            except sqlite3.Error as e:
                raise DBError(f"cannot open database {self._path}: {e}") from e
            self._conn = conn
            _logger.debug("connected to %s", self._path)
            return conn

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            finally:
                self._conn = None

    # ------------------------
    # Statements
    # ------------------------
    def execute(self, sql: str, params: Optional[Sequence[Any]] = None, commit: bool = False) -> sqlite3.Cursor:
        conn = self.connect()
        try:
            cur = conn.execute(sql, tuple(params) if params is not None else ())
            if commit:
                conn.commit()
            return cur
        except sqlite3.Error as e:
            conn.rollback()
            raise DBError(f"SQL failed: {e} | {sql.strip()}") from e

    def executescript(self, script: str) -> None:
        conn = self.connect()
        try:
            conn.executescript(script)
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise DBError(f"SQL script failed: {e}") from e

    def fetchone(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[sqlite3.Row]:
        cur = self.execute(sql, params)
        try:
            return cur.fetchone()
        finally:
            cur.close()

    def fetchall(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[sqlite3.Row]:
        cur = self.execute(sql, params)
        try:
            return cur.fetchall()
        finally:
            cur.close()

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self.connect()
        with self._lock:
            cur = conn.cursor()
            try:
                yield cur
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise DBError(f"transaction failed: {e}") from e
            except BaseException:
                conn.rollback()
                raise
            finally:
                cur.close()

    # ------------------------
    # Migrations
    # ------------------------
    def current_version(self) -> int:
        self.execute("CREATE TABLE IF NOT EXISTS lfspkg_migrations "
                     "(version INTEGER PRIMARY KEY, name TEXT, applied_at TEXT)", commit=True)
        row = self.fetchone("SELECT MAX(version) AS v FROM lfspkg_migrations")
        return int(row["v"]) if row and row["v"] is not None else 0

    def apply_migrations(self, migrations: Iterable[Tuple[int, str, str]]) -> List[int]:
        """Apply (version, name, sql) migrations newer than the current version."""
        applied: List[int] = []
        with self._lock:
            current = self.current_version()
            for version, name, sql in sorted(migrations, key=lambda m: int(m[0])):
                if int(version) <= current:
                    continue
                _logger.debug("applying migration %s: %s", version, name)
                self.executescript(sql)
                self.execute("INSERT INTO lfspkg_migrations (version, name, applied_at) VALUES (?, ?, ?)",
                             (int(version), name, time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())),
                             commit=True)
                applied.append(int(version))
        return applied
