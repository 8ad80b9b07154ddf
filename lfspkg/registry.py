# lfspkg/registry.py
"""
registry.py - install registry

Files under the registry directory (paths.db_dir):
  installed.db               append-only history, one "name version YYYY-mm-dd HH:MM:SS" per line
  <name>-<version>.files     manifest: every file, symlink and directory of the staging root
  registry.sqlite3           current state: latest registered version per package name

All writes happen under an exclusive flock on <db_dir>/.lock.
"""

from __future__ import annotations

import os
from pathlib import Path
from dataclasses import dataclass
from typing import Dict, List, Optional

from lfspkg.config import Config, get_config
from lfspkg.db import DB, DBError
from lfspkg.errors import RegistrationError
from lfspkg.locks import file_lock
from lfspkg.logging import get_logger, stamp
from lfspkg.pkgtool import staging_entries

logger = get_logger("registry")

LOG_NAME = "installed.db"
SQLITE_NAME = "registry.sqlite3"

MIGRATIONS = [
    (1, "installed", """
        CREATE TABLE IF NOT EXISTS installed (
            name TEXT PRIMARY KEY,
            version TEXT NOT NULL,
            installed_at TEXT NOT NULL,
            manifest TEXT NOT NULL,
            files INTEGER NOT NULL DEFAULT 0
        );
    """),
]


@dataclass(frozen=True)
class InstallRecord:
    name: str
    version: str
    timestamp: str
    manifest: Optional[Path] = None

    def line(self) -> str:
        return f"{self.name} {self.version} {self.timestamp}"


class InstallRegistry:
    def __init__(self, db_dir: Optional[Path] = None, cfg: Optional[Config] = None):
        cfg = cfg or get_config()
        self.db_dir = Path(db_dir) if db_dir else cfg.path_for("db_dir")
        self.log_path = self.db_dir / LOG_NAME
        self._db: Optional[DB] = None

    def manifest_path(self, name: str, version: str) -> Path:
        return self.db_dir / f"{name}-{version}.files"

    def _state(self) -> DB:
        if self._db is None:
            db = DB(self.db_dir / SQLITE_NAME)
            db.apply_migrations(MIGRATIONS)
            self._db = db
        return self._db

    def close(self) -> None:
        if self._db is not None:
            self._db.close()
            self._db = None

    # ----------------------------
    # Writes
    # ----------------------------
    def register(self, name: str, version: str, staging_root: Path) -> InstallRecord:
        """Write the manifest of staging_root and append the install record."""
        staging_root = Path(staging_root)
        if not staging_root.is_dir():
            raise RegistrationError(f"staging root not found: {staging_root}")
        manifest = self.manifest_path(name, version)
        try:
            self.db_dir.mkdir(parents=True, exist_ok=True)
            with file_lock(self.db_dir / ".lock"):
                entries = staging_entries(staging_root)
                tmp = manifest.with_name(manifest.name + ".tmp")
                tmp.write_text("".join(f"{e}\n" for e in entries), encoding="utf-8")
                os.replace(tmp, manifest)
                record = InstallRecord(name=name, version=version, timestamp=stamp(), manifest=manifest)
                with open(self.log_path, "a", encoding="utf-8") as fh:
                    fh.write(record.line() + "\n")
                with self._state().transaction() as cur:
                    cur.execute(
                        "INSERT INTO installed (name, version, installed_at, manifest, files) VALUES (?, ?, ?, ?, ?) "
                        "ON CONFLICT(name) DO UPDATE SET version=excluded.version, "
                        "installed_at=excluded.installed_at, manifest=excluded.manifest, files=excluded.files",
                        (name, version, record.timestamp, str(manifest), len(entries)),
                    )
        except (OSError, DBError) as e:
            raise RegistrationError(f"cannot register {name}-{version}: {e}") from e
        logger.info("registered %s-%s (manifest %s, %d entries)", name, version, manifest, len(entries))
        return record

    # ----------------------------
    # Reads
    # ----------------------------
    def history(self) -> List[InstallRecord]:
        """Every line of the append-only log, oldest first."""
        if not self.log_path.is_file():
            return []
        out: List[InstallRecord] = []
        for raw in self.log_path.read_text(encoding="utf-8").splitlines():
            parts = raw.split(None, 2)
            if len(parts) < 2:
                logger.debug("skipping malformed registry line: %r", raw)
                continue
            name, version = parts[0], parts[1]
            out.append(InstallRecord(name=name, version=version,
                                     timestamp=parts[2] if len(parts) > 2 else "",
                                     manifest=self.manifest_path(name, version)))
        return out

    def installed(self) -> List[Dict[str, object]]:
        """Current state: one row per package name, latest registration wins."""
        if not (self.db_dir / SQLITE_NAME).exists():
            return []
        rows = self._state().fetchall("SELECT name, version, installed_at, manifest, files FROM installed ORDER BY name")
        return [dict(r) for r in rows]

    def manifest(self, name: str, version: str) -> List[str]:
        path = self.manifest_path(name, version)
        if not path.is_file():
            raise RegistrationError(f"no manifest for {name}-{version}")
        return [line for line in path.read_text(encoding="utf-8").splitlines() if line]
