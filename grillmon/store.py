"""
store.py — Durable session store for Grill Monitor.

The authoritative, server-side copy of the cook session. All devices
ultimately reconcile against this record.

Layout under the storage root (chosen by settings.environment):
  current.json                      → the current session record
  backups/session-<UTC stamp>-NNN.json → point-in-time copies, rotated
  .session.lock                     → advisory write lock (marker file)

Design principles:
  - Every write happens under the marker-file lock; the lock is released on
    every exit path, including exceptions
  - Records are written to a temp file in the same directory and moved into
    place with os.replace(), so a concurrent reader sees the old record or
    the new one, never a partial file
  - I/O failures are logged and returned as None / False / WriteStatus —
    nothing here raises to the caller
  - Lock contention is reported as WriteStatus.locked, distinct from a
    failed write, so callers can skip the cycle and retry later
  - Logs only session_id / device_id / paths — never session contents

All methods are synchronous; async callers wrap them in asyncio.to_thread()
(see session/backends.py).
"""
import json
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from grillmon.session.history import UtcDatetime, utc_now
from grillmon.session.schemas import SCHEMA_VERSION, GrillSession

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
CURRENT_FILE = "current.json"
BACKUP_DIR = "backups"
LOCK_FILE = ".session.lock"
BACKUP_PREFIX = "session-"

SESSION_MAX_AGE = timedelta(hours=24)
MAX_BACKUPS = 50
STALE_LOCK_SECONDS = 60.0   # a marker older than this belongs to a crashed writer


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

class WriteStatus(str, Enum):
    saved = "saved"
    locked = "locked"      # another writer holds the lock; skip and retry later
    failed = "failed"      # I/O or serialization error, logged


@dataclass(frozen=True)
class SaveResult:
    status: WriteStatus
    session: Optional[GrillSession] = None   # the session as written (restamped)

    @property
    def ok(self) -> bool:
        return self.status is WriteStatus.saved


class SessionRecord(BaseModel):
    """On-disk envelope: the session plus writer metadata."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        ser_json_inf_nan="constants",
    )

    session: GrillSession
    device_id: str
    synced_at: UtcDatetime
    schema_version: int = SCHEMA_VERSION


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class DurableSessionStore:
    def __init__(
        self,
        root: Path | str,
        device_id: str = "server",
        max_age: timedelta = SESSION_MAX_AGE,
        max_backups: int = MAX_BACKUPS,
        clock: Callable[[], datetime] = utc_now,
        stale_lock_seconds: float = STALE_LOCK_SECONDS,
    ) -> None:
        self.root = Path(root)
        self.device_id = device_id
        self.max_age = max_age
        self.max_backups = max_backups
        self.stale_lock_seconds = stale_lock_seconds
        self._clock = clock

    @property
    def current_path(self) -> Path:
        return self.root / CURRENT_FILE

    @property
    def backup_dir(self) -> Path:
        return self.root / BACKUP_DIR

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILE

    def initialize(self) -> bool:
        """Create the storage directories. Called once at server startup."""
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Could not create session storage root=%s: %s", self.root, exc)
            return False
        logger.info("Session storage ready root=%s", self.root)
        return True

    # ------------------------------------------------------------------
    # Advisory lock
    # ------------------------------------------------------------------

    def acquire_lock(self) -> bool:
        """
        Create the lock marker. Non-blocking: returns False immediately if the
        marker exists. A marker older than stale_lock_seconds is assumed to be
        left behind by a crashed writer and is removed once.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            if not self._break_stale_lock():
                logger.info("Session store busy lock=%s", self.lock_path)
                return False
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except OSError:
                return False
        except OSError as exc:
            logger.error("Could not create lock marker %s: %s", self.lock_path, exc)
            return False

        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(f"{self.device_id} {os.getpid()}\n")
        return True

    def release_lock(self) -> None:
        try:
            self.lock_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Could not remove lock marker %s: %s", self.lock_path, exc)

    def _break_stale_lock(self) -> bool:
        try:
            age = time.time() - self.lock_path.stat().st_mtime
        except OSError:
            return False
        if age < self.stale_lock_seconds:
            return False
        logger.warning("Removing stale lock marker %s age=%.0fs", self.lock_path, age)
        self.release_lock()
        return True

    # ------------------------------------------------------------------
    # Session record operations
    # ------------------------------------------------------------------

    def save(self, session: GrillSession, device_id: Optional[str] = None) -> SaveResult:
        """
        Back up the existing record, then atomically write the new one.
        last_saved is restamped to now; the written session is returned.
        device_id overrides the store's own identity for this record.
        """
        writer = device_id or self.device_id
        if not self.acquire_lock():
            return SaveResult(WriteStatus.locked)

        try:
            self._backup_current()
            now = self._clock()
            stamped = session.model_copy(update={"last_saved": now})
            record = SessionRecord(session=stamped, device_id=writer, synced_at=now)
            self._write_atomic(self.current_path, record.model_dump_json(by_alias=True, indent=2))
        except (OSError, ValueError) as exc:
            logger.error("Failed to save session session_id=%s: %s", session.id, exc)
            return SaveResult(WriteStatus.failed)
        finally:
            self.release_lock()

        logger.info("Saved session session_id=%s device_id=%s", stamped.id, writer)
        return SaveResult(WriteStatus.saved, stamped)

    def load(self) -> Optional[GrillSession]:
        """
        Read the current record. Missing, malformed and expired records are
        all reported as None.
        """
        try:
            raw = self.current_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("Failed to read session record %s: %s", self.current_path, exc)
            return None

        session = self._parse_record(raw)
        if session is None:
            return None

        if session.is_expired(self._clock(), self.max_age):
            logger.info("Ignoring expired session session_id=%s last_saved=%s",
                        session.id, session.last_saved.isoformat())
            return None
        return session

    def clear(self, include_backups: bool = False) -> bool:
        """Delete the current record. A missing record is not an error."""
        try:
            self.current_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to delete session record %s: %s", self.current_path, exc)
            return False
        logger.info("Cleared session record root=%s", self.root)
        if include_backups:
            return self.clear_backups()
        return True

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def list_backups(self) -> List[Path]:
        """Backup files, oldest first."""
        if not self.backup_dir.is_dir():
            return []
        return sorted(self.backup_dir.glob(f"{BACKUP_PREFIX}*.json"))

    def clear_backups(self) -> bool:
        ok = True
        for path in self.list_backups():
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.error("Failed to delete backup %s: %s", path, exc)
                ok = False
        return ok

    def _backup_current(self) -> None:
        # Best effort: a failed backup never blocks the save
        if not self.current_path.exists():
            return
        stamp = self._clock().strftime("%Y%m%dT%H%M%S%fZ")
        target = self.backup_dir / f"{BACKUP_PREFIX}{stamp}"
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            # counter keeps same-instant backups unique and in name order
            suffixes = [
                path.stem.rsplit("-", 1)[1]
                for path in self.backup_dir.glob(f"{BACKUP_PREFIX}{stamp}-*.json")
            ]
            counter = max((int(s) for s in suffixes if s.isdigit()), default=-1) + 1
            target = self.backup_dir / f"{BACKUP_PREFIX}{stamp}-{counter:03d}.json"
            shutil.copy2(self.current_path, target)
        except (OSError, ValueError) as exc:
            logger.warning("Session backup failed target=%s: %s", target, exc)
            return
        self._prune_backups()

    def _prune_backups(self) -> None:
        backups = self.list_backups()
        excess = len(backups) - self.max_backups
        for path in backups[:max(excess, 0)]:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not rotate backup %s: %s", path, exc)

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------

    def _write_atomic(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _parse_record(self, raw: str) -> Optional[GrillSession]:
        try:
            data = json.loads(raw)
            if isinstance(data, dict) and "session" in data:
                return SessionRecord.model_validate(data).session
            # schema version 1: the bare session object
            return GrillSession.model_validate(data)
        except (ValueError, ValidationError) as exc:
            logger.warning("Malformed session record %s: %s", self.current_path, exc)
            return None
