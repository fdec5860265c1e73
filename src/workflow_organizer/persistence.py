"""Snapshot stores and the debounced autosaver.

A store maps a logical key to an opaque record string.  The organizer never
waits on it: mutations schedule a write through :class:`DebouncedSaver`, which
coalesces bursts into one write of the latest record.  A failed write is
reported, never raised into the mutation that caused it, and never rolled
back; the in-memory model stays authoritative.
"""

from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .errors import CorruptSnapshot, PersistenceWriteFailed
from .io_utils import FileLock, _atomic_write_text
from .model import now_iso

TREE_KEY = "workspace_tree"
PIPELINE_KEY = "pipeline_state"
DEFAULT_AUTOSAVE_DELAY = 2.0

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def _check_key(key: str) -> str:
    if not _KEY_RE.match(key or "") or key.startswith("."):
        raise ValueError(f"Invalid snapshot key {key!r}")
    return key


class SnapshotStore(ABC):
    @abstractmethod
    def load(self, key: str) -> Optional[str]:
        """Return the stored record, or None when nothing was saved yet."""
        raise NotImplementedError

    @abstractmethod
    def save(self, key: str, record: str) -> bool:
        raise NotImplementedError

    def quarantine(self, key: str) -> None:
        """Set a record that failed to decode aside before it gets overwritten."""
        return None


class MemorySnapshotStore(SnapshotStore):
    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._records: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[str]:
        with self._lock:
            return self._records.get(key)

    def save(self, key: str, record: str) -> bool:
        with self._lock:
            self._records[_check_key(key)] = record
        return True

    def quarantine(self, key: str) -> None:
        with self._lock:
            record = self._records.pop(key, None)
            if record is not None:
                self._records[f"{key}.corrupt"] = record


class FileSnapshotStore(SnapshotStore):
    """One YAML file per key under *state_dir*, written atomically."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    def path_for(self, key: str) -> Path:
        return self.state_dir / f"{_check_key(key)}.yaml"

    def _lock(self, key: str) -> FileLock:
        return FileLock(self.state_dir / f"{_check_key(key)}.lock")

    def load(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with self._lock(key):
                return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise CorruptSnapshot(f"{path.name}: {exc.__class__.__name__}: {exc}", key=key) from exc

    def save(self, key: str, record: str) -> bool:
        path = self.path_for(key)
        try:
            with self._lock(key):
                _atomic_write_text(path, record)
        except OSError as exc:
            logger.error("Failed to write {}: {}", path, exc)
            return False
        return True

    def quarantine(self, key: str) -> None:
        path = self.path_for(key)
        if not path.exists():
            return
        stamp = now_iso().replace(":", "").replace("+", "_")
        backup = path.with_name(f"{path.stem}.corrupt-{stamp}{path.suffix}")
        with self._lock(key):
            path.replace(backup)
        logger.warning("Moved unreadable snapshot {} to {}", path.name, backup.name)


class DebouncedSaver:
    """Write the latest record for one key after a quiet period.

    Parameters
    ----------
    store:
        Destination store.
    key:
        Logical key written on every flush.
    delay:
        Quiet period in seconds; each ``schedule`` restarts it.
    on_failure:
        Called with a :class:`PersistenceWriteFailed` when ``save`` returns
        False or raises.
    """

    def __init__(
        self,
        store: SnapshotStore,
        key: str,
        *,
        delay: float = DEFAULT_AUTOSAVE_DELAY,
        on_failure: Optional[Callable[[PersistenceWriteFailed], None]] = None,
    ) -> None:
        self.store = store
        self.key = _check_key(key)
        self.delay = max(float(delay), 0.0)
        self.on_failure = on_failure
        self.writes = 0
        self.failures = 0
        self.last_error: Optional[PersistenceWriteFailed] = None
        self._pending: Optional[str] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        # Held across pop + write so an older record can never land after a newer one.
        self._write_lock = threading.Lock()
        self._closed = False

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending is not None

    def schedule(self, record: str) -> None:
        with self._lock:
            self._pending = record
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if self._closed:
                immediate = True
            else:
                immediate = False
                self._timer = threading.Timer(self.delay, self._fire)
                self._timer.daemon = True
                self._timer.start()
        if immediate:
            self.flush()

    def _take(self) -> Optional[str]:
        with self._lock:
            record, self._pending = self._pending, None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            return record

    def _fire(self) -> None:
        with self._write_lock:
            record = self._take()
            if record is not None:
                self._write(record)

    def flush(self) -> bool:
        """Write any pending record now; returns False if that write failed."""
        with self._write_lock:
            record = self._take()
            if record is None:
                return True
            return self._write(record)

    def close(self) -> bool:
        with self._lock:
            self._closed = True
        return self.flush()

    def _write(self, record: str) -> bool:
        reason = "store reported failure"
        try:
            ok = bool(self.store.save(self.key, record))
        except Exception as exc:
            ok = False
            reason = f"{exc.__class__.__name__}: {exc}"
        if ok:
            self.writes += 1
            logger.debug("Saved snapshot {}", self.key)
            return True
        self.failures += 1
        error = PersistenceWriteFailed(f"Could not save {self.key}: {reason}", key=self.key)
        self.last_error = error
        logger.warning("Autosave of {} failed: {}", self.key, reason)
        if self.on_failure is not None:
            self.on_failure(error)
        return False
