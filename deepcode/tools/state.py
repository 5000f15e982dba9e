"""Session-keyed state shared between tool calls."""

import os
import threading
from pathlib import Path


def normalize_path(path: Path | str) -> str:
    """Normalize an absolute path for table lookups without resolving symlinks."""
    return os.path.normpath(os.path.abspath(str(path)))


class ReadTracker:
    """Which files each session has read.

    Written by the read tool and checked by write/edit before they touch an
    existing file. Lives for the process only.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._read: dict[str, set[str]] = {}

    def mark_read(self, session_id: str, path: Path | str) -> None:
        if not session_id or not str(path):
            return
        key = normalize_path(path)
        with self._lock:
            self._read.setdefault(session_id, set()).add(key)

    def was_read(self, session_id: str, path: Path | str) -> bool:
        if not session_id or not str(path):
            return False
        key = normalize_path(path)
        with self._lock:
            return key in self._read.get(session_id, set())

    def forget_session(self, session_id: str) -> None:
        with self._lock:
            self._read.pop(session_id, None)


class WorkingDirectories:
    """Last known shell working directory per session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._dirs: dict[str, str] = {}

    def get(self, session_id: str, fallback: Path | str) -> str:
        with self._lock:
            return self._dirs.get(session_id, str(fallback))

    def set(self, session_id: str, cwd: Path | str) -> None:
        with self._lock:
            self._dirs[session_id] = str(cwd)

    def forget_session(self, session_id: str) -> None:
        with self._lock:
            self._dirs.pop(session_id, None)
