"""
Session persistence.

Two interchangeable stores behind one interface:
- InMemorySessionStore: TTL-bounded dict, for the web app and tests
- FileSessionStore: append-only JSON file per session revision, for
  audit trail and restart resilience

Both hand out a per-session-id lock so that at most one transition runs
per session at a time. The engine itself never locks.
"""

import json
import logging
import shutil
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

from pathrag.commands import DiagnosticSession

logger = logging.getLogger(__name__)

KEY_PREFIX = "pathrag:session:"
DEFAULT_TTL_SECONDS = 3600


class _KeyLock:
    """Lock for one session id plus the number of callers holding or waiting on it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class SessionStore(ABC):
    """Keyed, TTL-bounded session storage."""

    def __init__(self, ttl: int = DEFAULT_TTL_SECONDS, clock=time.time):
        self.ttl = ttl
        self.clock = clock
        self._locks: Dict[str, _KeyLock] = {}
        self._locks_guard = threading.Lock()

    @abstractmethod
    def save(self, session: DiagnosticSession) -> None:
        """Persist a session value (refreshes its TTL)."""

    @abstractmethod
    def load(self, session_id: str) -> Optional[DiagnosticSession]:
        """Latest session value, or None if unknown or expired."""

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove a session. Returns True if something was removed."""

    @abstractmethod
    def touch(self, session_id: str) -> bool:
        """Refresh the TTL. Returns False if the session is unknown."""

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        """
        Serialize transitions for one session id.

        Usage:
            with store.lock(session_id):
                session = store.load(session_id)
                ...
                store.save(new_session)
        """
        with self._locks_guard:
            key_lock = self._locks.get(session_id)
            if key_lock is None:
                key_lock = self._locks[session_id] = _KeyLock()
            key_lock.users += 1
        try:
            with key_lock.lock:
                yield
        finally:
            with self._locks_guard:
                key_lock.users -= 1
                # Entries live only while someone holds or waits on them
                if key_lock.users == 0:
                    del self._locks[session_id]

    @staticmethod
    def key(session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}"


class InMemorySessionStore(SessionStore):
    """
    Process-local store.

    Sessions are stored as JSON dicts, never as live objects, so callers
    can't share references across requests.
    """

    def __init__(self, ttl: int = DEFAULT_TTL_SECONDS, clock=time.time):
        super().__init__(ttl=ttl, clock=clock)
        self._entries: Dict[str, Tuple[dict, float]] = {}
        self._entries_guard = threading.Lock()
        logger.info(f"InMemorySessionStore initialized (ttl={ttl}s)")

    def save(self, session: DiagnosticSession) -> None:
        with self._entries_guard:
            self._entries[self.key(session.session_id)] = (session.to_json(), self.clock() + self.ttl)

    def load(self, session_id: str) -> Optional[DiagnosticSession]:
        key = self.key(session_id)
        with self._entries_guard:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, expires_at = entry
            if expires_at <= self.clock():
                del self._entries[key]
                logger.info(f"Session {session_id} expired")
                return None
        return DiagnosticSession.from_json(data)

    def delete(self, session_id: str) -> bool:
        with self._entries_guard:
            return self._entries.pop(self.key(session_id), None) is not None

    def touch(self, session_id: str) -> bool:
        key = self.key(session_id)
        with self._entries_guard:
            entry = self._entries.get(key)
            if entry is None or entry[1] <= self.clock():
                return False
            self._entries[key] = (entry[0], self.clock() + self.ttl)
            return True

    def purge_expired(self) -> int:
        """Drop expired sessions. Returns the number removed."""
        now = self.clock()
        with self._entries_guard:
            expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class FileSessionStore(SessionStore):
    """
    Append-only revision files.

    Layout:
        outputs/sessions/SESSION-session_123_abc/
            SESSION-session_123_abc_REV-000.json
            SESSION-session_123_abc_REV-001.json
            ...

    Design:
    - Append-only (never overwrite)
    - One file per session revision
    - TTL measured from the newest file's modification time
    """

    def __init__(self, base_dir: str = "outputs/sessions", ttl: int = DEFAULT_TTL_SECONDS,
                 clock=time.time):
        super().__init__(ttl=ttl, clock=clock)
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"FileSessionStore initialized: {self.base_dir}")

    def save(self, session: DiagnosticSession) -> str:
        """
        Save a session revision to a new file.

        Returns:
            str: Absolute path to saved file

        Raises:
            FileExistsError: If this revision was already saved (double-submit)
            ValueError: If the session id is not a plain file name
        """
        session_dir = self._session_dir(session.session_id)
        if session_dir is None:
            raise ValueError(f"Invalid session id: {session.session_id!r}")
        session_dir.mkdir(exist_ok=True)

        filename = f"SESSION-{session.session_id}_REV-{session.revision:03d}.json"
        filepath = session_dir / filename

        if filepath.exists():
            raise FileExistsError(
                f"Revision file already exists: {filepath}. "
                f"This indicates a double-submit or revision error."
            )

        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(session.to_json(), f, indent=2, ensure_ascii=False)

        logger.info(f"Saved revision {session.revision} for {session.session_id}")
        return str(filepath.absolute())

    def load(self, session_id: str) -> Optional[DiagnosticSession]:
        latest = self._latest_file(session_id)
        if latest is None:
            return None

        if latest.stat().st_mtime + self.ttl <= self.clock():
            logger.info(f"Session {session_id} expired")
            return None

        with open(latest, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return DiagnosticSession.from_json(data)

    def delete(self, session_id: str) -> bool:
        session_dir = self._session_dir(session_id)
        if session_dir is None or not session_dir.exists():
            return False
        shutil.rmtree(session_dir)
        return True

    def touch(self, session_id: str) -> bool:
        latest = self._latest_file(session_id)
        if latest is None:
            return False
        now = self.clock()
        latest_mtime = latest.stat().st_mtime
        if latest_mtime + self.ttl <= now:
            return False
        latest.touch()
        return True

    def revision_count(self, session_id: str) -> int:
        session_dir = self._session_dir(session_id)
        if session_dir is None or not session_dir.exists():
            return 0
        return len(list(session_dir.glob(f"SESSION-{session_id}_REV-*.json")))

    def _session_dir(self, session_id: str) -> Optional[Path]:
        """Directory for a session id, or None for ids that aren't plain file names."""
        if not session_id or '/' in session_id or '\\' in session_id or session_id.startswith('.'):
            return None
        return self.base_dir / f"SESSION-{session_id}"

    def _latest_file(self, session_id: str) -> Optional[Path]:
        session_dir = self._session_dir(session_id)
        if session_dir is None or not session_dir.exists():
            return None
        files = list(session_dir.glob(f"SESSION-{session_id}_REV-*.json"))
        if not files:
            return None
        return max(files, key=lambda p: int(p.stem.rsplit('_REV-', 1)[1]))


def create_session_store(config) -> SessionStore:
    """Build the store selected by config.session_backend."""
    if config.session_backend == "file":
        return FileSessionStore(base_dir=config.session_dir, ttl=config.session_ttl)
    return InMemorySessionStore(ttl=config.session_ttl)
