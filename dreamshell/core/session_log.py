"""
Session Log - append-only, XML-escaped stdio transcript per session.

Each session has one file under the sessions directory:

    <uuid>_stdio.xml

holding one element per line:

    <message timestamp="2026-01-01T12:00:00.000000+00:00">escaped text</message>

Key properties:
- An in-memory cache mirrors every file; cache keys ARE the session registry
- append() writes cache then disk in the same call, under one lock
- load_all() rebuilds the cache from disk on startup so sessions survive restarts
- Listeners (a future streaming transport) receive every appended entry
"""

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional, Protocol
from xml.sax.saxutils import escape, unescape

from dreamshell.lib.errors import IOFailure, UnknownSession

logger = logging.getLogger(__name__)

TRANSCRIPT_SUFFIX = "_stdio.xml"

# escape() handles & < >; quotes need explicit entities
_ESCAPE_ENTITIES = {'"': "&quot;", "'": "&apos;"}
_UNESCAPE_ENTITIES = {"&quot;": '"', "&apos;": "'"}

_MESSAGE_RE = re.compile(r'<message timestamp="([^"]*)">(.*?)</message>', re.DOTALL)


def escape_message(text: str) -> str:
    """Escape & < > " ' for inclusion in a transcript element."""
    return escape(text, _ESCAPE_ENTITIES)


def unescape_message(text: str) -> str:
    return unescape(text, _UNESCAPE_ENTITIES)


@dataclass(frozen=True)
class LogEntry:
    """One transcript line. `message` is stored escaped."""

    timestamp: datetime
    message: str

    @classmethod
    def create(cls, text: str, timestamp: Optional[datetime] = None) -> "LogEntry":
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            message=escape_message(text),
        )

    @property
    def text(self) -> str:
        """The original, unescaped message."""
        return unescape_message(self.message)

    def to_xml(self) -> str:
        return f'<message timestamp="{self.timestamp.isoformat()}">{self.message}</message>\n'

    @classmethod
    def parse_many(cls, content: str) -> list["LogEntry"]:
        """Parse transcript file content back into entries, in file order."""
        return [
            cls(timestamp=datetime.fromisoformat(ts), message=message)
            for ts, message in _MESSAGE_RE.findall(content)
        ]


class TranscriptListener(Protocol):
    """Receiver for live transcript updates (e.g. a websocket connection)."""

    def on_entry(self, session_id: str, entry: LogEntry) -> None: ...

    def on_close(self, session_id: str, notice: str) -> None: ...


class SessionLog:
    """
    Transcript store with an in-memory cache kept in lockstep with disk.

    Thread-safe: the cache and listener table are guarded by one lock, so
    concurrent appends to the same session keep file order == cache order.
    """

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = sessions_dir
        self._cache: dict[str, list[LogEntry]] = {}
        self._listeners: dict[str, list[TranscriptListener]] = {}
        self._lock = threading.Lock()

    def path_for(self, session_id: str) -> Path:
        return self.sessions_dir / f"{session_id}{TRANSCRIPT_SUFFIX}"

    def load(self, session_id: str) -> None:
        """Read the on-disk transcript into the cache, or seed an empty entry.

        Idempotent: an already-cached session is left as is.
        """
        path = self.path_for(session_id)
        with self._lock:
            if session_id in self._cache:
                return
            if path.exists():
                try:
                    content = path.read_text(encoding="utf-8")
                except OSError as e:
                    raise IOFailure("read", path, e) from e
                self._cache[session_id] = LogEntry.parse_many(content)
            else:
                self._cache[session_id] = []

    def load_all(self) -> int:
        """Load every transcript in the sessions directory. Returns the count."""
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        count = 0
        for path in sorted(self.sessions_dir.glob(f"*{TRANSCRIPT_SUFFIX}")):
            session_id = path.name[: -len(TRANSCRIPT_SUFFIX)]
            if not session_id:
                continue
            self.load(session_id)
            count += 1
        return count

    def append(self, session_id: str, message: str) -> LogEntry:
        """
        Append one escaped, timestamped entry to cache and disk.

        The cache write is not rolled back if the disk write fails: an
        IOFailure means the two now disagree and needs investigating.
        """
        path = self.path_for(session_id)
        with self._lock:
            # Timestamp under the lock so file order is time order
            entry = LogEntry.create(message)
            self._cache.setdefault(session_id, []).append(entry)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(entry.to_xml())
            except OSError as e:
                raise IOFailure("append", path, e) from e
            listeners = list(self._listeners.get(session_id, ()))

        for listener in listeners:
            try:
                listener.on_entry(session_id, entry)
            except Exception as e:
                logger.warning(f"Dropping transcript listener for {session_id[:8]}: {e}")
                self.unsubscribe(session_id, listener)
        return entry

    def remove(self, session_id: str) -> None:
        """Delete the file, then evict the cache entry. A missing file is fine.

        If the delete fails the session stays registered, matching what
        load_all() would find on disk.
        """
        path = self.path_for(session_id)
        with self._lock:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise IOFailure("delete", path, e) from e
            self._cache.pop(session_id, None)

    def exists(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._cache

    def entries(self, session_id: str) -> list[LogEntry]:
        """Snapshot of a session's cached entries."""
        with self._lock:
            if session_id not in self._cache:
                raise UnknownSession(session_id)
            return list(self._cache[session_id])

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._cache)

    # --- Listeners ---

    def subscribe(self, session_id: str, listener: TranscriptListener) -> None:
        """Forward future appends for a known session to `listener`."""
        with self._lock:
            if session_id not in self._cache:
                raise UnknownSession(session_id)
            self._listeners.setdefault(session_id, []).append(listener)

    def unsubscribe(self, session_id: str, listener: TranscriptListener) -> None:
        """Deregister a listener. Has no effect on the session itself."""
        with self._lock:
            listeners = self._listeners.get(session_id)
            if not listeners:
                return
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                del self._listeners[session_id]

    def close_listeners(self, session_id: str, notice: str) -> None:
        """Send a closing notice to every listener of a session and drop them."""
        with self._lock:
            listeners = self._listeners.pop(session_id, [])
        for listener in listeners:
            try:
                listener.on_close(session_id, notice)
            except Exception as e:
                logger.warning(f"Transcript listener failed to close for {session_id[:8]}: {e}")


class SessionRegistry:
    """Read-only view of known session ids, backed by the SessionLog cache."""

    def __init__(self, session_log: SessionLog):
        self._log = session_log

    def contains(self, session_id: str) -> bool:
        return self._log.exists(session_id)

    def ids(self) -> list[str]:
        return self._log.session_ids()

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and self.contains(session_id)

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids())

    def __len__(self) -> int:
        return len(self.ids())
