"""
Sessions - Session object and in-memory store.

The pipeline only needs a session id plus a dict-like data bag: the session
guard reads the principal id from it and the CSRF manager stores its token
there.
"""

from __future__ import annotations

import asyncio
import secrets
from collections import OrderedDict
from typing import Any, Dict, Optional


class Session:
    """
    Server-side session.

    Args:
        id: Opaque session identifier (random when omitted)
        data: Initial session data
    """

    __slots__ = ("id", "data", "_dirty")

    def __init__(self, id: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        self.id = id or secrets.token_urlsafe(32)
        self.data: Dict[str, Any] = dict(data or {})
        self._dirty = False

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def __repr__(self) -> str:
        return f"Session(id={self.id[:8]}..., keys={sorted(self.data)})"

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value
        self._dirty = True

    def delete(self, key: str) -> None:
        if key in self.data:
            del self.data[key]
            self._dirty = True

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    def mark_clean(self) -> None:
        self._dirty = False


class MemorySessionStore:
    """
    In-memory session storage for development and testing.

    Example:
        >>> store = MemorySessionStore(max_sessions=10000)
        >>> await store.save(session)
        >>> loaded = await store.load(session.id)
        >>> assert loaded.id == session.id
    """

    def __init__(self, max_sessions: int = 10000):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, Session]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def load(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions.move_to_end(session_id)
            return session

    async def save(self, session: Session) -> None:
        async with self._lock:
            if session.id not in self._sessions and len(self._sessions) >= self.max_sessions:
                self._sessions.popitem(last=False)
            self._sessions[session.id] = session
            self._sessions.move_to_end(session.id)
            session.mark_clean()

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)

    async def create(self, data: Optional[Dict[str, Any]] = None) -> Session:
        session = Session(data=data)
        await self.save(session)
        return session

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["Session", "MemorySessionStore"]
