"""Execution-session ownership and per-session serialization."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Records which authenticated principal owns each execution session.

    Sessions the server created itself are remembered so that releasing
    them also closes them; sessions claimed from an external backend are
    only released.
    """

    def __init__(self) -> None:
        self._owners: dict[str, str] = {}
        self._created: set[str] = set()

    def claim(self, session_id: str, principal: str, *, created: bool = False) -> bool:
        """Assign an unowned session to ``principal``.

        Returns:
            True if the principal now owns the session, False if another
            principal already does.
        """
        owner = self._owners.setdefault(session_id, principal)
        if owner != principal:
            return False
        if created:
            self._created.add(session_id)
        return True

    def owner_of(self, session_id: str) -> str | None:
        return self._owners.get(session_id)

    def was_created(self, session_id: str) -> bool:
        return session_id in self._created

    def release(self, session_id: str) -> None:
        self._owners.pop(session_id, None)
        self._created.discard(session_id)

    def sessions_of(self, principal: str) -> list[str]:
        return [sid for sid, owner in self._owners.items() if owner == principal]


class SessionLocks:
    """One FIFO lock per execution session.

    ``asyncio.Lock`` wakes waiters in acquisition order, so tool calls that
    target the same session run one at a time in the order they arrived.
    Locks for different sessions are independent.
    """

    def __init__(self) -> None:
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock_for(self, session_id: str) -> asyncio.Lock:
        return self._locks[session_id]

    def is_locked(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def discard(self, session_id: str) -> None:
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]
