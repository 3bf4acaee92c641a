"""
sailsetu/services/session_service.py

Purpose: Session management (in-memory, per channel)

- One UserSession per chat key, created on first contact
- Session reset to the channel's idle step
- Per-key locks so one user's turns never interleave
- No persistence: a restart drops every session
"""

import asyncio
from typing import Callable, Dict, Optional, Tuple

from sailsetu.flow.states import UserSession, Step, Idle
from sailsetu.core.logging import get_logger

logger = get_logger(__name__)


class SessionStore:
    """
    In-memory map from a channel-specific user key to its UserSession.
    """

    def __init__(self, channel: str, idle_step: Callable[[], Step] = Idle):
        self.channel = channel
        self.idle_step = idle_step
        self._sessions: Dict[str, UserSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> Optional[UserSession]:
        return self._sessions.get(key)

    def has(self, key: str) -> bool:
        return key in self._sessions

    def get_or_create(self, key: str) -> Tuple[UserSession, bool]:
        """
        Returns the session for a key, creating it in the idle step.

        Args:
            key: Chat id / phone

        Returns:
            (session, created)
        """
        session = self._sessions.get(key)
        if session is not None:
            session.touch()
            return session, False

        session = UserSession(step=self.idle_step())
        self._sessions[key] = session
        logger.info(f"🆕 Created {self.channel} session for {key}")
        return session, True

    def reset(self, session: UserSession) -> None:
        session.reset(self.idle_step())

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._sessions)
