"""
ConversationStore - keyed registry of live CallSessions.

The state machine and the completion pipeline receive a store instance
instead of touching a module-level dict, so tests can use a fresh one.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .session import CallSession

logger = logging.getLogger(__name__)


class ConversationStore(ABC):
    """get/set/delete by call SID. At most one session per SID."""

    @abstractmethod
    def get(self, call_sid: str) -> Optional[CallSession]:
        ...

    @abstractmethod
    def set(self, call_sid: str, session: CallSession) -> None:
        ...

    @abstractmethod
    def delete(self, call_sid: str) -> Optional[CallSession]:
        ...

    @abstractmethod
    def __len__(self) -> int:
        ...

    def __contains__(self, call_sid: str) -> bool:
        return self.get(call_sid) is not None


class InMemoryConversationStore(ConversationStore):
    """Process-local store. Sessions are lost on restart."""

    def __init__(self):
        self._sessions: Dict[str, CallSession] = {}

    def get(self, call_sid: str) -> Optional[CallSession]:
        return self._sessions.get(call_sid)

    def set(self, call_sid: str, session: CallSession) -> None:
        if call_sid in self._sessions:
            logger.warning(f"Replacing existing session for call {call_sid}")
        self._sessions[call_sid] = session

    def delete(self, call_sid: str) -> Optional[CallSession]:
        return self._sessions.pop(call_sid, None)

    def __len__(self) -> int:
        return len(self._sessions)
