"""
Per-call conversation state.

A CallSession lives in a ConversationStore for the duration of one call and
is never persisted. Python 3.9 compatible.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .stages import Stage


@dataclass
class CollectedInfo:
    """The three fields the script tries to capture."""
    name: Optional[str] = None
    phone: Optional[str] = None
    reason: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.name or self.phone or self.reason)

    def has_contact(self) -> bool:
        return bool(self.name or self.phone)


@dataclass
class CallSession:
    call_sid: str
    business_id: int
    business_name: str
    call_record_id: Optional[int] = None
    stage: Stage = Stage.GREETING
    collected: CollectedInfo = field(default_factory=CollectedInfo)

    # Ordered turn history: {"role": "assistant"|"user", "content": str}
    history: List[Dict[str, str]] = field(default_factory=list)

    # Business context snapshot taken at call start
    faqs: List[Dict[str, str]] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    custom_instructions: Optional[str] = None
    is_after_hours: bool = False

    # Counters
    no_input_count: int = 0
    question_count: int = 0  # language-model answers used this call
    turn_count: int = 0  # caller utterances accepted as data
    stage_attempts: int = 0  # rejected inputs at the current stage

    # Caller questions answered during the call (FAQ or model)
    questions: List[str] = field(default_factory=list)

    started_at: datetime = field(default_factory=datetime.utcnow)
    ended: bool = False

    def add_assistant(self, text: str) -> Dict[str, str]:
        entry = {"role": "assistant", "content": text}
        self.history.append(entry)
        return entry

    def add_user(self, text: str) -> Dict[str, str]:
        entry = {"role": "user", "content": text}
        self.history.append(entry)
        return entry
