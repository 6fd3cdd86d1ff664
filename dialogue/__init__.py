"""
Conversation engine - scripted receptionist dialogue.
"""
from .faq import FAQResolver
from .session import CallSession, CollectedInfo
from .stages import Stage
from .state_machine import (
    MAX_MODEL_ANSWERS,
    DialogueStateMachine,
    TurnResult,
)
from .store import ConversationStore, InMemoryConversationStore

__all__ = [
    "FAQResolver",
    "CallSession",
    "CollectedInfo",
    "Stage",
    "MAX_MODEL_ANSWERS",
    "DialogueStateMachine",
    "TurnResult",
    "ConversationStore",
    "InMemoryConversationStore",
]
