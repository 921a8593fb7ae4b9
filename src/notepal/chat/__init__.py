"""Chat turns, their persistence and the session that drives them."""

from .context_builder import ContextBuilder
from .history import ChatHistoryStore
from .message_model import ChatMessage
from .regenerator import MessageRegenerator, plan_regeneration
from .session import ChatSession, TurnOutcome

__all__ = [
    "ChatHistoryStore",
    "ChatMessage",
    "ChatSession",
    "ContextBuilder",
    "MessageRegenerator",
    "TurnOutcome",
    "plan_regeneration",
]
