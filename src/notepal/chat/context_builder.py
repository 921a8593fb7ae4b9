"""Assembly of the message list sent to the model at the start of a turn."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Sequence

from ..ai.orchestration.types import Message
from ..ai.prompts import (
    DEFAULT_SYSTEM_PROMPT,
    agent_system_prompt,
    format_context_notes,
    format_note_reference,
)
from ..ai.tools.registry import ToolRegistry
from .export import strip_tool_data
from .message_model import ChatMessage

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

__all__ = ["ContextBuilder", "NoteProvider"]

LOGGER = logging.getLogger(__name__)

# Returns (path, content) of the note the user is looking at, or None.
NoteProvider = Callable[[], "tuple[str, str] | None"]


class ContextBuilder:
    """Builds ``system + current note + history + user`` message lists.

    When agent mode is on, the system message is prefixed with the agent
    prompt and the catalogue of registered tools.
    """

    def __init__(
        self,
        system_message: str = DEFAULT_SYSTEM_PROMPT,
        *,
        registry: ToolRegistry | None = None,
        context_notes: str = "",
        current_note_provider: NoteProvider | None = None,
    ) -> None:
        self._system_message = system_message
        self._registry = registry
        self._context_notes = context_notes
        self._note_provider = current_note_provider

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        registry: ToolRegistry | None = None,
        current_note_provider: NoteProvider | None = None,
    ) -> "ContextBuilder":
        return cls(
            settings.system_message or DEFAULT_SYSTEM_PROMPT,
            registry=registry,
            context_notes=settings.context_notes,
            current_note_provider=current_note_provider if settings.reference_current_note else None,
        )

    def system_messages(self, *, agent_mode: bool) -> list[Message]:
        system = self._system_message
        if agent_mode and self._registry is not None:
            system = f"{agent_system_prompt(self._registry.describe())}\n\n{system}"
        system += format_context_notes(self._context_notes)
        messages = [Message.system(system)]
        note = self._note_provider() if self._note_provider is not None else None
        if note is not None:
            path, content = note
            messages.append(Message.system(format_note_reference(path, content)))
        return messages

    def build(
        self,
        history: Sequence[ChatMessage],
        user_content: str,
        *,
        agent_mode: bool,
    ) -> list[Message]:
        """Return the context for a new user message following ``history``."""

        messages = self.build_prefix(history, agent_mode=agent_mode)
        messages.append(Message.user(user_content))
        return messages

    def build_prefix(self, turns: Sequence[ChatMessage], *, agent_mode: bool) -> list[Message]:
        """Return the system messages followed by ``turns`` as model messages."""

        messages = self.system_messages(agent_mode=agent_mode)
        for turn in turns:
            if turn.streaming:
                continue
            content = strip_tool_data(turn.content) if turn.sender == "assistant" else turn.content
            if turn.sender == "assistant" and not content.strip():
                continue
            messages.append(Message.user(content) if turn.sender == "user" else Message.assistant(content))
        LOGGER.debug("Built context with %d message(s)", len(messages))
        return messages
