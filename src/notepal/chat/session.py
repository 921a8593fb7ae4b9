"""Chat session: the turn boundary between the user and the agent loop.

The session owns the visible turn list, allows one agent loop at a time and
decides what gets persisted: completed turns are stored, stopped turns are
dropped, and failures are reported as a notice without breaking the session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from ..ai.orchestration.cancellation import CancellationToken
from ..ai.orchestration.errors import TurnInProgressError
from ..ai.orchestration.orchestrator import AgentOrchestrator
from ..ai.orchestration.types import StreamCallback, TaskState, TurnResult
from ..services.settings import AgentModeSettings
from .context_builder import ContextBuilder
from .history import ChatHistoryStore
from .message_model import ChatMessage
from .regenerator import MessageRegenerator

__all__ = ["ChatSession", "SettingsProvider", "TurnOutcome"]

LOGGER = logging.getLogger(__name__)

SettingsProvider = Callable[[], AgentModeSettings]


@dataclass(slots=True)
class TurnOutcome:
    """What one user action produced.

    Attributes:
        result: The loop result, or None when the loop failed.
        user_message: The stored user turn (sends only).
        assistant_message: The stored or regenerated assistant turn.
        notice: Short status text for the user (errors, stops, limits).
        error: The exception that aborted the turn, if any.
    """

    result: TurnResult | None
    user_message: ChatMessage | None = None
    assistant_message: ChatMessage | None = None
    notice: str | None = None
    error: BaseException | None = None

    @property
    def state(self) -> TaskState | None:
        return self.result.state if self.result is not None else None

    @property
    def failed(self) -> bool:
        return self.error is not None


def _limit_notice(result: TurnResult) -> str | None:
    status = result.task_status
    if status.status is TaskState.LIMIT_REACHED:
        return (
            f"Tool execution limit reached ({status.tool_execution_count}/"
            f"{status.max_tool_executions}); the task can be continued."
        )
    if status.status is TaskState.WAITING_FOR_USER:
        return "The assistant is waiting for your answer."
    return None


class ChatSession:
    """One conversation shown to the user, backed by a history store."""

    def __init__(
        self,
        orchestrator: AgentOrchestrator,
        history_store: ChatHistoryStore,
        context_builder: ContextBuilder,
        settings_provider: SettingsProvider,
        *,
        regenerator: MessageRegenerator | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = history_store
        self._builder = context_builder
        self._settings_provider = settings_provider
        self._regenerator = regenerator or MessageRegenerator(orchestrator, history_store, context_builder)
        self._turns: list[ChatMessage] = []
        self._token: CancellationToken | None = None
        # The limit_reached result and the message_id of the reply it produced.
        self._last_result: TurnResult | None = None
        self._limited_id: str | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def turns(self) -> list[ChatMessage]:
        return self._turns

    @property
    def history_store(self) -> ChatHistoryStore:
        return self._store

    def is_running(self) -> bool:
        return self._token is not None

    def can_continue(self) -> bool:
        return self._limited_turn() is not None

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------
    def load(self) -> list[ChatMessage]:
        self._turns = self._store.load()
        self._remember(None)
        LOGGER.debug("Loaded %d turn(s) from %s", len(self._turns), self._store.path)
        return self._turns

    async def send(self, text: str, *, stream_callback: StreamCallback | None = None) -> TurnOutcome:
        """Run one user message through the agent loop.

        Raises:
            TurnInProgressError: If another turn is still running.
        """
        token = self._begin()
        settings = self._settings_provider()
        history = list(self._turns)
        user = ChatMessage.user(text)
        self._turns.append(user)
        context = self._builder.build(history, text, agent_mode=settings.enabled)
        try:
            result = await self._orchestrator.run_turn(
                context,
                settings=settings,
                cancel_token=token,
                stream_callback=stream_callback,
            )
        except Exception as exc:
            self._discard(user)
            LOGGER.error("AI turn failed: %s", exc, exc_info=True)
            return TurnOutcome(result=None, notice=f"Error: {exc}", error=exc)
        finally:
            self._token = None

        if result.stopped:
            self._discard(user)
            self._remember(None)
            return TurnOutcome(result=result, notice="Stopped.")

        assistant = ChatMessage.from_turn_result(result)
        self._turns.append(assistant)
        self._store.add(user)
        self._store.add(assistant)
        self._remember(result, assistant)
        return TurnOutcome(
            result=result,
            user_message=user,
            assistant_message=assistant,
            notice=_limit_notice(result),
        )

    async def continue_last(
        self,
        *,
        additional_tool_calls: int | None = None,
        stream_callback: StreamCallback | None = None,
    ) -> TurnOutcome:
        """Continue the reply whose turn ended in ``limit_reached``, updating it in place."""

        limited = self._limited_turn()
        if limited is None:
            return TurnOutcome(result=None, notice="There is no turn to continue.")
        previous, assistant = limited

        token = self._begin()
        try:
            result = await self._orchestrator.continue_turn(
                previous,
                settings=self._settings_provider(),
                additional_tool_calls=additional_tool_calls,
                cancel_token=token,
                stream_callback=stream_callback,
            )
        except Exception as exc:
            LOGGER.error("AI turn continuation failed: %s", exc, exc_info=True)
            return TurnOutcome(result=None, notice=f"Error: {exc}", error=exc)
        finally:
            self._token = None

        if result.stopped:
            return TurnOutcome(result=result, notice="Stopped.")

        updated = ChatMessage.from_turn_result(result, timestamp=assistant.timestamp)
        updated.message_id = assistant.message_id
        self._store.update(
            assistant.timestamp,
            "assistant",
            assistant.content,
            updated.content,
            reasoning=updated.reasoning,
            task_status=updated.task_status,
            tool_results=updated.tool_results,
        )
        self._turns[self._turns.index(assistant)] = updated
        self._remember(result, updated)
        return TurnOutcome(result=result, assistant_message=updated, notice=_limit_notice(result))

    async def regenerate(self, index: int, *, stream_callback: StreamCallback | None = None) -> TurnOutcome:
        """Regenerate the reply belonging to ``turns[index]``.

        Raises:
            TurnInProgressError: If another turn is still running.
            IndexError: If ``index`` does not name a turn.
        """
        if not 0 <= index < len(self._turns):
            raise IndexError(f"No turn at index {index}")
        token = self._begin()
        try:
            outcome = await self._regenerator.regenerate(
                self._turns,
                index,
                settings=self._settings_provider(),
                cancel_token=token,
                stream_callback=stream_callback,
            )
        except Exception as exc:
            LOGGER.error("Regeneration failed: %s", exc, exc_info=True)
            return TurnOutcome(result=None, notice=f"Error: {exc}", error=exc)
        finally:
            self._token = None

        if outcome.stopped:
            return TurnOutcome(result=outcome.result, notice="Stopped.")
        self._remember(outcome.result, outcome.message)
        notice = "; ".join(filter(None, [_limit_notice(outcome.result), *outcome.notes])) or None
        return TurnOutcome(result=outcome.result, assistant_message=outcome.message, notice=notice)

    def cancel(self) -> bool:
        """Stop the running turn at its next suspension point."""

        if self._token is None:
            LOGGER.debug("ChatSession.cancel: no turn running")
            return False
        self._token.cancel()
        return True

    # ------------------------------------------------------------------
    # History editing
    # ------------------------------------------------------------------
    def edit(self, index: int, new_content: str) -> bool:
        self._ensure_idle()
        turn = self._turns[index]
        updated = self._store.update(turn.timestamp, turn.sender, turn.content, new_content)
        turn.content = new_content
        self._forget(turn)
        return updated

    def delete(self, index: int) -> bool:
        self._ensure_idle()
        turn = self._turns.pop(index)
        self._forget(turn)
        return self._store.delete(turn.timestamp, turn.sender, turn.content)

    def clear(self) -> None:
        self._ensure_idle()
        self._store.clear()
        self._turns.clear()
        self._remember(None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _begin(self) -> CancellationToken:
        self._ensure_idle()
        self._token = CancellationToken()
        return self._token

    def _ensure_idle(self) -> None:
        if self.is_running():
            raise TurnInProgressError()

    def _discard(self, message: ChatMessage) -> None:
        for index, turn in enumerate(self._turns):
            if turn is message:
                del self._turns[index]
                return

    def _remember(self, result: TurnResult | None, message: ChatMessage | None = None) -> None:
        if result is not None and message is not None and result.state is TaskState.LIMIT_REACHED:
            self._last_result = result
            self._limited_id = message.message_id
        else:
            self._last_result = None
            self._limited_id = None

    def _forget(self, turn: ChatMessage) -> None:
        if self._limited_id is not None and turn.message_id == self._limited_id:
            LOGGER.debug("Limited reply %s was edited or removed; dropping continuation", self._limited_id)
            self._remember(None)

    def _limited_turn(self) -> tuple[TurnResult, ChatMessage] | None:
        if self._last_result is None or self._limited_id is None:
            return None
        for turn in self._turns:
            if turn.sender == "assistant" and turn.message_id == self._limited_id:
                return self._last_result, turn
        return None
