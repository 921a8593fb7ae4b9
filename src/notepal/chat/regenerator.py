"""Regeneration of an assistant reply in place.

Clicking "regenerate" on a turn re-runs the agent loop on the conversation
up to the originating user message and puts the new reply where the old one
was, keeping its timestamp, or right after the user message when there was
no reply yet.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Sequence

from ..ai.orchestration.cancellation import CancellationToken
from ..ai.orchestration.orchestrator import AgentOrchestrator
from ..ai.orchestration.types import StreamCallback, TurnResult
from ..ai.tools.base import utc_timestamp
from ..services.settings import AgentModeSettings
from .context_builder import ContextBuilder
from .history import ChatHistoryStore
from .message_model import ChatMessage

__all__ = ["MessageRegenerator", "RegenerationOutcome", "RegenerationPlan", "plan_regeneration"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RegenerationPlan:
    """Where a regenerated reply goes and which turns feed the model.

    Attributes:
        slot: Index the new reply occupies in the turn list.
        overwrite: True when ``slot`` holds an existing assistant reply.
        origin_index: Index of the originating user turn, or None.
        prefix: Turns ``[0 .. origin_index]`` inclusive.
        timestamp: Timestamp the new reply carries.
        original: The reply being replaced, when overwriting.
    """

    slot: int
    overwrite: bool
    origin_index: int | None
    prefix: tuple[ChatMessage, ...]
    timestamp: str
    original: ChatMessage | None = None


def plan_regeneration(turns: Sequence[ChatMessage], clicked_index: int) -> RegenerationPlan:
    """Decide the target slot, origin user turn and context prefix for a regeneration."""

    if not 0 <= clicked_index < len(turns):
        raise IndexError(f"No turn at index {clicked_index}")
    clicked = turns[clicked_index]

    if clicked.sender == "assistant":
        target: int | None = clicked_index
        origin = next(
            (i for i in range(clicked_index - 1, -1, -1) if turns[i].sender == "user"),
            None,
        )
    else:
        origin = clicked_index
        target = None
        for i in range(clicked_index + 1, len(turns)):
            if turns[i].sender == "user":
                break
            if turns[i].sender == "assistant":
                target = i
                break

    prefix = tuple(turns[: origin + 1]) if origin is not None else ()
    if target is not None:
        original = turns[target]
        return RegenerationPlan(
            slot=target,
            overwrite=True,
            origin_index=origin,
            prefix=prefix,
            timestamp=original.timestamp,
            original=original,
        )
    return RegenerationPlan(
        slot=clicked_index + 1,
        overwrite=False,
        origin_index=origin,
        prefix=prefix,
        timestamp=utc_timestamp(),
    )


@dataclass(slots=True)
class RegenerationOutcome:
    plan: RegenerationPlan
    result: TurnResult
    message: ChatMessage | None = None
    persisted: bool = False
    notes: list[str] = field(default_factory=list)

    @property
    def stopped(self) -> bool:
        return self.result.stopped


class MessageRegenerator:
    """Runs a regeneration against the UI-visible turn list and the history store."""

    def __init__(
        self,
        orchestrator: AgentOrchestrator,
        history_store: ChatHistoryStore,
        context_builder: ContextBuilder,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = history_store
        self._builder = context_builder

    async def regenerate(
        self,
        turns: list[ChatMessage],
        clicked_index: int,
        *,
        settings: AgentModeSettings,
        cancel_token: CancellationToken | None = None,
        stream_callback: StreamCallback | None = None,
    ) -> RegenerationOutcome:
        """Regenerate the reply for ``turns[clicked_index]``, mutating ``turns``.

        On a stopped turn or an exception the list is restored to its
        previous state and nothing is persisted; exceptions propagate.
        """
        plan = plan_regeneration(turns, clicked_index)
        placeholder = ChatMessage(sender="assistant", content="", timestamp=plan.timestamp, streaming=True)
        if plan.overwrite:
            turns[plan.slot] = placeholder
        else:
            turns.insert(plan.slot, placeholder)
        LOGGER.debug(
            "Regenerating slot %d (overwrite=%s, origin=%s)", plan.slot, plan.overwrite, plan.origin_index
        )

        async def on_chunk(chunk: str) -> None:
            placeholder.content += chunk
            if stream_callback is not None:
                outcome = stream_callback(chunk)
                if inspect.isawaitable(outcome):
                    await outcome

        context = self._builder.build_prefix(plan.prefix, agent_mode=settings.enabled)
        try:
            result = await self._orchestrator.run_turn(
                context,
                settings=settings,
                cancel_token=cancel_token,
                stream_callback=on_chunk,
            )
        except BaseException:
            self._restore(turns, plan, placeholder)
            raise

        if result.stopped:
            LOGGER.info("Regeneration stopped; restoring previous reply")
            self._restore(turns, plan, placeholder)
            return RegenerationOutcome(plan=plan, result=result)

        message = ChatMessage.from_turn_result(result, timestamp=plan.timestamp)
        if plan.original is not None:
            message.message_id = plan.original.message_id
        turns[self._index_of(turns, placeholder)] = message

        outcome = RegenerationOutcome(plan=plan, result=result, message=message)
        if plan.overwrite and plan.original is not None:
            outcome.persisted = self._store.update(
                plan.timestamp,
                "assistant",
                plan.original.content,
                message.content,
                reasoning=message.reasoning,
                task_status=message.task_status,
                tool_results=message.tool_results,
            )
            if not outcome.persisted:
                LOGGER.warning("Regenerated reply at %s had no stored counterpart", plan.timestamp)
                outcome.notes.append("The previous reply was not found in the saved history.")
        else:
            self._store.add(message)
            outcome.persisted = True
        return outcome

    @staticmethod
    def _index_of(turns: Sequence[ChatMessage], placeholder: ChatMessage) -> int:
        for index, turn in enumerate(turns):
            if turn is placeholder:
                return index
        raise LookupError("Regeneration placeholder is no longer in the turn list")

    def _restore(self, turns: list[ChatMessage], plan: RegenerationPlan, placeholder: ChatMessage) -> None:
        try:
            index = self._index_of(turns, placeholder)
        except LookupError:
            LOGGER.debug("Placeholder already removed; nothing to restore")
            return
        if plan.overwrite and plan.original is not None:
            turns[index] = plan.original
        else:
            del turns[index]
