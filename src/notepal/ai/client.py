"""OpenAI-compatible transport for the chat assistant.

:class:`AIClient` owns the ``AsyncOpenAI`` instance and the retry policy;
:class:`OpenAIChatModel` adapts it to the orchestrator's ``LanguageModel``
protocol so the agent loop never touches the SDK directly.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Iterable, List, Mapping, Sequence, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .orchestration.cancellation import TurnCancelledError
from .orchestration.types import CompletionOptions, Message

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import Settings

LOGGER = logging.getLogger(__name__)

__all__ = ["AIClient", "AIStreamEvent", "ClientSettings", "OpenAIChatModel"]

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)

# SDK event type -> attribute carrying the text we surface.
_SURFACED_EVENTS: dict[str, str] = {
    "content.delta": "delta",
    "content.done": "content",
    "refusal.done": "refusal",
}


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry knobs for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClientSettings":
        fields = (
            "base_url",
            "api_key",
            "model",
            "organization",
            "request_timeout",
            "max_retries",
            "retry_min_seconds",
            "retry_max_seconds",
            "debug_logging",
        )
        values: Dict[str, Any] = {name: getattr(settings, name) for name in fields}
        values["default_headers"] = dict(settings.default_headers) or None
        return cls(**values)

    def open_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            organization=self.organization,
            timeout=self.request_timeout,
            default_headers=dict(self.default_headers) if self.default_headers else None,
        )


@dataclass(slots=True)
class AIStreamEvent:
    """One surfaced streaming event: a content delta, final content or a refusal."""

    type: str
    content: str | None = None


class AIClient:
    """Streams chat completions, retrying transient transport failures."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client if client is not None else settings.open_client()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        temperature: float | None = 0.2,
        max_tokens: int | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Yield :class:`AIStreamEvent` objects for one completion request.

        Raises:
            ValueError: ``messages`` is empty.
        """

        request = self._request_body(list(messages), temperature, max_tokens, extra_params)
        LOGGER.debug("Chat request to %s with %d message(s)", request["model"], len(request["messages"]))
        if self._settings.debug_logging:
            LOGGER.debug("Chat request body:\n%s", json.dumps(request, ensure_ascii=False, indent=2, default=str))

        async for attempt in self._retry_policy():
            with attempt:
                async with self._client.chat.completions.stream(**request) as stream:
                    async for raw in stream:
                        event = _surface(raw)
                        if event is not None:
                            yield event

    async def aclose(self) -> None:
        """Release the HTTP connection pool held by the SDK client."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        outcome = close()
        if inspect.isawaitable(outcome):
            await outcome

    def _request_body(
        self,
        messages: List[Mapping[str, Any]],
        temperature: float | None,
        max_tokens: int | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        if not messages:
            raise ValueError("At least one message is required to start a chat")
        body: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": [cast(ChatCompletionMessageParam, dict(message)) for message in messages],
        }
        optional = {"temperature": temperature, "max_tokens": max_tokens}
        body.update({key: value for key, value in optional.items() if value is not None})
        body.update(extra_params)
        return body

    def _retry_policy(self) -> AsyncRetrying:
        settings = self._settings
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, settings.max_retries)),
            wait=wait_exponential(multiplier=settings.retry_min_seconds, max=settings.retry_max_seconds),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        )


def _surface(event: ChatCompletionStreamEvent[Any]) -> AIStreamEvent | None:
    kind = getattr(event, "type", None)
    attribute = _SURFACED_EVENTS.get(kind or "")
    if attribute is None:
        return None
    value = getattr(event, attribute, None)
    if kind == "content.delta":
        return AIStreamEvent(type=kind, content=str(value)) if value else None
    return AIStreamEvent(type=kind, content=value)


class OpenAIChatModel:
    """:class:`~notepal.ai.orchestration.types.LanguageModel` backed by :class:`AIClient`.

    Streams ``content.delta`` events, forwards each chunk to the stream
    callback and checks the cancellation token between chunks.
    """

    def __init__(self, client: AIClient, *, default_temperature: float | None = 0.2) -> None:
        self._client = client
        self._default_temperature = default_temperature

    @property
    def client(self) -> AIClient:
        return self._client

    async def complete(self, messages: Sequence[Message], options: CompletionOptions) -> str:
        token = options.cancel_token
        temperature = options.temperature if options.temperature is not None else self._default_temperature
        chunks: list[str] = []
        final: str | None = None
        async for event in self._client.stream_chat(
            [message.to_chat_param() for message in messages],
            temperature=temperature,
            max_tokens=options.max_tokens,
        ):
            if token is not None and token.cancelled:
                raise TurnCancelledError(token.reason or "cancelled")
            if event.type == "content.delta" and event.content:
                chunks.append(event.content)
                if options.stream_callback is not None:
                    outcome = options.stream_callback(event.content)
                    if inspect.isawaitable(outcome):
                        await outcome
            elif event.type == "content.done" and event.content is not None:
                final = event.content
            elif event.type == "refusal.done" and event.content:
                LOGGER.warning("Model refused the request: %s", event.content)
                final = event.content
        return final if final is not None else "".join(chunks)
