"""Command-line bootstrap for the NotePal chat assistant."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO

from .ai.client import AIClient, ClientSettings, OpenAIChatModel
from .ai.orchestration.errors import TurnInProgressError
from .ai.orchestration.formatting import format_tool_results_for_display
from .ai.orchestration.orchestrator import AgentOrchestrator
from .ai.tools import build_default_registry
from .chat.context_builder import ContextBuilder, NoteProvider
from .chat.export import embed_tool_data
from .chat.history import ChatHistoryStore
from .chat.session import ChatSession, TurnOutcome
from .services.settings import AgentModeSettings, Settings, SettingsStore, parse_override, redact_secret
from .utils import logging as logging_utils
from .utils.file_io import read_text

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}

_HELP_TEXT = """\
Commands:
  /agent on|off        toggle agent mode for the following turns
  /continue [N]        continue a turn that hit its tool limit (N extra calls)
  /regenerate INDEX    regenerate the reply for turn INDEX
  /edit INDEX TEXT     replace the content of turn INDEX
  /delete INDEX        delete turn INDEX
  /history             list the turns of this conversation
  /tools INDEX         show the tool executions of turn INDEX
  /copy INDEX          print turn INDEX with its embedded tool data
  /clear               delete every turn of this conversation
  /quit                leave the chat
Press Ctrl+C while the assistant is answering to stop the turn."""


def configure_logging(debug: bool = False, *, force: bool = False) -> Path:
    """Configure file logging for the CLI; the console stays reserved for the chat."""

    level = logging.DEBUG if debug else logging.INFO
    log_path = logging_utils.setup_logging(level, console=False, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))
    return log_path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


class ChatRuntime:
    """Everything a chat conversation needs, wired from one :class:`Settings`."""

    def __init__(
        self,
        settings: Settings,
        client: AIClient,
        orchestrator: AgentOrchestrator,
        builder: ContextBuilder,
        store: ChatHistoryStore,
    ) -> None:
        self.settings = settings
        self.client = client
        self.session = ChatSession(orchestrator, store, builder, lambda: self.agent_mode)

    @property
    def agent_mode(self) -> AgentModeSettings:
        return self.settings.agent_mode

    def set_agent_mode(self, enabled: bool) -> None:
        self.settings = replace(self.settings, agent_mode=replace(self.settings.agent_mode, enabled=enabled))

    async def aclose(self) -> None:
        try:
            await self.client.aclose()
        except Exception as exc:  # pragma: no cover - network teardown
            _LOGGER.debug("AI client shutdown failed: %s", exc)


def build_runtime(
    settings: Settings,
    *,
    conversation: str = "default",
    note_path: Path | None = None,
    client: AIClient | None = None,
) -> ChatRuntime:
    """Construct the model, tools, orchestrator and session for ``settings``."""

    ai_client = client or AIClient(ClientSettings.from_settings(settings))
    model = OpenAIChatModel(ai_client, default_temperature=settings.temperature)
    registry = build_default_registry()
    orchestrator = AgentOrchestrator(
        model,
        registry,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
    builder = ContextBuilder.from_settings(
        settings,
        registry=registry,
        current_note_provider=_note_provider(note_path),
    )
    store = ChatHistoryStore.for_conversation(conversation, root=settings.history_dir)
    return ChatRuntime(settings, ai_client, orchestrator, builder, store)


def _note_provider(note_path: Path | None) -> NoteProvider | None:
    if note_path is None:
        return None

    def provide() -> tuple[str, str] | None:
        try:
            return str(note_path), read_text(note_path)
        except OSError as exc:
            _LOGGER.warning("Current note %s could not be read: %s", note_path, exc)
            return None

    return provide


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `notepal` console script."""

    args = _parse_cli_args(argv)

    debug = args.debug or _env_flag("NOTEPAL_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("NOTEPAL_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.command == "settings":
        _dump_settings(settings, settings_store)
        return
    if args.command == "history":
        store = ChatHistoryStore.for_conversation(args.conversation, root=settings.history_dir)
        _print_history(store, clear=args.clear)
        return

    if getattr(args, "agent", None) is not None:
        settings = replace(settings, agent_mode=replace(settings.agent_mode, enabled=args.agent))
    note_path = Path(args.note).expanduser() if getattr(args, "note", None) else None
    runtime = build_runtime(settings, conversation=args.conversation, note_path=note_path)
    try:
        asyncio.run(_chat_loop(runtime))
    except (KeyboardInterrupt, EOFError):  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")


# ----------------------------------------------------------------------
# Interactive chat
# ----------------------------------------------------------------------


async def _chat_loop(runtime: ChatRuntime, *, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
    out = stdout or sys.stdout
    session = runtime.session
    turns = session.load()
    mode = "on" if runtime.agent_mode.enabled else "off"
    out.write(f"NotePal chat ({len(turns)} earlier turn(s), agent mode {mode}). Type /help for commands.\n")
    try:
        while True:
            line = await asyncio.to_thread(_read_line, stdin)
            if line is None:
                break
            text = line.strip()
            if not text:
                continue
            if text.startswith("/"):
                if not await _run_command(runtime, text, out):
                    break
                continue
            outcome = await _with_interrupt(runtime, session.send(text, stream_callback=_echo(out)), out)
            _report(outcome, out)
    finally:
        await runtime.aclose()


def _read_line(stdin: TextIO | None) -> str | None:
    if stdin is not None:
        line = stdin.readline()
        return line or None
    try:
        return input("you> ")
    except EOFError:
        return None


def _echo(out: TextIO):
    started = False

    def write(chunk: str) -> None:
        nonlocal started
        if not started:
            out.write("assistant> ")
            started = True
        out.write(chunk)
        out.flush()

    return write


async def _with_interrupt(runtime: ChatRuntime, turn, out: TextIO) -> TurnOutcome:
    loop = asyncio.get_running_loop()
    installed = False
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, runtime.session.cancel)
        installed = True
    try:
        return await turn
    except TurnInProgressError as exc:
        return TurnOutcome(result=None, notice=str(exc), error=exc)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
        out.write("\n")


def _report(outcome: TurnOutcome, out: TextIO) -> None:
    if outcome.notice:
        out.write(f"[{outcome.notice}]\n")


async def _run_command(runtime: ChatRuntime, text: str, out: TextIO) -> bool:
    session = runtime.session
    name, _, rest = text[1:].partition(" ")
    name = name.lower()
    rest = rest.strip()
    try:
        if name in {"quit", "exit"}:
            return False
        if name == "help":
            out.write(_HELP_TEXT + "\n")
        elif name == "agent":
            if rest.lower() not in {"on", "off"}:
                out.write("Usage: /agent on|off\n")
            else:
                runtime.set_agent_mode(rest.lower() == "on")
                out.write(f"Agent mode {rest.lower()}.\n")
        elif name == "continue":
            extra = int(rest) if rest else None
            outcome = await _with_interrupt(
                runtime,
                session.continue_last(additional_tool_calls=extra, stream_callback=_echo(out)),
                out,
            )
            _report(outcome, out)
        elif name == "regenerate":
            outcome = await _with_interrupt(
                runtime, session.regenerate(int(rest), stream_callback=_echo(out)), out
            )
            _report(outcome, out)
        elif name == "edit":
            index, _, content = rest.partition(" ")
            stored = session.edit(int(index), content)
            out.write("Turn updated.\n" if stored else "Turn updated (not found in saved history).\n")
        elif name == "delete":
            stored = session.delete(int(rest))
            out.write("Turn deleted.\n" if stored else "Turn deleted (not found in saved history).\n")
        elif name == "history":
            _write_turns(session.turns, out)
        elif name == "tools":
            turn = session.turns[int(rest)]
            out.write((format_tool_results_for_display(turn.tool_results) or "No tool executions.") + "\n")
        elif name == "copy":
            out.write(embed_tool_data(session.turns[int(rest)]) + "\n")
        elif name == "clear":
            session.clear()
            out.write("Conversation cleared.\n")
        else:
            out.write(f"Unknown command /{name}. Type /help for commands.\n")
    except (IndexError, ValueError) as exc:
        out.write(f"Invalid command arguments: {exc}\n")
    except TurnInProgressError as exc:
        out.write(f"{exc}\n")
    return True


def _write_turns(turns, out: TextIO) -> None:
    if not turns:
        out.write("No turns yet.\n")
        return
    for index, turn in enumerate(turns):
        first_line = turn.content.strip().splitlines()[0] if turn.content.strip() else ""
        status = f" [{turn.task_status.status.value}]" if turn.task_status is not None else ""
        out.write(f"{index:>3} {turn.timestamp} {turn.sender}{status}: {first_line}\n")


# ----------------------------------------------------------------------
# Non-interactive commands
# ----------------------------------------------------------------------


def _print_history(store: ChatHistoryStore, *, clear: bool = False, out: TextIO | None = None) -> None:
    stream = out or sys.stdout
    if clear:
        store.clear()
        stream.write(f"Cleared {store.path}\n")
        return
    _write_turns(store.load(), stream)


def _dump_settings(settings: Settings, store: SettingsStore, *, out: TextIO | None = None) -> None:
    payload: Dict[str, Any] = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    payload["settings_path"] = str(store.path)
    payload["log_path"] = str(logging_utils.get_log_path() or "")
    stream = out or sys.stdout
    stream.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for entry in items:
        key, value = parse_override(entry)
        overrides[key] = value
    return overrides


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="notepal",
        description="Chat with the NotePal assistant or inspect its stored state.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.notepal/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable, e.g. agent_mode.max_tool_calls=3).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")

    commands = parser.add_subparsers(dest="command")
    chat = commands.add_parser("chat", help="Start an interactive chat (default).")
    chat.add_argument("--conversation", default="default", help="Conversation name to load and extend.")
    chat.add_argument("--note", metavar="PATH", help="Note file shared with the assistant as the current note.")
    agent = chat.add_mutually_exclusive_group()
    agent.add_argument("--agent", dest="agent", action="store_true", default=None, help="Enable agent mode.")
    agent.add_argument("--no-agent", dest="agent", action="store_false", help="Disable agent mode.")

    history = commands.add_parser("history", help="Print or clear a stored conversation.")
    history.add_argument("--conversation", default="default", help="Conversation name.")
    history.add_argument("--clear", action="store_true", help="Delete every stored turn.")

    commands.add_parser("settings", help="Print the effective settings (secrets redacted) and exit.")

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "chat"
        args.conversation = "default"
        args.note = None
        args.agent = None
    return args
