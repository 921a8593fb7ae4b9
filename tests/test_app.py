"""Tests for the command-line entry point."""

from __future__ import annotations

import io
import json
import logging
from types import SimpleNamespace

import pytest

from notepal import app
from notepal.ai.client import AIClient, ClientSettings
from notepal.chat.history import ChatHistoryStore
from notepal.chat.message_model import ChatMessage
from notepal.services.settings import Settings, SettingsStore


class _ScriptedCompletions:
    def __init__(self, replies: list[str]) -> None:
        self.replies = list(replies)

    def stream(self, **payload):
        reply = self.replies.pop(0)
        return _Stream([SimpleNamespace(type="content.delta", delta=reply)])


class _Stream:
    def __init__(self, events) -> None:
        self._events = events

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self._events:
            yield event


@pytest.fixture
def restore_logging(tmp_path, monkeypatch):
    monkeypatch.setenv("NOTEPAL_LOG_DIR", str(tmp_path / "logs"))
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


def _fake_client(replies: list[str]) -> AIClient:
    fake = SimpleNamespace(chat=SimpleNamespace(completions=_ScriptedCompletions(replies)))
    settings = ClientSettings(base_url="https://example.invalid/v1", api_key="k", model="m")
    return AIClient(settings, client=fake)  # type: ignore[arg-type]


def test_parse_cli_args_defaults_to_chat():
    args = app._parse_cli_args([])

    assert args.command == "chat"
    assert args.conversation == "default"
    assert args.agent is None


def test_parse_cli_args_chat_flags():
    args = app._parse_cli_args(["--set", "model=x", "chat", "--conversation", "work", "--agent"])

    assert args.overrides == ["model=x"]
    assert args.conversation == "work"
    assert args.agent is True


def test_coerce_cli_overrides_uses_field_types():
    overrides = app._coerce_cli_overrides(["agent_mode.max_tool_calls=4", "temperature=0.1"])

    assert overrides == {"agent_mode.max_tool_calls": 4, "temperature": 0.1}
    with pytest.raises(ValueError):
        app._coerce_cli_overrides(["nope=1"])


@pytest.mark.asyncio
async def test_chat_loop_runs_turns_and_commands(tmp_path):
    settings = Settings(history_dir=str(tmp_path / "chats"))
    runtime = app.build_runtime(settings, conversation="demo", client=_fake_client(["Hi there!"]))
    stdin = io.StringIO("Hello\n/history\n/agent on\n/tools 1\n/copy 1\n/bogus\n/quit\n")
    stdout = io.StringIO()

    await app._chat_loop(runtime, stdin=stdin, stdout=stdout)

    output = stdout.getvalue()
    assert "assistant> Hi there!" in output
    assert "user: Hello" in output
    assert "assistant [completed]: Hi there!" in output
    assert "Agent mode on." in output
    assert "No tool executions." in output
    assert "Unknown command /bogus" in output
    assert runtime.agent_mode.enabled is True
    stored = ChatHistoryStore(tmp_path / "chats" / "demo.json").load()
    assert [m.content for m in stored] == ["Hello", "Hi there!"]


@pytest.mark.asyncio
async def test_chat_loop_reports_bad_arguments(tmp_path):
    runtime = app.build_runtime(Settings(history_dir=str(tmp_path)), client=_fake_client([]))
    stdout = io.StringIO()

    await app._chat_loop(runtime, stdin=io.StringIO("/regenerate 5\n/edit x y\n"), stdout=stdout)

    assert stdout.getvalue().count("Invalid command arguments") == 2


def test_main_prints_redacted_settings(tmp_path, capsys, restore_logging):
    settings_path = tmp_path / "settings.json"
    SettingsStore(settings_path).save(Settings(api_key="sk-abcdef123"))

    app.main(["--settings-path", str(settings_path), "settings"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["api_key"] == "sk********23"
    assert payload["settings_path"] == str(settings_path)


def test_main_rejects_bad_override(tmp_path, capsys, restore_logging):
    with pytest.raises(SystemExit) as excinfo:
        app.main(["--settings-path", str(tmp_path / "s.json"), "--set", "bogus=1", "settings"])

    assert excinfo.value.code == 2
    assert "Invalid --set override" in capsys.readouterr().err


def test_main_history_lists_and_clears(tmp_path, capsys, restore_logging):
    store = ChatHistoryStore(tmp_path / "chats" / "default.json")
    store.save([ChatMessage.user("Remember milk", timestamp="2024-01-01T00:00:00.000Z")])
    args = ["--settings-path", str(tmp_path / "s.json"), "--set", f"history_dir={tmp_path / 'chats'}"]

    app.main([*args, "history"])
    listed = capsys.readouterr().out
    app.main([*args, "history", "--clear"])

    assert "user: Remember milk" in listed
    assert store.load() == []
