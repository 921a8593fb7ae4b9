"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from notepal.ai.orchestration.orchestrator import AgentOrchestrator
from notepal.ai.tools import build_default_registry
from notepal.chat.context_builder import ContextBuilder
from notepal.chat.history import ChatHistoryStore
from notepal.services.settings import AgentModeSettings

from helpers import EchoTool, ScriptedModel


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Keep every test away from the real ~/.notepal directory."""

    monkeypatch.setenv("NOTEPAL_HOME", str(tmp_path / "home"))
    for name in (
        "NOTEPAL_API_KEY",
        "NOTEPAL_BASE_URL",
        "NOTEPAL_MODEL",
        "NOTEPAL_ORGANIZATION",
        "NOTEPAL_HISTORY_DIR",
        "NOTEPAL_DEBUG_LOGGING",
        "NOTEPAL_AGENT_MODE",
        "NOTEPAL_REQUEST_TIMEOUT",
        "NOTEPAL_TEMPERATURE",
        "NOTEPAL_MAX_TOOL_CALLS",
        "NOTEPAL_AGENT_TIMEOUT_MS",
        "NOTEPAL_MAX_ITERATIONS",
        "NOTEPAL_SETTINGS_PATH",
        "NOTEPAL_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture
def registry(echo_tool):
    return build_default_registry([echo_tool])


@pytest.fixture
def model() -> ScriptedModel:
    return ScriptedModel()


@pytest.fixture
def orchestrator(model, registry) -> AgentOrchestrator:
    return AgentOrchestrator(model, registry)


@pytest.fixture
def agent_settings() -> AgentModeSettings:
    return AgentModeSettings(enabled=True, max_tool_calls=5, timeout_ms=5_000, max_iterations=10)


@pytest.fixture
def history_store(tmp_path) -> ChatHistoryStore:
    return ChatHistoryStore(tmp_path / "chats" / "default.json")


@pytest.fixture
def context_builder(registry) -> ContextBuilder:
    return ContextBuilder("You are a test assistant.", registry=registry)
