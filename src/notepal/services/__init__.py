"""Service layer (settings persistence)."""

from .settings import AgentModeSettings, Settings, SettingsStore

__all__ = ["AgentModeSettings", "Settings", "SettingsStore"]
