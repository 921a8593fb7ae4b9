"""User settings for the assistant and their on-disk representation.

``settings.json`` lives in the data directory next to a Fernet key file; the
API key is only ever written encrypted. Values resolve in three layers:
the stored document, explicit overrides (``--set key=value`` on the CLI),
then ``NOTEPAL_*`` environment variables.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..utils.file_io import data_dir, write_text

__all__ = [
    "AgentModeSettings",
    "Settings",
    "SettingsStore",
    "SecretVault",
    "parse_override",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1
CIPHERTEXT_KEY = "api_key_ciphertext"
AGENT_PREFIX = "agent_mode."
_TOKEN_SCHEME = "fernet"
_TRUTHY = frozenset({"1", "true", "yes", "on", "debug"})
_NULLS = frozenset({"none", "null"})


def _flag(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


# Environment variable -> (settings key, converter).
_ENVIRONMENT: Dict[str, tuple[str, Callable[[str], Any]]] = {
    "NOTEPAL_API_KEY": ("api_key", str),
    "NOTEPAL_BASE_URL": ("base_url", str),
    "NOTEPAL_MODEL": ("model", str),
    "NOTEPAL_ORGANIZATION": ("organization", str),
    "NOTEPAL_HISTORY_DIR": ("history_dir", str),
    "NOTEPAL_DEBUG_LOGGING": ("debug_logging", _flag),
    "NOTEPAL_REQUEST_TIMEOUT": ("request_timeout", float),
    "NOTEPAL_TEMPERATURE": ("temperature", float),
    "NOTEPAL_AGENT_MODE": ("agent_mode.enabled", _flag),
    "NOTEPAL_MAX_TOOL_CALLS": ("agent_mode.max_tool_calls", int),
    "NOTEPAL_AGENT_TIMEOUT_MS": ("agent_mode.timeout_ms", int),
    "NOTEPAL_MAX_ITERATIONS": ("agent_mode.max_iterations", int),
}


@dataclass(slots=True, frozen=True)
class AgentModeSettings:
    """Budget and switches consulted once at the start of every agent loop."""

    enabled: bool = False
    max_tool_calls: int = 5
    timeout_ms: int = 30_000
    max_iterations: int = 10

    def __post_init__(self) -> None:
        if self.max_tool_calls < 0:
            raise ValueError("max_tool_calls must be >= 0")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "AgentModeSettings":
        """Build from a stored mapping, falling back to defaults when it is unusable."""

        if not isinstance(payload, Mapping):
            return cls()
        known = _field_names(cls)
        try:
            return cls(**{key: value for key, value in payload.items() if key in known})
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Ignoring stored agent mode settings (%s)", exc)
            return cls()


@dataclass(slots=True)
class Settings:
    """Everything the assistant needs to reach a model and shape its prompts."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    organization: str | None = None
    temperature: float = 0.2
    max_tokens: int | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    debug_logging: bool = False
    system_message: str = "You are a helpful assistant inside a note-taking app."
    context_notes: str = ""
    reference_current_note: bool = True
    history_dir: str | None = None
    agent_mode: AgentModeSettings = field(default_factory=AgentModeSettings)


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


class SecretVault:
    """Fernet encryption for the API key, keyed by a file created on first use."""

    strategy = _TOKEN_SCHEME

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or data_dir() / "settings.key"
        self._cipher: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{_TOKEN_SCHEME}:{token}"

    def decrypt(self, token: str | None) -> str:
        """Reverse :meth:`encrypt`.

        Raises:
            ValueError: The token uses another scheme or was made with a different key.
        """

        if not token:
            return ""
        scheme, separator, body = token.partition(":")
        if not separator:
            body = scheme
        elif scheme != _TOKEN_SCHEME:
            raise ValueError(f"Unknown secret token prefix: {scheme}")
        try:
            return self._fernet().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._read_or_mint_key())
        return self._cipher

    def _read_or_mint_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        key = Fernet.generate_key()
        write_text(self._key_path, key.decode("ascii"))
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(self._key_path, 0o600)
        LOGGER.info("Created settings key at %s", self._key_path)
        return key


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SettingsStore:
    """Loads and saves :class:`Settings` as JSON, encrypting the API key."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = Path(path) if path is not None else data_dir() / "settings.json"
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Resolve settings from disk, then ``overrides``, then the environment.

        A missing or damaged document yields defaults. A plaintext ``api_key``
        left by hand-editing is re-saved encrypted.
        """

        document = self._read_document()
        ciphertext = document.pop(CIPHERTEXT_KEY, None)
        plaintext = document.pop("api_key", None)
        settings = self._from_document(document)

        if ciphertext:
            try:
                settings.api_key = self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Stored API key could not be decrypted: %s", exc)
        elif plaintext:
            LOGGER.info("Encrypting plaintext API key found in %s", self._path)
            settings.api_key = str(plaintext)
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only home directories
                LOGGER.warning("Could not rewrite %s: %s", self._path, exc)

        if overrides:
            settings = _with_overrides(settings, overrides, origin="explicit")
        environment = _environment_overrides()
        if environment:
            settings = _with_overrides(settings, environment, origin="environment")
        return settings

    def save(self, settings: Settings) -> Path:
        document = asdict(settings)
        secret = document.pop("api_key", "")
        if secret:
            document[CIPHERTEXT_KEY] = self._vault.encrypt(secret)
        document["version"] = SCHEMA_VERSION
        document["secret_backend"] = self._vault.strategy
        write_text(self._path, json.dumps(document, indent=2, sort_keys=True))
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_document(self) -> Dict[str, Any]:
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(document, dict):
            LOGGER.warning("Settings file %s does not hold an object", self._path)
            return {}
        return document

    @staticmethod
    def _from_document(document: Mapping[str, Any]) -> Settings:
        known = _field_names(Settings)
        values = {key: value for key, value in document.items() if key in known}
        values["agent_mode"] = AgentModeSettings.from_mapping(values.get("agent_mode"))
        try:
            return Settings(**values)
        except TypeError as exc:
            LOGGER.warning("Settings file held unexpected data: %s", exc)
            return Settings()


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------


def _field_names(owner: type) -> set[str]:
    return {item.name for item in fields(owner)}


def _environment_overrides() -> Dict[str, Any]:
    found: Dict[str, Any] = {}
    for variable, (key, convert) in _ENVIRONMENT.items():
        raw = os.environ.get(variable)
        if raw is None:
            continue
        try:
            found[key] = convert(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: expected %s", variable, raw, convert.__name__)
    return found


def _with_overrides(settings: Settings, overrides: Mapping[str, Any], *, origin: str) -> Settings:
    top_level: Dict[str, Any] = {}
    agent: Dict[str, Any] = {}
    top_known = _field_names(Settings) - {"agent_mode"}
    agent_known = _field_names(AgentModeSettings)
    for key, value in overrides.items():
        if value is None:
            continue
        if key.startswith(AGENT_PREFIX):
            name = key[len(AGENT_PREFIX):]
            if name in agent_known:
                agent[name] = value
        elif key in top_known:
            top_level[key] = value
    if agent:
        try:
            top_level["agent_mode"] = replace(settings.agent_mode, **agent)
        except ValueError as exc:
            LOGGER.warning("Ignoring %s agent mode overrides: %s", origin, exc)
    if not top_level:
        return settings
    LOGGER.debug("Applying %s overrides: %s", origin, sorted(top_level))
    return replace(settings, **top_level)


def parse_override(assignment: str) -> tuple[str, Any]:
    """Split a ``key=value`` assignment and coerce the value to the field's type.

    ``agent_mode.<name>`` addresses fields of :class:`AgentModeSettings`.

    Raises:
        ValueError: The assignment is malformed, names an unknown field, or
            the value does not convert.
    """

    key, separator, raw = assignment.partition("=")
    key = key.strip()
    if not separator or not key:
        raise ValueError(f"Override must look like key=value: {assignment!r}")
    owner, name = (
        (AgentModeSettings, key[len(AGENT_PREFIX):]) if key.startswith(AGENT_PREFIX) else (Settings, key)
    )
    annotations = {item.name: str(item.type) for item in fields(owner)}
    if name not in annotations or name == "agent_mode":
        raise ValueError(f"Unknown setting: {key}")
    return key, _convert(annotations[name], raw.strip())


def _convert(annotation: str, raw: str) -> Any:
    nullable = "None" in annotation
    if nullable and raw.lower() in _NULLS:
        return None
    base = annotation.split("[", 1)[0].split("|", 1)[0].strip()
    if base == "bool":
        return _flag(raw)
    if base == "int":
        if nullable and not raw:
            return None
        return int(raw, 10)
    if base == "float":
        return float(raw)
    if base == "dict":
        value = json.loads(raw)
        if not isinstance(value, dict):
            raise ValueError("Expected a JSON object")
        return value
    return raw


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""

    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]
