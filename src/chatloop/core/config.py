"""Configuration and credential management for chatloop."""

from __future__ import annotations

import base64
import json
import os
import tomllib
from collections.abc import Callable
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tomli_w
import typer
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, ValidationError

from .agent_loop import DEFAULT_MAX_ITERATIONS
from .llm.types import ApiStyle, LLMSettings, StreamOptions
from .mcp import DEFAULT_MCP_URL

DEFAULT_CONFIG_DIR = Path(os.environ.get("CHATLOOP_HOME", Path.home() / ".chatloop"))
CONFIG_FILENAME = "config.toml"
CREDENTIALS_FILENAME = "credentials.json"
PBKDF_ITERATIONS = 390_000
PASSPHRASE_ENV = "CHATLOOP_PASSPHRASE"
GENERIC_KEY_ENV = "CHATLOOP_LLM_API_KEY"


class ConfigurationError(RuntimeError):
    """Raised when configuration or credential loading fails."""


@dataclass(frozen=True, slots=True)
class ProviderPreset:
    api: ApiStyle
    base_url: str
    model: str
    key_env: str


PROVIDER_PRESETS: dict[str, ProviderPreset] = {
    "openai": ProviderPreset("responses", "https://api.openai.com/v1", "gpt-5-mini", "OPENAI_KEY"),
    "openrouter": ProviderPreset("chat", "https://openrouter.ai/api/v1", "anthropic/claude-sonnet-4", "OPENROUTER_API_KEY"),
    "gemini": ProviderPreset(
        "gemini",
        "https://generativelanguage.googleapis.com/v1beta",
        "gemini-2.5-flash-lite",
        "GEMINI_KEY",
    ),
}


class ChatLoopConfig(BaseModel):
    """Persisted chatloop configuration settings."""

    config_version: int = 1
    llm_provider: str = "openai"
    llm_api: ApiStyle | None = None
    llm_base_url: str | None = None
    llm_model: str | None = None
    llm_thinking: str | None = None
    llm_thinking_budget: int | None = None
    llm_output_tokens: int | None = None
    llm_temperature: float | None = None
    system_prompt: str | None = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    mcp_url: str = DEFAULT_MCP_URL
    request_timeout_secs: float = 60.0
    request_retries: int = 2
    history_max_sessions: int = 20
    log_buffer_size: int = 200

    def preset(self) -> ProviderPreset | None:
        return PROVIDER_PRESETS.get(self.llm_provider.lower())

    def resolved_api(self) -> ApiStyle:
        if self.llm_api is not None:
            return self.llm_api
        preset = self.preset()
        return preset.api if preset else "chat"

    def resolved_base_url(self) -> str:
        if self.llm_base_url:
            return self.llm_base_url
        preset = self.preset()
        if preset is None:
            raise ConfigurationError(f"Provider '{self.llm_provider}' requires llm_base_url")
        return preset.base_url

    def resolved_model(self) -> str:
        if self.llm_model:
            return self.llm_model
        preset = self.preset()
        if preset is None:
            raise ConfigurationError(f"Provider '{self.llm_provider}' requires llm_model")
        return preset.model

    def stream_options(self) -> StreamOptions:
        return StreamOptions(
            system_prompt=self.system_prompt,
            thinking=self.llm_thinking,
            thinking_budget=self.llm_thinking_budget,
            output_tokens=self.llm_output_tokens,
            temperature=self.llm_temperature,
        )


@dataclass
class ConfigContext:
    """Represents an initialized configuration and decrypted secrets."""

    config: ChatLoopConfig
    llm_api_key: str
    passphrase: str | None

    @property
    def offline(self) -> bool:
        return not self.llm_api_key

    def llm_settings(self) -> LLMSettings:
        return LLMSettings(
            provider=self.config.llm_provider,
            base_url=self.config.resolved_base_url(),
            model=self.config.resolved_model(),
            api_key=self.llm_api_key or None,
            api=self.config.resolved_api(),
            timeout_seconds=self.config.request_timeout_secs,
            max_retries=self.config.request_retries,
        )


class CredentialStore:
    """Encrypts/decrypts per-provider API keys using a passphrase-derived key."""

    def __init__(self, credentials_path: Path) -> None:
        self.credentials_path = credentials_path

    def exists(self, provider: str | None = None) -> bool:
        if not self.credentials_path.exists():
            return False
        if provider is None:
            return True
        return provider in self._read().get("providers", {})

    def save(self, passphrase: str, api_key: str, *, provider: str) -> None:
        salt = os.urandom(16)
        key = self._derive_key(passphrase, salt)
        token = Fernet(key).encrypt(api_key.encode("utf-8"))
        data = self._read() if self.credentials_path.exists() else {}
        providers = data.setdefault("providers", {})
        providers[provider] = {
            "salt": base64.b64encode(salt).decode("ascii"),
            "ciphertext": base64.b64encode(token).decode("ascii"),
            "iterations": PBKDF_ITERATIONS,
        }
        self.credentials_path.parent.mkdir(parents=True, exist_ok=True)
        self.credentials_path.write_text(json.dumps(data, indent=2))

    def load(self, passphrase: str, *, provider: str) -> str:
        entry = self._read().get("providers", {}).get(provider)
        if not isinstance(entry, dict):
            raise ConfigurationError(f"No stored API key for provider '{provider}'")
        try:
            salt = base64.b64decode(entry["salt"])
            ciphertext = base64.b64decode(entry["ciphertext"])
        except (KeyError, ValueError) as exc:
            raise ConfigurationError("Corrupt chatloop credentials file") from exc
        key = self._derive_key(passphrase, salt, int(entry.get("iterations", PBKDF_ITERATIONS)))
        try:
            decrypted = Fernet(key).decrypt(ciphertext)
        except InvalidToken as exc:
            raise ConfigurationError("Invalid passphrase for chatloop credentials") from exc
        return decrypted.decode("utf-8")

    def _read(self) -> dict[str, Any]:
        try:
            data = json.loads(self.credentials_path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Failed to read credentials from {self.credentials_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError("Corrupt chatloop credentials file")
        return data

    @staticmethod
    def _derive_key(passphrase: str, salt: bytes, iterations: int = PBKDF_ITERATIONS) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=iterations,
        )
        return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class ConfigManager:
    """Handles loading, overriding, and persisting chatloop configuration."""

    def __init__(
        self,
        config_dir: Path | None = None,
        prompt_fn: Callable[..., str] | None = None,
        echo_fn: Callable[[str], None] | None = None,
        project_config_path: Path | None = None,
        override_config_path: Path | None = None,
    ) -> None:
        self.config_dir = config_dir or DEFAULT_CONFIG_DIR
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_path = self.config_dir / CONFIG_FILENAME
        self.credentials_path = self.config_dir / CREDENTIALS_FILENAME
        self._credential_store = CredentialStore(self.credentials_path)
        self._prompt = prompt_fn or self._default_prompt
        self._echo = echo_fn or typer.echo
        self.project_config_path = project_config_path
        self.override_config_path = override_config_path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def ensure(
        self,
        *,
        interactive: bool = True,
        overrides: dict[str, Any] | None = None,
        llm_api_key: str | None = None,
        passphrase: str | None = None,
        offline_mode: bool = False,
    ) -> ConfigContext:
        """Load configuration, apply per-run overrides, and resolve the API key.

        Overrides apply to this run only and are not written back. A missing
        API key is not an error: the context then reports ``offline``.
        """

        if not self.config_path.exists():
            self._save_config(ChatLoopConfig())
        config = self.load()
        if overrides:
            config = self._apply_overrides(config, overrides)

        if offline_mode:
            return ConfigContext(config=config, llm_api_key="", passphrase=passphrase)
        if llm_api_key:
            return ConfigContext(config=config, llm_api_key=llm_api_key, passphrase=passphrase)

        env_key = self._api_key_from_env(config)
        if env_key:
            return ConfigContext(config=config, llm_api_key=env_key, passphrase=passphrase)

        provider = config.llm_provider.lower()
        if self._credential_store.exists(provider):
            api_key, used_passphrase = self._load_api_key(provider, passphrase=passphrase, interactive=interactive)
            return ConfigContext(config=config, llm_api_key=api_key, passphrase=used_passphrase)

        return ConfigContext(config=config, llm_api_key="", passphrase=passphrase)

    def load(self) -> ChatLoopConfig:
        data: dict[str, Any] = self._read_config_dict(self.config_path)
        if self.project_config_path:
            data = self._merge_dicts(data, self._read_config_dict(self.project_config_path))
        if self.override_config_path:
            data = self._merge_dicts(data, self._read_config_dict(self.override_config_path))
        try:
            return ChatLoopConfig(**data)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    def store_api_key(
        self,
        api_key: str,
        *,
        provider: str | None = None,
        passphrase: str | None = None,
        interactive: bool = True,
    ) -> Path:
        provider_name = (provider or self.load().llm_provider).lower()
        passphrase_value = passphrase or os.environ.get(PASSPHRASE_ENV)
        if not passphrase_value:
            if not interactive:
                raise ConfigurationError("Passphrase required to store credentials non-interactively")
            passphrase_value = self._prompt(
                "Create a passphrase to secure your chatloop credentials",
                hide_input=True,
                confirmation_prompt=True,
            )
        self._credential_store.save(passphrase_value, api_key, provider=provider_name)
        self._echo(f"✅ API key for {provider_name} saved to {self.credentials_path}")
        return self.credentials_path

    def update_preferences(self, **updates: Any) -> ChatLoopConfig:
        current = self._read_config_dict(self.config_path)
        current.update({key: value for key, value in updates.items() if value is not None})
        try:
            config = ChatLoopConfig(**current)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc
        self._save_config(config)
        return config

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _apply_overrides(self, config: ChatLoopConfig, overrides: dict[str, Any]) -> ChatLoopConfig:
        data = config.model_dump()
        data.update({key: value for key, value in overrides.items() if value is not None})
        try:
            return ChatLoopConfig(**data)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc

    def _api_key_from_env(self, config: ChatLoopConfig) -> str | None:
        preset = config.preset()
        if preset is not None:
            value = os.environ.get(preset.key_env)
            if value:
                return value
        return os.environ.get(GENERIC_KEY_ENV) or None

    def _save_config(self, config: ChatLoopConfig) -> None:
        self.config_path.write_text(tomli_w.dumps(config.model_dump(exclude_none=True)))

    def _read_config_dict(self, path: Path | None) -> dict[str, Any]:
        if path is None:
            return {}
        if not path.exists():
            return {}
        try:
            return tomllib.loads(path.read_text())
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ConfigurationError(f"Failed to load config from {path}: {exc}") from exc

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        result = deepcopy(base)
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _load_api_key(self, provider: str, *, passphrase: str | None, interactive: bool) -> tuple[str, str]:
        attempts = 3
        while True:
            pwd = passphrase or os.environ.get(PASSPHRASE_ENV)
            if not pwd:
                if not interactive:
                    raise ConfigurationError("Passphrase required to decrypt chatloop credentials")
                pwd = self._prompt("Enter chatloop passphrase", hide_input=True)
            try:
                return self._credential_store.load(pwd, provider=provider), pwd
            except ConfigurationError:
                if not interactive:
                    raise
                attempts -= 1
                if attempts <= 0:
                    raise
                self._echo("❌ Invalid passphrase. Please try again.")
                passphrase = None

    @staticmethod
    def _default_prompt(
        message: str,
        *,
        hide_input: bool = False,
        confirmation_prompt: bool = False,
        default: str | None = None,
    ) -> str:
        if default is not None:
            return typer.prompt(message, default=default, hide_input=hide_input, confirmation_prompt=confirmation_prompt)
        return typer.prompt(message, hide_input=hide_input, confirmation_prompt=confirmation_prompt)


__all__ = [
    "ChatLoopConfig",
    "ConfigContext",
    "ConfigManager",
    "ConfigurationError",
    "CredentialStore",
    "PROVIDER_PRESETS",
    "ProviderPreset",
]
