from pathlib import Path

import pytest

from chatloop.core.config import (
    GENERIC_KEY_ENV,
    PASSPHRASE_ENV,
    ChatLoopConfig,
    ConfigManager,
    ConfigurationError,
)

KEY_ENVS = ("OPENAI_KEY", "OPENROUTER_API_KEY", "GEMINI_KEY", GENERIC_KEY_ENV, PASSPHRASE_ENV)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in KEY_ENVS:
        monkeypatch.delenv(name, raising=False)


def make_manager(tmp_path: Path, **kwargs) -> ConfigManager:
    echoes: list[str] = []
    return ConfigManager(config_dir=tmp_path / "home", echo_fn=echoes.append, **kwargs)


def test_ensure_writes_defaults_and_reports_offline(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)

    context = manager.ensure(interactive=False)

    assert manager.config_path.exists()
    assert context.offline is True
    assert context.config.max_iterations == 10
    assert context.config.mcp_url == "http://localhost:3350/mcp"


def test_provider_env_key_is_used(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_KEY", "AIza-env-key")
    manager = make_manager(tmp_path)

    context = manager.ensure(interactive=False, overrides={"llm_provider": "gemini"})

    assert context.llm_api_key == "AIza-env-key"
    settings = context.llm_settings()
    assert settings.api == "gemini"
    assert settings.model == "gemini-2.5-flash-lite"
    assert settings.base_url.startswith("https://generativelanguage.googleapis.com")


def test_explicit_key_wins_over_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(GENERIC_KEY_ENV, "from-env")

    context = make_manager(tmp_path).ensure(interactive=False, llm_api_key="from-flag")

    assert context.llm_api_key == "from-flag"


def test_offline_mode_ignores_available_keys(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_KEY", "sk-available")

    context = make_manager(tmp_path).ensure(interactive=False, offline_mode=True)

    assert context.offline is True


def test_stored_key_round_trips_through_credential_store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    manager = make_manager(tmp_path)
    manager.store_api_key("sk-stored-secret", provider="openai", passphrase="hunter2", interactive=False)

    assert "sk-stored-secret" not in manager.credentials_path.read_text()

    monkeypatch.setenv(PASSPHRASE_ENV, "hunter2")
    context = manager.ensure(interactive=False)

    assert context.llm_api_key == "sk-stored-secret"
    assert context.passphrase == "hunter2"


def test_wrong_passphrase_fails_non_interactively(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    manager.store_api_key("sk-stored-secret", provider="openai", passphrase="right", interactive=False)

    with pytest.raises(ConfigurationError, match="Invalid passphrase"):
        manager.ensure(interactive=False, passphrase="wrong")


def test_project_and_override_files_merge(tmp_path: Path) -> None:
    project = tmp_path / "project.toml"
    project.write_text('llm_model = "project-model"\nmax_iterations = 4\n')
    override = tmp_path / "override.toml"
    override.write_text("max_iterations = 6\n")

    manager = make_manager(tmp_path, project_config_path=project, override_config_path=override)
    config = manager.load()

    assert config.llm_model == "project-model"
    assert config.max_iterations == 6


def test_invalid_toml_raises_configuration_error(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    broken.write_text("max_iterations = [")

    with pytest.raises(ConfigurationError):
        make_manager(tmp_path, override_config_path=broken).load()


def test_unknown_provider_requires_explicit_endpoint() -> None:
    config = ChatLoopConfig(llm_provider="custom")

    assert config.resolved_api() == "chat"
    with pytest.raises(ConfigurationError):
        config.resolved_base_url()


def test_update_preferences_persists(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    manager.ensure(interactive=False)

    manager.update_preferences(llm_thinking="high", llm_temperature=None)

    assert manager.load().llm_thinking == "high"
    assert manager.load().stream_options().thinking == "high"
