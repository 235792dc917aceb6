"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from colloquy.ai.client import ClientSettings
from colloquy.services.settings import SecretVault, Settings, SettingsStore, redact_secret


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = _store(tmp_path).load()

    assert settings == Settings()
    assert not (tmp_path / "settings.json").exists()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        organization="acme",
        token_budget=2048,
        temperature=0.3,
        chat_model="gpt-4o",
        default_headers={"X-Test": "1"},
    )

    SettingsStore(path).save(original)
    reloaded = SettingsStore(path).load()

    assert reloaded == original


def test_saved_payload_never_contains_plaintext_key(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(api_key="super-secret"))

    raw = (tmp_path / "settings.json").read_text(encoding="utf-8")
    payload = json.loads(raw)

    assert "super-secret" not in raw
    assert "api_key" not in payload
    assert payload["api_key_ciphertext"].startswith("fernet:")
    assert payload["version"] == 1


def test_load_legacy_plaintext_api_key_migrates(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(
        json.dumps({"base_url": "https://old", "api_key": "plain-key", "chat_model": "gpt-3.5"}),
        encoding="utf-8",
    )

    loaded = _store(tmp_path).load()

    assert loaded.api_key == "plain-key"
    assert loaded.base_url == "https://old"
    assert loaded.chat_model == "gpt-3.5"
    migrated = json.loads(target.read_text(encoding="utf-8"))
    assert "api_key" not in migrated
    assert migrated["api_key_ciphertext"].startswith("fernet:")


def test_load_ignores_unknown_fields_and_invalid_json(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(json.dumps({"theme": "dark", "temperature": 0.9, "version": 1}), encoding="utf-8")
    assert _store(tmp_path).load().temperature == 0.9

    target.write_text("{not json", encoding="utf-8")
    assert _store(tmp_path).load() == Settings()


def test_env_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(base_url="https://local", api_key="abc", token_budget=1000))
    monkeypatch.setenv("COLLOQUY_BASE_URL", "https://env-base")
    monkeypatch.setenv("COLLOQUY_API_KEY", "env-key")
    monkeypatch.setenv("COLLOQUY_TOKEN_BUDGET", "512")
    monkeypatch.setenv("COLLOQUY_TEMPERATURE", "0.1")
    monkeypatch.setenv("COLLOQUY_DEBUG_LOGGING", "yes")
    monkeypatch.setenv("COLLOQUY_LOG_DIR", str(tmp_path / "env-logs"))

    overridden = _store(tmp_path).load()

    assert overridden.base_url == "https://env-base"
    assert overridden.api_key == "env-key"
    assert overridden.token_budget == 512
    assert overridden.temperature == pytest.approx(0.1)
    assert overridden.debug_logging is True
    assert overridden.log_dir == str(tmp_path / "env-logs")


def test_invalid_numeric_env_override_is_ignored(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("COLLOQUY_TOKEN_BUDGET", "lots")

    with caplog.at_level(logging.WARNING, logger="colloquy.services.settings"):
        settings = _store(tmp_path).load()

    assert settings.token_budget == Settings().token_budget
    assert "not a valid integer" in caplog.text


def test_cli_overrides_apply_before_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("COLLOQUY_CHAT_MODEL", "env-model")

    settings = _store(tmp_path).load(overrides={"chat_model": "cli-model", "speech_voice": "nova", "bogus": 1})

    assert settings.chat_model == "env-model"
    assert settings.speech_voice == "nova"


def test_to_client_settings_copies_every_field() -> None:
    settings = Settings(api_key="key", token_budget=300, default_headers={"X": "1"})

    client_settings = settings.to_client_settings(debug_logging=True)

    assert isinstance(client_settings, ClientSettings)
    assert client_settings.api_key == "key"
    assert client_settings.token_budget == 300
    assert client_settings.default_headers == {"X": "1"}
    assert client_settings.debug_logging is True
    assert Settings().to_client_settings().default_headers is None


def test_secret_vault_round_trip_and_errors(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "vault.key")

    token = vault.encrypt("hunter2")

    assert token.startswith("fernet:")
    assert vault.decrypt(token) == "hunter2"
    assert vault.encrypt("") == ""
    assert vault.decrypt(None) == ""
    with pytest.raises(ValueError, match="Unknown secret token prefix"):
        vault.decrypt("rot13:abc")
    with pytest.raises(ValueError, match="Invalid Fernet token"):
        vault.decrypt("fernet:garbage")


def test_undecryptable_key_loads_as_empty(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(json.dumps({"api_key_ciphertext": "fernet:garbage", "version": 1}), encoding="utf-8")

    assert _store(tmp_path).load().api_key == ""


@pytest.mark.parametrize(
    ("secret", "expected"),
    [("", ""), ("abcd", "****"), ("sk-123456", "sk*****56")],
)
def test_redact_secret(secret: str, expected: str) -> None:
    assert redact_secret(secret) == expected
