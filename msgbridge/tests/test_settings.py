import pytest
from pydantic import ValidationError

from msgbridge.config.settings import Settings
from msgbridge.main import startup_banner
from msgbridge.util.debug_excerpt import excerpt_for_debug, excerpt_payload
from msgbridge.util.logger import log_file_path


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("MSGBRIDGE_TARGET_MODEL", "openai/gpt-4o")
    monkeypatch.setenv("MSGBRIDGE_PORT", "9000")
    monkeypatch.setenv("MSGBRIDGE_UPSTREAM_TIMEOUT_SECONDS", "12.5")

    settings = Settings()

    assert settings.target_model == "openai/gpt-4o"
    assert settings.port == 9000
    assert settings.upstream_timeout_seconds == 12.5


def test_settings_accept_legacy_credential_names(monkeypatch):
    monkeypatch.delenv("MSGBRIDGE_UPSTREAM_API_KEY", raising=False)
    monkeypatch.delenv("MSGBRIDGE_INBOUND_API_KEY", raising=False)
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-or-legacy")
    monkeypatch.setenv("MOCK_API_KEY", "shared")

    settings = Settings()

    assert settings.upstream_api_key == "sk-or-legacy"
    assert settings.inbound_api_key == "shared"
    assert settings.auth_enabled is True


def test_settings_are_immutable():
    settings = Settings(target_model="a/b")
    with pytest.raises(ValidationError):
        settings.target_model = "c/d"


def test_upstream_url_joins_base_and_path():
    settings = Settings(upstream_base_url="https://openrouter.ai/api/v1/", upstream_path="chat/completions")
    assert settings.upstream_url == "https://openrouter.ai/api/v1/chat/completions"


def test_auth_disabled_when_secret_empty():
    assert Settings(inbound_api_key="").auth_enabled is False


def test_startup_banner_mentions_client_settings():
    lines = startup_banner(Settings(host="127.0.0.1", port=3456, inbound_api_key="", target_model="x/y"))
    text = "\n".join(lines)
    assert "ANTHROPIC_BASE_URL=http://127.0.0.1:3456" in text
    assert "ANTHROPIC_API_KEY=any-value-works" in text
    assert "Target model: x/y" in text
    assert "disabled" in text

    secured = "\n".join(startup_banner(Settings(inbound_api_key="s3cret")))
    assert "ANTHROPIC_API_KEY=s3cret" in secured


def test_excerpt_for_debug_truncates_long_text():
    assert excerpt_for_debug("short", max_len=10) == "short"
    assert excerpt_for_debug("x" * 12, max_len=10) == "x" * 10 + "... [TRUNCATED]"
    assert excerpt_for_debug("", max_len=10) == ""


def test_excerpt_payload_does_not_mutate_input():
    payload = {
        "system": "s" * 20,
        "messages": [{"role": "user", "content": "m" * 20}, {"role": "user", "content": [{"type": "text"}]}],
    }

    clipped = excerpt_payload(payload, max_len=5)

    assert clipped["system"] == "sssss... [TRUNCATED]"
    assert clipped["messages"][0]["content"] == "mmmmm... [TRUNCATED]"
    assert clipped["messages"][1]["content"] == [{"type": "text"}]
    assert payload["system"] == "s" * 20


def test_log_directory_comes_from_settings(monkeypatch, tmp_path):
    monkeypatch.setenv("MSGBRIDGE_LOG_DIR", str(tmp_path / "gateway-logs"))

    assert log_file_path(Settings()) == tmp_path / "gateway-logs" / "msgbridge.log"
    assert log_file_path(Settings(log_dir="")) is None
    assert log_file_path(Settings(log_dir="  ")) is None
