import pydantic
import pytest

from odali.server.config import ServerSettings, load_settings, parse_listen


def test_defaults_without_file(monkeypatch):
    monkeypatch.delenv("PORT", raising=False)
    settings = load_settings(None)
    assert settings.http_address() == ("0.0.0.0", 3000)
    assert settings.ws_address() == ("0.0.0.0", 3001)
    assert settings.retention_ms == 2 * 24 * 3600 * 1000


def test_yaml_file_and_port_override(tmp_path, monkeypatch):
    path = tmp_path / "server.yaml"
    path.write_text(
        "http_listen: '127.0.0.1:8080'\n"
        "retention_hours: 1\n"
        "call_tokens:\n"
        "  account_sid: AC9\n"
    )
    monkeypatch.setenv("PORT", "9999")
    settings = load_settings(path)
    assert settings.http_address() == ("127.0.0.1", 9999)
    assert settings.retention_ms == 3600 * 1000
    assert settings.call_tokens.account_sid == "AC9"


def test_call_token_env_fallback(monkeypatch):
    monkeypatch.setenv("TWILIO_ACCOUNT_SID", "ACenv")
    monkeypatch.setenv("TWILIO_API_KEY_SID", "SKenv")
    monkeypatch.setenv("TWILIO_API_KEY_SECRET", "secret")
    issuer = ServerSettings().call_tokens.issuer()
    assert issuer.configured
    assert issuer.account_sid == "ACenv"


def test_invalid_values_rejected(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("sweep_interval_secs: 0\n")
    with pytest.raises(pydantic.ValidationError):
        load_settings(path)


def test_parse_listen():
    assert parse_listen("localhost:7001") == ("localhost", 7001)
