"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from shellbridge.config.settings import (
    ClientConfig,
    ServerConfig,
    Settings,
    SSHConfig,
    load_settings,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from the caller's environment and any .env file."""
    for name in ("WS_PORT", "PORT", "WS_URL", "SHELLBRIDGE_SERVER__PORT", "SHELLBRIDGE_LOGGING__LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


class TestSettings:

    def test_default_settings(self) -> None:
        """Default Settings should be valid."""
        settings = Settings()
        assert settings.server.port == 8080
        assert settings.server.ws_path == "/ws"
        assert settings.ssh.connect_timeout == 15.0
        assert settings.ssh.handshake_timeout == 10.0
        assert settings.client.max_reconnect_attempts == 5
        assert settings.client.reconnect_delay == 1.0
        assert settings.logging.level == "INFO"

    def test_ssh_config_defaults(self) -> None:
        config = SSHConfig()
        assert config.term_type == "xterm-256color"
        assert (config.default_rows, config.default_cols) == (24, 80)
        assert config.known_hosts is None

    def test_invalid_values_are_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(port=70000)
        with pytest.raises(ValidationError):
            ServerConfig(ws_path="ws")
        with pytest.raises(ValidationError):
            SSHConfig(connect_timeout=0)
        with pytest.raises(ValidationError):
            ClientConfig(max_reconnect_attempts=-1)

    def test_load_settings_missing_file(self, tmp_path: Path) -> None:
        """load_settings with missing file should return defaults."""
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.server.port == 8080

    def test_load_settings_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "shellbridge.yaml"
        path.write_text(
            "server:\n  port: 9000\n  ws_path: /terminal\n"
            "ssh:\n  connect_timeout: 5\n"
            "client:\n  url: ws://example/ws\n"
        )
        settings = load_settings(path)
        assert settings.server.port == 9000
        assert settings.server.ws_path == "/terminal"
        assert settings.ssh.connect_timeout == 5
        assert settings.ssh.handshake_timeout == 10.0
        assert settings.client.url == "ws://example/ws"

    def test_empty_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_settings(path).server.port == 8080

    def test_prefixed_env_overrides_yaml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "shellbridge.yaml"
        path.write_text("server:\n  port: 9000\n")
        monkeypatch.setenv("SHELLBRIDGE_SERVER__PORT", "9100")
        assert load_settings(path).server.port == 9100

    def test_legacy_port_variables(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("PORT", "7000")
        assert load_settings(tmp_path / "none.yaml").server.port == 7000

        monkeypatch.setenv("WS_PORT", "7001")
        assert load_settings(tmp_path / "none.yaml").server.port == 7001

    def test_legacy_url_variable(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("WS_URL", "ws://remote:1234/ws")
        assert load_settings(tmp_path / "none.yaml").client.url == "ws://remote:1234/ws"

    def test_dotenv_file_is_loaded(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        # Empty values are filled from .env; monkeypatch restores the variable afterwards.
        monkeypatch.setenv("WS_PORT", "")
        (tmp_path / ".env").write_text("# comment\nWS_PORT=6543\n")
        assert load_settings(tmp_path / "none.yaml").server.port == 6543
