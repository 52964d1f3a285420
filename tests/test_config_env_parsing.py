from __future__ import annotations

from pathlib import Path

from difygate.config import GatewayConfig


def test_upstream_timeout_defaults_to_none(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DIFYGATE_CONFIG_PATH", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("DIFYGATE_UPSTREAM_TIMEOUT_S", raising=False)

    config = GatewayConfig.load()

    assert config.upstream.timeout_s is None
    assert config.upstream.user == "apiuser"


def test_upstream_timeout_accepts_plain_strings(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DIFYGATE_CONFIG_PATH", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("DIFYGATE_UPSTREAM_TIMEOUT_S", "30")

    assert GatewayConfig.load().upstream.timeout_s == 30.0

    monkeypatch.setenv("DIFYGATE_UPSTREAM_TIMEOUT_S", "none")

    assert GatewayConfig.load().upstream.timeout_s is None


def test_yaml_values_are_loaded_and_env_wins(monkeypatch, tmp_path: Path) -> None:
    config_file = tmp_path / "difygate.yaml"
    config_file.write_text(
        "port: 9001\n"
        "admin_api_key: from-yaml\n"
        "log_format: console\n"
        "upstream:\n"
        "  timeout_s: 45\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("DIFYGATE_CONFIG_PATH", str(config_file))
    monkeypatch.setenv("DIFYGATE_ADMIN_API_KEY", "from-env")

    config = GatewayConfig.load()

    assert config.port == 9001
    assert config.log_format == "console"
    assert config.admin_api_key == "from-env"
    assert config.upstream.timeout_s == 45.0
