"""
Tests for config loading and ${VAR} resolution.
Run with: pytest tests/test_config.py
"""

import pytest

from voicebridge import config


@pytest.fixture(autouse=True)
def fresh_config():
    config._config = None
    yield
    config._config = None


def test_env_vars_are_resolved(tmp_path, monkeypatch):
    monkeypatch.setenv("VB_TEST_KEY", "sk-123")
    monkeypatch.delenv("VB_TEST_HOST", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "auth:\n"
        "  api_key: ${VB_TEST_KEY}\n"
        "  allowed_origins:\n"
        "    - https://${VB_TEST_HOST}.example.com\n"
        "server:\n"
        "  port: 8000\n"
    )

    cfg = config.load_config(path)

    assert cfg["auth"]["api_key"] == "sk-123"
    assert cfg["auth"]["allowed_origins"] == ["https://.example.com"]
    assert cfg["server"]["port"] == 8000


def test_config_is_cached(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: 1\n")
    first = config.load_config(path)
    path.write_text("server:\n  port: 2\n")
    assert config.get_config() is first
    assert config.section(config.get_config(), "server") == {"port": 1}


def test_missing_and_empty_sections(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("providers:\n")
    cfg = config.load_config(path)
    assert config.section(cfg, "providers") == {}
    assert config.section(cfg, "billing") == {}


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        config.load_config(tmp_path / "nope.yaml")


def test_shipped_config_parses(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
    cfg = config.load_config(config._CONFIG_PATH)
    assert cfg["providers"]["openai"]["api_key"] == "sk-openai"
    assert set(cfg["providers"]) == {"openai", "google", "anthropic", "fireworks", "together"}


def test_unknown_section_is_a_key_error():
    with pytest.raises(KeyError):
        config.section({"providers": {}}, "provider")


def test_sqlite_path_default_and_override():
    assert config.sqlite_path({}) == config.DEFAULT_SQLITE_PATH
    assert config.sqlite_path({"storage": None}) == config.DEFAULT_SQLITE_PATH
    assert config.sqlite_path({"storage": {"sqlite_path": "/tmp/vb.db"}}) == "/tmp/vb.db"


def test_server_address_coerces_port():
    assert config.server_address({"server": {"host": "127.0.0.1", "port": "9000"}}) == ("127.0.0.1", 9000)
    assert config.server_address({}) == (config.DEFAULT_HOST, config.DEFAULT_PORT)
