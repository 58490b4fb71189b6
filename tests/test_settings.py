"""Tests for Settings defaults, YAML loading and environment overrides."""

import pytest

from multichat.config.settings import TWITCH_IRC_WS_URL, Settings

ENV_KEYS = (
    "MULTICHAT_CONFIG",
    "HOST",
    "PORT",
    "CORS_ORIGIN",
    "TWITCH_IRC_URL",
    "CHAT_CONNECT_TIMEOUT_SECS",
    "CHAT_ACK_TIMEOUT_SECS",
    "CHAT_RECONNECT_INITIAL_DELAY",
    "CHAT_RECONNECT_MAX_DELAY",
    "CHAT_HISTORY_SIZE",
    "CHAT_SUBSCRIBER_QUEUE_SIZE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    # keep stray .env / multichat.yaml files in the working tree out of the way
    monkeypatch.chdir(tmp_path)


def test_defaults():
    settings = Settings.load()
    assert settings.irc_url == TWITCH_IRC_WS_URL
    assert settings.port == 5001
    assert settings.ack_timeout_secs == 10.0
    assert settings.cors_origins == ["http://localhost:3000"]


def test_yaml_file(tmp_path):
    path = tmp_path / "chat.yaml"
    path.write_text(
        "server:\n"
        "  port: 6000\n"
        "  cors_origins: [http://a.test, http://b.test]\n"
        "irc:\n"
        "  ack_timeout_secs: 3\n"
        "fanout:\n"
        "  history_size: 0\n",
        encoding="utf-8",
    )
    settings = Settings.load(str(path))
    assert settings.port == 6000
    assert settings.cors_origins == ["http://a.test", "http://b.test"]
    assert settings.ack_timeout_secs == 3.0
    assert settings.history_size == 0


def test_env_overrides_yaml(tmp_path, monkeypatch):
    path = tmp_path / "chat.yaml"
    path.write_text("server:\n  port: 6000\n", encoding="utf-8")
    monkeypatch.setenv("MULTICHAT_CONFIG", str(path))
    monkeypatch.setenv("PORT", "7000")
    monkeypatch.setenv("CORS_ORIGIN", "http://x.test, http://y.test")

    settings = Settings.load()

    assert settings.port == 7000
    assert settings.cors_origins == ["http://x.test", "http://y.test"]


def test_invalid_env_value(monkeypatch):
    monkeypatch.setenv("CHAT_ACK_TIMEOUT_SECS", "soon")
    with pytest.raises(ValueError):
        Settings.load()


def test_missing_explicit_config():
    with pytest.raises(FileNotFoundError):
        Settings.load("does-not-exist.yaml")


def test_non_mapping_yaml(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        Settings.load(str(path))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"port": 0},
        {"ack_timeout_secs": 0},
        {"reconnect_initial_delay": -1},
        {"history_size": -1},
        {"subscriber_queue_size": 0},
    ],
)
def test_validation(kwargs):
    with pytest.raises(ValueError):
        Settings(**kwargs)
