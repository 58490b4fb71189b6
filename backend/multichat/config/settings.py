"""Application settings and configuration loading.

Responsibilities:
- Load environment variables (supports both repo root `.env` and `backend/.env`).
- Load an optional YAML config from a configurable path, with sane defaults.
- Let environment variables override YAML values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

import yaml
from dotenv import load_dotenv


TWITCH_IRC_WS_URL = "wss://irc-ws.chat.twitch.tv:443"


@dataclass
class Settings:
    """Runtime settings loaded from env and YAML config."""

    host: str = "127.0.0.1"
    port: int = 5001
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    irc_url: str = TWITCH_IRC_WS_URL
    connect_timeout_secs: float = 10.0
    ack_timeout_secs: float = 10.0
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 60.0

    history_size: int = 50
    subscriber_queue_size: int = 256

    def __post_init__(self) -> None:
        if self.port <= 0:
            raise ValueError(f"port must be positive, got {self.port}")
        for name in ("connect_timeout_secs", "ack_timeout_secs", "reconnect_max_delay"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.reconnect_initial_delay < 0:
            raise ValueError("reconnect_initial_delay must not be negative")
        if self.history_size < 0:
            raise ValueError("history_size must not be negative")
        if self.subscriber_queue_size <= 0:
            raise ValueError("subscriber_queue_size must be positive")

    @staticmethod
    def load(config_path: Optional[str] = None) -> "Settings":
        """Load settings from env and YAML.

        Order of env loading:
        1) repo root `.env`
        2) `backend/.env`
        Existing env values take precedence over later files, and env values
        take precedence over the YAML file.
        """
        load_dotenv(Path(".env"))
        load_dotenv(Path("backend/.env"))

        data = _load_yaml(config_path or os.getenv("MULTICHAT_CONFIG", "").strip())
        server = data.get("server", {}) or {}
        irc = data.get("irc", {}) or {}
        fanout = data.get("fanout", {}) or {}

        cors = _env("CORS_ORIGIN", server.get("cors_origins"), _split_list)
        settings = Settings(
            host=_env("HOST", server.get("host"), str) or "127.0.0.1",
            port=_env("PORT", server.get("port"), int) or 5001,
            cors_origins=cors if cors is not None else ["http://localhost:3000"],
            irc_url=_env("TWITCH_IRC_URL", irc.get("url"), str) or TWITCH_IRC_WS_URL,
            connect_timeout_secs=_or(_env("CHAT_CONNECT_TIMEOUT_SECS", irc.get("connect_timeout_secs"), float), 10.0),
            ack_timeout_secs=_or(_env("CHAT_ACK_TIMEOUT_SECS", irc.get("ack_timeout_secs"), float), 10.0),
            reconnect_initial_delay=_or(
                _env("CHAT_RECONNECT_INITIAL_DELAY", irc.get("reconnect_initial_delay"), float), 1.0
            ),
            reconnect_max_delay=_or(_env("CHAT_RECONNECT_MAX_DELAY", irc.get("reconnect_max_delay"), float), 60.0),
            history_size=_or(_env("CHAT_HISTORY_SIZE", fanout.get("history_size"), int), 50),
            subscriber_queue_size=_or(
                _env("CHAT_SUBSCRIBER_QUEUE_SIZE", fanout.get("subscriber_queue_size"), int), 256
            ),
        )

        logger.info(
            f"Loaded settings (irc={settings.irc_url}, port={settings.port}, "
            f"ack_timeout={settings.ack_timeout_secs}s, history={settings.history_size})"
        )
        return settings


def _load_yaml(explicit: str) -> Dict[str, Any]:
    """Return the parsed YAML mapping, or `{}` when no config file exists."""
    base_dir = Path(__file__).resolve().parent  # backend/multichat/config

    candidates: List[Path] = []
    if explicit:
        path = Path(explicit).expanduser()
        if path.is_absolute():
            candidates.append(path)
        else:
            candidates.append(Path.cwd() / path)
            candidates.append(base_dir / path)
        if not any(p.exists() for p in candidates):
            raise FileNotFoundError(f"Config file not found: {explicit}")

    candidates.extend(
        [
            base_dir / "multichat.yaml",
            Path.cwd() / "config" / "multichat.yaml",
            Path.cwd() / "backend" / "config" / "multichat.yaml",
        ]
    )

    config_path = next((p for p in candidates if p.exists()), None)
    if config_path is None:
        logger.debug("No multichat.yaml found; using defaults and environment")
        return {}

    try:
        with config_path.open("r", encoding="utf-8") as fp:
            data = yaml.safe_load(fp) or {}
    except Exception as exc:
        logger.exception(f"Failed to load config YAML: {exc}")
        raise

    if not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a YAML mapping at top level")
    logger.debug(f"Loaded config YAML from {config_path}")
    return data


def _env(name: str, fallback: Any, cast: Callable[[Any], Any]) -> Any:
    raw = os.getenv(name)
    value = raw if raw is not None and raw.strip() != "" else fallback
    if value is None:
        return None
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for {name}: {value!r}") from exc


def _or(value: Any, default: Any) -> Any:
    return default if value is None else value


def _split_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    return [str(s).strip() for s in value if str(s).strip()]
