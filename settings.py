"""
Runtime configuration.

Each value is looked up on an optional ``config`` module first, then in the
environment, then falls back to a default. Deployments usually only set
environment variables; ``config.py`` is handy for local runs.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

try:
    import config  # type: ignore
except ImportError:  # pragma: no cover - optional configuration module
    config = None  # type: ignore


def _config_value(attr: str, env_name: str, default=None):
    if config and hasattr(config, attr):
        value = getattr(config, attr)
        if value not in (None, "", []):
            return value
    env_value = os.getenv(env_name)
    if env_value not in (None, ""):
        return env_value
    return default


def _int_value(attr: str, default: int) -> int:
    raw = _config_value(attr, attr, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _true(value: Optional[str]) -> bool:
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    telegram_token: Optional[str] = None
    bot_secret: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    pubsub_topic: Optional[str] = None
    public_base_url: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    kv_table: str = "kv_entries"
    kv_namespace: str = "gmail_bot"
    timezone: str = "UTC"
    page_size: int = 5
    max_content_length: int = 3500
    preview_length: int = 300

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_token)

    @property
    def oauth_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)


def load_settings() -> Settings:
    telegram_token = _config_value("TELEGRAM_BOT_TOKEN", "TELEGRAM_BOT_TOKEN")
    # Global kill-switch for Telegram (useful to stop message floods quickly)
    if _true(os.getenv("DISABLE_TELEGRAM", "")):
        telegram_token = None
    public_base_url = _config_value("PUBLIC_BASE_URL", "PUBLIC_BASE_URL")
    return Settings(
        telegram_token=telegram_token,
        bot_secret=_config_value("BOT_SECRET", "BOT_SECRET"),
        google_client_id=_config_value("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_ID"),
        google_client_secret=_config_value("GOOGLE_CLIENT_SECRET", "GOOGLE_CLIENT_SECRET"),
        pubsub_topic=_config_value("PUBSUB_TOPIC", "PUBSUB_TOPIC"),
        public_base_url=public_base_url.rstrip("/") if public_base_url else None,
        supabase_url=_config_value("SUPABASE_URL", "SUPABASE_URL"),
        supabase_service_role_key=_config_value("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_ROLE_KEY"),
        kv_table=_config_value("KV_TABLE", "KV_TABLE", "kv_entries"),
        kv_namespace=_config_value("KV_NAMESPACE", "KV_NAMESPACE", "gmail_bot"),
        timezone=_config_value("BOT_TIMEZONE", "BOT_TIMEZONE", "UTC"),
        page_size=_int_value("PAGE_SIZE", 5),
        max_content_length=_int_value("MAX_CONTENT_LENGTH", 3500),
        preview_length=_int_value("PREVIEW_LENGTH", 300),
    )
