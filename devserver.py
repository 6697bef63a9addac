from __future__ import annotations

import logging
import os
from typing import List

import uvicorn

from logging_utils import configure_logging
from settings import Settings, load_settings

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "1") -> bool:
    value = os.getenv(name, default)
    return value.strip().lower() in {"1", "true", "yes", "on"}


def startup_hints(settings: Settings, host: str, port: int) -> List[str]:
    """Lines telling the developer what is missing before Telegram can reach the bot."""
    hints = [f"Serving on http://{host}:{port}"]
    if settings.public_base_url:
        hints.append(f"Register the webhook: open {settings.public_base_url}/setup?secret=<BOT_SECRET>")
        hints.append(f"OAuth redirect URI: {settings.public_base_url}/oauth/callback")
    else:
        # Telegram and Google both need a public HTTPS URL.
        hints.append(f"PUBLIC_BASE_URL is not set; start a tunnel to port {port} and set it to the tunnel URL")
    if not settings.bot_secret:
        hints.append("BOT_SECRET is not set; /webhook, /pubsub/push and /setup will answer 503")
    if not settings.telegram_configured:
        hints.append("TELEGRAM_BOT_TOKEN is not set; replies will fail")
    if not settings.oauth_configured:
        hints.append("GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are not set; accounts cannot be linked")
    return hints


def main() -> int:
    log_path = configure_logging()
    if log_path:
        print(f"Logging to {log_path}")

    host = os.getenv("GMAIL_BOT_DEV_HOST", "127.0.0.1")
    port = int(os.getenv("GMAIL_BOT_DEV_PORT", "8000"))
    reload = _env_flag("GMAIL_BOT_DEV_RELOAD", "1")
    log_level = os.getenv("GMAIL_BOT_DEV_LOG_LEVEL", "info")

    for hint in startup_hints(load_settings(), host, port):
        logger.info(hint)

    uvicorn.run(
        "app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
