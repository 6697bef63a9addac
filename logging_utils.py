from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional


LOG_ENV_VAR = "GMAIL_BOT_ACTIVE_LOG"
LOG_DIR_ENV_VAR = "GMAIL_BOT_LOG_DIR"
LOG_LEVEL_ENV_VAR = "GMAIL_BOT_LOG_LEVEL"


def _running_in_cloud() -> bool:
    cloud_markers = (
        "K_SERVICE",
        "CLOUD_RUN_SERVICE",
        "CLOUD_RUN_JOB",
        "GAE_SERVICE",
    )
    return any(os.getenv(marker) for marker in cloud_markers)


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging() -> Optional[Path]:
    """
    Configure root logging once per process.

    Locally, records go to stderr and to a timestamped file under
    GMAIL_BOT_LOG_DIR; in Cloud Run only stderr is used. Returns the log
    file path when one was created.
    """
    if getattr(configure_logging, "_configured", False):
        return getattr(configure_logging, "_log_path", None)

    log_path: Optional[Path] = None
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if not _running_in_cloud():
        log_dir = Path(os.getenv(LOG_DIR_ENV_VAR, "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = log_dir / f"gmail_bot_{timestamp}.log"
        handlers.append(logging.FileHandler(log_path, mode="w", encoding="utf-8"))

    logging.basicConfig(
        level=_resolve_level(os.getenv(LOG_LEVEL_ENV_VAR, "INFO")),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=handlers,
        force=True,
    )
    # Request URLs carry the bot token; keep them out of the logs.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)

    if log_path:
        os.environ[LOG_ENV_VAR] = str(log_path)

    configure_logging._configured = True  # type: ignore[attr-defined]
    configure_logging._log_path = log_path  # type: ignore[attr-defined]
    return log_path
