from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Body, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse
from pydantic import BaseModel

from bot import AuthorizationError, GmailBot, PreviewUnavailable, build_bot
from pages import expired_page, home_page, mail_page, result_page
from settings import Settings, load_settings
from telegram_client import TelegramError

logger = logging.getLogger(__name__)


def _require_secret(settings: Settings, presented: Optional[str]) -> None:
    expected = settings.bot_secret
    if not expected:
        raise HTTPException(status_code=503, detail="BOT_SECRET is not configured.")
    if not presented or not secrets.compare_digest(presented, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _json_object(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Request body is not JSON.") from exc
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")
    return body


class PubSubMessage(BaseModel):
    data: Optional[str] = None
    messageId: Optional[str] = None
    publishTime: Optional[str] = None


class PubSubEnvelope(BaseModel):
    message: PubSubMessage
    subscription: Optional[str] = None


def _request_base(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def create_app(bot: Optional[GmailBot] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (bot.settings if bot else load_settings())
    bot = bot or build_bot(settings)

    app = FastAPI(title="Gmail Telegram Bot")
    app.state.bot = bot

    @app.get("/", response_class=HTMLResponse)
    async def serve_root():
        return HTMLResponse(home_page())

    @app.get("/healthz")
    @app.get("/health")
    async def healthz():
        return {
            "status": "ok",
            "telegram_configured": settings.telegram_configured,
            "oauth_configured": settings.oauth_configured,
            "push_configured": bool(settings.pubsub_topic),
            "storage_mode": bot.store.kv.__class__.__name__,
        }

    @app.post("/webhook")
    async def telegram_webhook(request: Request, background_tasks: BackgroundTasks, secret: Optional[str] = None):
        _require_secret(settings, secret)
        update = await _json_object(request)
        # Telegram retries anything that is not acknowledged quickly; do the work after responding.
        background_tasks.add_task(bot.handle_update, update, origin=_request_base(request))
        return {"status": "ok"}

    @app.post("/pubsub/push")
    async def gmail_push(
        background_tasks: BackgroundTasks,
        envelope: PubSubEnvelope = Body(...),
        secret: Optional[str] = None,
    ):
        _require_secret(settings, secret)
        background_tasks.add_task(bot.handle_push, envelope.model_dump())
        return {"status": "ok"}

    @app.get("/oauth/callback", response_class=HTMLResponse)
    def oauth_callback(
        request: Request,
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
    ):
        try:
            account = bot.complete_authorization(
                state=state,
                code=code,
                error=error,
                base_url=_request_base(request),
            )
        except AuthorizationError as exc:
            return HTMLResponse(result_page(False, exc.reason), status_code=400)
        return HTMLResponse(result_page(True, account))

    @app.get("/mail/{token}", response_class=HTMLResponse)
    def mail_preview(token: str):
        try:
            message = bot.resolve_preview(token)
        except PreviewUnavailable as exc:
            logger.info("Preview %s unavailable: %s", token[:8], exc.reason)
            return HTMLResponse(expired_page(), status_code=exc.status_code)
        return HTMLResponse(mail_page(message, bot.tz))

    @app.get("/setup", response_class=PlainTextResponse)
    def setup(request: Request, secret: Optional[str] = None):
        _require_secret(settings, secret)
        base = settings.public_base_url or _request_base(request)
        bot.store.set_origin(base)
        webhook_url = f"{base}/webhook?secret={settings.bot_secret}"
        try:
            bot.register_webhook(webhook_url)
        except TelegramError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        logger.info("Registered Telegram webhook at %s/webhook", base)
        return PlainTextResponse(f"Setup complete. Webhook: {base}/webhook")

    # Cron-friendly: Gmail watches lapse after seven days unless renewed.
    @app.post("/cron/renew")
    def cron_renew(secret: Optional[str] = None):
        _require_secret(settings, secret)
        return bot.renew_watches()

    return app


app = create_app()
