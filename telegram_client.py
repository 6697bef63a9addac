"""
Thin Telegram Bot API client.

Every call raises ``TelegramError`` when the request fails or Telegram
answers ``ok: false``; callers decide whether that is fatal.
"""
from typing import Any, Dict, Optional

import requests

TELEGRAM_API_BASE = "https://api.telegram.org/bot{token}/{method}"
DEFAULT_TIMEOUT = 10
UPLOAD_TIMEOUT = 60


class TelegramError(RuntimeError):
    """Raised when the Telegram Bot API call fails."""


class TelegramClient:
    def __init__(
        self,
        token: Optional[str],
        *,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    def _build_url(self, method: str) -> str:
        if not self.token:
            raise TelegramError("Telegram token is required.")
        return TELEGRAM_API_BASE.format(token=self.token, method=method)

    def _call(
        self,
        method: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        files: Optional[Dict[str, Any]] = None,
        timeout: Optional[int] = None,
    ) -> Any:
        url = self._build_url(method)
        try:
            if files:
                response = self.session.post(url, data=payload or {}, files=files, timeout=timeout or self.timeout)
            else:
                response = self.session.post(url, json=payload or {}, timeout=timeout or self.timeout)
        except requests.RequestException as exc:
            # requests puts the URL, and with it the bot token, into the message.
            detail = str(exc).replace(self.token, "<token>") if self.token else str(exc)
            raise TelegramError(f"Failed to call Telegram {method}: {detail}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise TelegramError(f"Telegram {method} returned a non-JSON response ({response.status_code}).") from exc
        if not data.get("ok"):
            description = data.get("description", "Unknown error")
            raise TelegramError(f"Telegram API returned an error for {method}: {description}")
        return data.get("result")

    def send_message(
        self,
        chat_id: Any,
        text: str,
        *,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict] = None,
        disable_web_page_preview: bool = True,
    ) -> Any:
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Message text must be a non-empty string.")
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": disable_web_page_preview,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        return self._call("sendMessage", payload)

    def edit_message_text(
        self,
        chat_id: Any,
        message_id: int,
        text: str,
        *,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict] = None,
        disable_web_page_preview: bool = True,
    ) -> Any:
        payload: Dict[str, Any] = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "disable_web_page_preview": disable_web_page_preview,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        try:
            return self._call("editMessageText", payload)
        except TelegramError as exc:
            # Re-rendering an unchanged view (refresh with no new mail) is not a failure.
            if "message is not modified" in str(exc):
                return None
            raise

    def answer_callback_query(self, callback_query_id: str, *, text: Optional[str] = None, show_alert: bool = False) -> None:
        if not callback_query_id:
            raise ValueError("callback_query_id is required.")
        payload: Dict[str, Any] = {"callback_query_id": callback_query_id, "show_alert": show_alert}
        if text:
            payload["text"] = text
        self._call("answerCallbackQuery", payload)

    def send_document(self, chat_id: Any, filename: str, content: bytes, *, caption: Optional[str] = None) -> Any:
        payload: Dict[str, Any] = {"chat_id": str(chat_id)}
        if caption:
            payload["caption"] = caption
        return self._call(
            "sendDocument",
            payload,
            files={"document": (filename, content)},
            timeout=UPLOAD_TIMEOUT,
        )

    def set_webhook(self, url: str) -> Any:
        return self._call("setWebhook", {"url": url})

    def delete_my_commands(self) -> Any:
        return self._call("deleteMyCommands", {})

