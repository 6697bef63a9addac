"""
Small HTML pages served to browsers: status, OAuth result, mail preview.

Every header value is escaped. The message body itself is untrusted HTML, so
it is only ever shown inside a sandboxed iframe via ``srcdoc``.
"""
from __future__ import annotations

import html
import logging
from datetime import tzinfo
from typing import Any, Dict

from content_pipeline import decode_body, find_body
from message_views import NO_SUBJECT, format_date, header_value

logger = logging.getLogger(__name__)

_STYLE = (
    "body{font-family:system-ui,-apple-system,sans-serif;margin:0;background:#f5f5f5;color:#222}"
    ".box{max-width:480px;margin:15vh auto;padding:32px;text-align:center;background:#fff;border-radius:12px}"
    ".header{background:#4f46e5;color:#fff;padding:16px 20px}"
    ".header h1{font-size:18px;margin:0 0 8px}"
    ".meta{font-size:13px;opacity:.9}"
    ".content{margin:16px;background:#fff;border-radius:12px;overflow:hidden}"
    "iframe{width:100%;min-height:75vh;border:0}"
    "pre{white-space:pre-wrap;word-wrap:break-word;padding:20px;margin:0;font-family:inherit}"
    ".footer{text-align:center;padding:16px;color:#888;font-size:12px}"
)


def _document(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        '<html><head><meta charset="UTF-8">'
        '<meta name="viewport" content="width=device-width,initial-scale=1">'
        f"<title>{html.escape(title)}</title><style>{_STYLE}</style></head>"
        f"<body>{body}</body></html>"
    )


def home_page() -> str:
    return _document("Gmail Bot", '<div class="box"><h1>📧 Gmail Bot</h1><p>Service is running.</p></div>')


def result_page(success: bool, message: str) -> str:
    title = "Authorization complete" if success else "Authorization failed"
    icon = "✅" if success else "❌"
    body = (
        f'<div class="box"><h1>{icon} {title}</h1>'
        f"<p>{html.escape(message)}</p>"
        '<p><a href="tg://resolve">Back to Telegram</a></p></div>'
    )
    return _document(title, body)


def expired_page() -> str:
    body = (
        '<div class="box"><h1>⏰ Link expired</h1>'
        "<p>This preview link is no longer valid. Open the message again in Telegram to get a new one.</p>"
        '<p><a href="tg://resolve">Back to Telegram</a></p></div>'
    )
    return _document("Link expired", body)


def _message_body(payload: Any) -> str:
    html_data = find_body(payload, "text/html")
    text_data = None if html_data else find_body(payload, "text/plain")
    try:
        if html_data:
            srcdoc = html.escape(decode_body(html_data), quote=True)
            return f'<iframe sandbox="allow-popups allow-popups-to-escape-sandbox" srcdoc="{srcdoc}"></iframe>'
        if text_data:
            return f"<pre>{html.escape(decode_body(text_data))}</pre>"
    except ValueError:
        logger.warning("Could not decode message body for preview", exc_info=True)
        return "<pre>(could not decode the message body)</pre>"
    return "<pre>(no content)</pre>"


def mail_page(message: Dict[str, Any], tz: tzinfo) -> str:
    subject = header_value(message, "Subject") or NO_SUBJECT
    date = format_date(header_value(message, "Date"), tz, full=True)
    meta = "".join(
        f"<div>{label}: {html.escape(value)}</div>"
        for label, value in (
            ("From", header_value(message, "From")),
            ("To", header_value(message, "To")),
            ("Date", date),
        )
    )
    body = (
        f'<div class="header"><h1>{html.escape(subject)}</h1><div class="meta">{meta}</div></div>'
        f'<div class="content">{_message_body(message.get("payload") or {})}</div>'
        '<div class="footer">This link is valid for one hour. <a href="tg://resolve">Back to Telegram</a></div>'
    )
    return _document(subject, body)
