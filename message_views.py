"""
Chat-facing text and keyboards.

Everything here is pure: it turns Gmail metadata and bot state into
``(text, reply_markup)`` pairs sent with ``parse_mode="HTML"``. Values that
come from mail headers or the user are escaped before they are interpolated.
"""
from __future__ import annotations

import html
import time
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from email.utils import parseaddr, parsedate_to_datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from commands import TEXT_COMMANDS, CallbackKind, Command, MessageAction, callback_data
from content_pipeline import NOTICES, Attachment, RenderMode

DIVIDER = "━" * 20
NO_SUBJECT = "(no subject)"
SUBJECT_LENGTH = 30
SENDER_LENGTH = 20
LIST_BUTTONS_PER_ROW = 3
ATTACHMENT_BUTTONS = 3

View = Tuple[str, Dict[str, Any]]

_LABELS = {command: label for label, command in TEXT_COMMANDS.items() if not label.startswith("/")}


def _e(value: Any) -> str:
    return html.escape(str(value or ""), quote=False)


def _button(text: str, kind: CallbackKind, argument: str = "") -> Dict[str, str]:
    return {"text": text, "callback_data": callback_data(kind, argument)}


def _inline(rows: List[List[Dict[str, str]]]) -> Dict[str, Any]:
    return {"inline_keyboard": rows}


# ---------- Time ----------
def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def format_date(raw: Optional[str], tz: tzinfo, *, full: bool = False) -> str:
    """Render an RFC 2822 ``Date`` header in ``tz``; unparsable values pass through."""
    if not raw:
        return ""
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return raw
    if parsed is None:
        return raw
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    local = parsed.astimezone(tz)
    if full:
        return f"{local.year}/{local.month}/{local.day} {local:%H:%M:%S}"
    return f"{local.month}/{local.day} {local:%H:%M}"


def today_timestamp(tz: tzinfo, now: Optional[float] = None) -> int:
    """Epoch seconds of the most recent local midnight."""
    current = datetime.fromtimestamp(time.time() if now is None else now, tz)
    midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp())


# ---------- Headers ----------
@dataclass
class Sender:
    name: str
    address: str


def parse_sender(raw: Optional[str]) -> Sender:
    name, address = parseaddr(raw or "")
    name = name.strip().strip('"')
    if not address or "@" not in address:
        fallback = (raw or "").strip()
        return Sender(name=name or fallback, address=fallback)
    return Sender(name=name or address, address=address)


def header_value(message: Dict[str, Any], name: str) -> str:
    headers = (message.get("payload") or {}).get("headers") or []
    wanted = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == wanted:
            return str(header.get("value") or "")
    return ""


@dataclass
class MessageSummary:
    message_id: str
    sender: str
    subject: str
    date: str
    unread: bool
    starred: bool

    @classmethod
    def from_metadata(cls, message: Dict[str, Any], tz: tzinfo) -> "MessageSummary":
        labels = message.get("labelIds") or []
        return cls(
            message_id=str(message.get("id") or ""),
            sender=parse_sender(header_value(message, "From")).name[:SENDER_LENGTH],
            subject=(header_value(message, "Subject") or NO_SUBJECT)[:SUBJECT_LENGTH],
            date=format_date(header_value(message, "Date"), tz),
            unread="UNREAD" in labels,
            starred="STARRED" in labels,
        )


# ---------- Keyboards ----------
def main_keyboard() -> Dict[str, Any]:
    rows = [
        [Command.INBOX, Command.TODAY, Command.STARRED],
        [Command.SEARCH_HELP, Command.STATS, Command.MARK_ALL_READ],
        [Command.ACCOUNTS, Command.SETTINGS],
    ]
    return {
        "keyboard": [[{"text": _LABELS[command]} for command in row] for row in rows],
        "resize_keyboard": True,
        "is_persistent": True,
    }


# ---------- Views ----------
def welcome_view(accounts: Sequence[str], active: Optional[str]) -> View:
    text = f"📧 <b>Gmail Bot</b>\n{DIVIDER}\n\n"
    if accounts:
        text += f"👤 Active account: {_e(active or 'none selected')}\n"
        text += f"📊 Linked accounts: {len(accounts)}\n\nUse the buttons below 👇"
    else:
        text += "👋 Welcome!\n\nTap <b>👤 Accounts</b> to link a Gmail account."
    return text, main_keyboard()


def no_account_view() -> View:
    return "⚠️ Link an account first.\n\nTap <b>👤 Accounts</b> to add Gmail.", main_keyboard()


def empty_list_view(query: str) -> View:
    text = f"📭 {_e(query)}\n\nNo matching messages."
    return text, _inline([[_button("🔄 Refresh", CallbackKind.REFRESH, query)]])


def list_view(query: str, summaries: Sequence[MessageSummary], next_page_key: Optional[str]) -> View:
    lines = [f"📬 {_e(query[:SUBJECT_LENGTH])}", DIVIDER, ""]
    for position, summary in enumerate(summaries, start=1):
        icon = "🔵" if summary.unread else "⚪️"
        star = "⭐" if summary.starred else ""
        lines.append(f"{icon}{star} {position}. {_e(summary.subject)}")
        lines.append(f"    📤 {_e(summary.sender)} · {_e(summary.date)}")
        lines.append("")

    rows: List[List[Dict[str, str]]] = []
    for start in range(0, len(summaries), LIST_BUTTONS_PER_ROW):
        row = []
        for index in range(start, min(start + LIST_BUTTONS_PER_ROW, len(summaries))):
            icon = "🔵" if summaries[index].unread else "📧"
            row.append(_button(f"{icon} {index + 1}", CallbackKind.OPEN_MESSAGE, str(index)))
        rows.append(row)

    nav = [_button("🔄 Refresh", CallbackKind.REFRESH, query)]
    if next_page_key:
        nav.append(_button("➡️ Next page", CallbackKind.PAGE, next_page_key))
    rows.append(nav)
    rows.append([_button("✅ Mark all read", CallbackKind.READ_ALL)])
    return "\n".join(lines).rstrip() + "\n", _inline(rows)


def detail_view(
    message: Dict[str, Any],
    *,
    body: str,
    attachments: Sequence[Attachment],
    mode: RenderMode,
    preview_url: Optional[str],
    tz: tzinfo,
) -> View:
    labels = message.get("labelIds") or []
    unread = "UNREAD" in labels
    starred = "STARRED" in labels
    sender = parse_sender(header_value(message, "From"))
    subject = header_value(message, "Subject") or NO_SUBJECT

    text = f"{'🔵 Unread' if unread else '⚪️ Read'}{' ⭐' if starred else ''}\n"
    text += f"{DIVIDER}\n"
    text += f"📋 <b>{_e(subject)}</b>\n\n"
    text += f"👤 {_e(sender.name)}\n"
    text += f"📧 {_e(sender.address)}\n"
    text += f"🕐 {_e(format_date(header_value(message, 'Date'), tz))}\n"
    if attachments:
        text += f"📎 Attachments: {len(attachments)}\n"
    text += f"{DIVIDER}\n\n"
    text += body

    rows: List[List[Dict[str, str]]] = [
        [
            _button("✅ Read", CallbackKind.MESSAGE_ACTION, MessageAction.READ.value)
            if unread
            else _button("📩 Unread", CallbackKind.MESSAGE_ACTION, MessageAction.UNREAD.value),
            _button("⭐ Unstar", CallbackKind.MESSAGE_ACTION, MessageAction.UNSTAR.value)
            if starred
            else _button("⭐ Star", CallbackKind.MESSAGE_ACTION, MessageAction.STAR.value),
            _button("🗑️", CallbackKind.MESSAGE_ACTION, MessageAction.DELETE.value),
        ]
    ]
    if mode is RenderMode.PREVIEW and body.endswith(NOTICES[RenderMode.PREVIEW]):
        rows.append([_button("📖 Show full message", CallbackKind.MESSAGE_ACTION, MessageAction.FULL.value)])
    if preview_url:
        rows.append([{"text": "🌐 Open in browser", "url": preview_url}])
    if sender.address:
        rows.append([_button(f"🔍 Mail from {sender.name[:10]}", CallbackKind.SEARCH_SENDER, sender.address)])
    if attachments:
        rows.append(
            [
                _button(f"📎 {attachment.name[:10]}", CallbackKind.ATTACHMENT, str(index))
                for index, attachment in enumerate(attachments[:ATTACHMENT_BUTTONS])
            ]
        )
    rows.append([_button("⬅️ Back to list", CallbackKind.BACK)])
    return text, _inline(rows)


def fetch_failed_view() -> View:
    return "❌ Could not load the message.", _inline([[_button("⬅️ Back", CallbackKind.BACK)]])


def trashed_view() -> View:
    return "🗑️ Moved to trash.", _inline([[_button("⬅️ Back to list", CallbackKind.BACK)]])


def stats_view(
    account: str,
    *,
    unread: int,
    today: int,
    starred: int,
    total: int,
    today_query: str,
) -> View:
    text = f"📊 <b>Mailbox stats</b>\n{DIVIDER}\n\n"
    text += f"📧 {_e(account)}\n\n"
    text += f"📬 Unread: <b>{unread}</b>\n"
    text += f"📅 Today: <b>{today}</b>\n"
    text += f"⭐ Starred: <b>{starred}</b>\n"
    text += f"📁 Total: <b>{total}</b>\n"
    rows = [
        [
            _button("📬 Show unread", CallbackKind.LIST, "is:unread"),
            _button("📅 Show today", CallbackKind.LIST, today_query),
        ],
        [_button("🔄 Refresh", CallbackKind.STATS_REFRESH)],
    ]
    return text, _inline(rows)


def accounts_view(accounts: Sequence[str], active: Optional[str]) -> View:
    text = f"👤 <b>Accounts</b>\n{DIVIDER}\n\n"
    if not accounts:
        text += "📭 No linked accounts yet.\n\nUse the button below to add one."
    else:
        text += f"<b>{len(accounts)}</b> linked:\n\n"
        for position, account in enumerate(accounts, start=1):
            marker = "✅" if account == active else "⚪️"
            suffix = " (active)" if account == active else ""
            text += f"{marker} {position}. {_e(account)}{suffix}\n"

    rows: List[List[Dict[str, str]]] = []
    for index, account in enumerate(accounts):
        if index % 2 == 0:
            rows.append([])
        marker = "✅" if account == active else "📧"
        rows[-1].append(_button(f"{marker} {account[:15]}", CallbackKind.SWITCH_ACCOUNT, str(index)))
    rows.append(
        [
            _button("➕ Add account", CallbackKind.ADD_ACCOUNT),
            _button("🗑️ Remove account", CallbackKind.DELETE_MENU),
        ]
    )
    rows.append([_button("🔄 Refresh", CallbackKind.ACCOUNTS_REFRESH)])
    return text, _inline(rows)


def delete_menu_view(accounts: Sequence[str]) -> View:
    rows = [[_button(f"🗑️ {account}", CallbackKind.DELETE_ACCOUNT, str(index))] for index, account in enumerate(accounts)]
    rows.append([_button("⬅️ Back", CallbackKind.ACCOUNTS_REFRESH)])
    return "🗑️ Choose the account to remove:", _inline(rows)


def login_view(authorization_url: str) -> View:
    rows = [
        [{"text": "🔐 Authorize Gmail", "url": authorization_url}],
        [_button("⬅️ Back", CallbackKind.ACCOUNTS_REFRESH)],
    ]
    return "🔐 <b>Add a Gmail account</b>\n\nTap the button below to authorize.", _inline(rows)


def settings_view(active: Optional[str], push_enabled: bool, push_available: bool) -> View:
    text = f"⚙️ <b>Settings</b>\n{DIVIDER}\n\n"
    text += f"👤 Account: {_e(active or 'not linked')}\n"
    text += f"🔔 Push: {'on' if push_enabled else 'off'}\n"
    rows = [[_button("👤 Accounts", CallbackKind.ACCOUNTS_REFRESH)]]
    if push_available and active:
        if push_enabled:
            rows.append([_button("🔕 Turn push off", CallbackKind.PUSH, "off")])
        else:
            rows.append([_button("🔔 Turn push on", CallbackKind.PUSH, "on")])
    rows.append([_button("🔍 Search help", CallbackKind.SEARCH_HELP)])
    return text, _inline(rows)


def search_help_view() -> View:
    text = (
        "🔍 <b>Search mail</b>\n\n"
        "Send: search &lt;query&gt;\n\n"
        "<b>Examples:</b>\n"
        "• search meeting\n"
        "• search from:someone@example.com\n"
        "• search subject:report\n"
        "• search has:attachment"
    )
    rows = [
        [
            _button("📬 Unread", CallbackKind.LIST, "is:unread"),
            _button("⭐ Starred", CallbackKind.LIST, "is:starred"),
            _button("📎 Attachments", CallbackKind.LIST, "has:attachment"),
        ],
        [
            _button("📅 This week", CallbackKind.LIST, "newer_than:7d"),
            _button("📆 This month", CallbackKind.LIST, "newer_than:30d"),
        ],
    ]
    return text, _inline(rows)


def mark_all_read_view(count: int) -> View:
    if not count:
        return "✅ No unread messages.", main_keyboard()
    return f"✅ Marked <b>{count}</b> messages as read.", main_keyboard()


def linked_view(account: str) -> View:
    return f"✅ Account linked!\n\n📧 {_e(account)}\n\nUse the buttons below to get started.", main_keyboard()


def expiry_notice_view(account: str) -> View:
    text = (
        "⚠️ <b>Authorization expired</b>\n\n"
        f"📧 {_e(account)}\n\n"
        "Authorize again to keep using this account.\n\n"
        "Tap <b>👤 Accounts</b> → <b>➕ Add account</b> to sign in."
    )
    return text, _inline([[_button("🔐 Authorize again", CallbackKind.ADD_ACCOUNT)]])


def new_mail_view(account: str, sender: str, subject: str, preview_url: Optional[str]) -> View:
    text = (
        f"🔔 <b>New mail</b>\n{'━' * 16}\n\n"
        f"📧 {_e(account)}\n"
        f"👤 {_e(sender)}\n"
        f"📋 {_e(subject or NO_SUBJECT)}"
    )
    rows: List[List[Dict[str, str]]] = []
    if preview_url:
        rows.append([{"text": "🌐 Open in browser", "url": preview_url}])
    rows.append([_button("📖 Open in chat", CallbackKind.MESSAGE_ACTION, MessageAction.FULL.value)])
    rows.append(
        [
            _button("✅ Read", CallbackKind.MESSAGE_ACTION, MessageAction.READ.value),
            _button("🗑️ Delete", CallbackKind.MESSAGE_ACTION, MessageAction.DELETE.value),
        ]
    )
    return text, _inline(rows)


def failure_view() -> View:
    return "❌ Something went wrong. Please try again.", main_keyboard()


def login_unavailable_view() -> View:
    text = "⚠️ Account linking is not configured on this bot yet. Ask the operator to finish the setup."
    return text, _inline([[_button("⬅️ Back", CallbackKind.ACCOUNTS_REFRESH)]])
