"""
Text commands and inline-button callback data understood by the bot.

Callback data has the shape ``<kind>[:<argument>]`` and Telegram caps it at
64 bytes, so every piece of data the bot emits goes through ``callback_data``.
Anything ``parse_callback`` does not recognise comes back as ``None`` and the
tap is ignored.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

CALLBACK_DATA_LIMIT = 64
QUERY_ARGUMENT_LENGTH = 50
SENDER_ARGUMENT_LENGTH = 25


class Command(str, Enum):
    START = "start"
    INBOX = "inbox"
    TODAY = "today"
    STARRED = "starred"
    SEARCH_HELP = "search_help"
    STATS = "stats"
    MARK_ALL_READ = "mark_all_read"
    ACCOUNTS = "accounts"
    SETTINGS = "settings"


# Reply-keyboard labels; the keyboard sends the label back as plain text.
TEXT_COMMANDS: Dict[str, Command] = {
    "/start": Command.START,
    "🏠 Menu": Command.START,
    "📬 Inbox": Command.INBOX,
    "📅 Today": Command.TODAY,
    "⭐ Starred": Command.STARRED,
    "🔍 Search": Command.SEARCH_HELP,
    "📊 Stats": Command.STATS,
    "✅ Mark all read": Command.MARK_ALL_READ,
    "👤 Accounts": Command.ACCOUNTS,
    "⚙️ Settings": Command.SETTINGS,
}

SEARCH_PREFIXES = ("/search ", "search ")


class CallbackKind(str, Enum):
    STATS_REFRESH = "stats:refresh"
    ACCOUNTS_REFRESH = "acc:refresh"
    ADD_ACCOUNT = "add"
    DELETE_MENU = "delmenu"
    SEARCH_HELP = "help"
    BACK = "back"
    READ_ALL = "readall"
    SWITCH_ACCOUNT = "sw"
    DELETE_ACCOUNT = "del"
    LIST = "list"
    REFRESH = "ref"
    PAGE = "pg"
    OPEN_MESSAGE = "m"
    MESSAGE_ACTION = "do"
    SEARCH_SENDER = "sf"
    ATTACHMENT = "att"
    PUSH = "push"


class MessageAction(str, Enum):
    READ = "read"
    UNREAD = "unread"
    STAR = "star"
    UNSTAR = "unstar"
    DELETE = "delete"
    FULL = "full"


# Label edits for the actions that map onto a single messages.modify call.
LABEL_CHANGES: Dict[MessageAction, Dict[str, list]] = {
    MessageAction.READ: {"remove_label_ids": ["UNREAD"]},
    MessageAction.UNREAD: {"add_label_ids": ["UNREAD"]},
    MessageAction.STAR: {"add_label_ids": ["STARRED"]},
    MessageAction.UNSTAR: {"remove_label_ids": ["STARRED"]},
}

_EXACT_KINDS = {
    CallbackKind.STATS_REFRESH,
    CallbackKind.ACCOUNTS_REFRESH,
    CallbackKind.ADD_ACCOUNT,
    CallbackKind.DELETE_MENU,
    CallbackKind.SEARCH_HELP,
    CallbackKind.BACK,
    CallbackKind.READ_ALL,
}
_INDEX_KINDS = {
    CallbackKind.SWITCH_ACCOUNT,
    CallbackKind.DELETE_ACCOUNT,
    CallbackKind.OPEN_MESSAGE,
    CallbackKind.ATTACHMENT,
}
_PARAM_KINDS = {kind.value: kind for kind in CallbackKind if kind not in _EXACT_KINDS}


@dataclass(frozen=True)
class Callback:
    kind: CallbackKind
    argument: str = ""

    @property
    def index(self) -> int:
        return int(self.argument)

    @property
    def action(self) -> MessageAction:
        return MessageAction(self.argument)

    @property
    def enable(self) -> bool:
        return self.argument == "on"


def parse_text_command(text: str) -> Optional[Command]:
    return TEXT_COMMANDS.get(text.strip())


def parse_search(text: str) -> Optional[str]:
    """Return the query of a ``/search <q>`` or ``search <q>`` message."""
    stripped = text.strip()
    for prefix in SEARCH_PREFIXES:
        if stripped.lower().startswith(prefix):
            return stripped[len(prefix):].strip()
    return None


def parse_callback(data: Optional[str]) -> Optional[Callback]:
    if not data or len(data.encode("utf-8")) > CALLBACK_DATA_LIMIT:
        return None
    for kind in _EXACT_KINDS:
        if data == kind.value:
            return Callback(kind)

    prefix, sep, argument = data.partition(":")
    kind = _PARAM_KINDS.get(prefix)
    if kind is None or not sep or not argument:
        return None
    if kind in _INDEX_KINDS:
        if not (argument.isascii() and argument.isdigit()):
            return None
    elif kind is CallbackKind.MESSAGE_ACTION:
        if argument not in {action.value for action in MessageAction}:
            return None
    elif kind is CallbackKind.PUSH:
        if argument not in {"on", "off"}:
            return None
    return Callback(kind, argument)


def _fit_bytes(value: str, limit: int) -> str:
    encoded = value.encode("utf-8")
    if len(encoded) <= limit:
        return value
    return encoded[:limit].decode("utf-8", errors="ignore")


def callback_data(kind: CallbackKind, argument: str = "") -> str:
    """Serialize a callback, shortening the argument to fit Telegram's byte limit."""
    if kind in _EXACT_KINDS:
        return kind.value
    if kind in (CallbackKind.LIST, CallbackKind.REFRESH):
        argument = argument[:QUERY_ARGUMENT_LENGTH]
    elif kind is CallbackKind.SEARCH_SENDER:
        argument = argument[:SENDER_ARGUMENT_LENGTH]
    prefix = f"{kind.value}:"
    return prefix + _fit_bytes(argument, CALLBACK_DATA_LIMIT - len(prefix))
