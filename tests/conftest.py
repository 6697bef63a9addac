import base64
from typing import Any, Dict, List, Optional

import pytest

from bot import GmailBot
from correlation_store import CorrelationStore
from credentials import RefreshFailed, TokenGrant
from kv_store import InMemoryKeyValueStore
from settings import Settings

USER = "42"
ACCOUNT = "me@example.com"


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def html_payload(markup: str) -> Dict[str, Any]:
    return {"mimeType": "text/html", "body": {"data": b64url(markup)}}


def gmail_message(
    message_id: str,
    *,
    subject: str = "Hello",
    sender: str = "Alice Example <alice@example.com>",
    labels: Optional[List[str]] = None,
    body_html: str = "<p>Hi there</p>",
    attachments: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    parts = [{"mimeType": "text/html", "body": {"data": b64url(body_html)}}]
    parts.extend(attachments or [])
    return {
        "id": message_id,
        "labelIds": labels if labels is not None else ["INBOX", "UNREAD"],
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "Subject", "value": subject},
                {"name": "Date", "value": "Tue, 01 Oct 2024 09:30:00 +0000"},
                {"name": "To", "value": ACCOUNT},
            ],
            "parts": parts,
        },
    }


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTelegram:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.edited: List[Dict[str, Any]] = []
        self.answered: List[str] = []
        self.documents: List[Dict[str, Any]] = []
        self.webhooks: List[str] = []
        self.commands_cleared = 0

    def send_message(self, chat_id, text, *, parse_mode=None, reply_markup=None, disable_web_page_preview=True):
        self.sent.append({"chat_id": chat_id, "text": text, "parse_mode": parse_mode, "reply_markup": reply_markup})
        return {"message_id": len(self.sent)}

    def edit_message_text(self, chat_id, message_id, text, *, parse_mode=None, reply_markup=None, disable_web_page_preview=True):
        self.edited.append(
            {"chat_id": chat_id, "message_id": message_id, "text": text, "parse_mode": parse_mode, "reply_markup": reply_markup}
        )

    def answer_callback_query(self, callback_query_id, *, text=None, show_alert=False):
        self.answered.append(callback_query_id)

    def send_document(self, chat_id, filename, content, *, caption=None):
        self.documents.append({"chat_id": chat_id, "filename": filename, "content": content})

    def set_webhook(self, url):
        self.webhooks.append(url)

    def delete_my_commands(self):
        self.commands_cleared += 1


class FakeGateway:
    def __init__(self, messages: Optional[List[Dict[str, Any]]] = None) -> None:
        self.messages = {message["id"]: message for message in messages or []}
        self.next_page_token: Optional[str] = None
        self.list_calls: List[Dict[str, Any]] = []
        self.modified: List[Dict[str, Any]] = []
        self.batch_modified: List[Dict[str, Any]] = []
        self.trashed: List[str] = []
        self.watches: List[str] = []
        self.history_calls: List[str] = []
        self.history: Dict[str, Any] = {"history": [], "historyId": None}
        self.attachments: Dict[str, bytes] = {}
        self.estimates: Dict[str, int] = {}
        self.profile = {"emailAddress": ACCOUNT, "messagesTotal": 120}

    def list_messages(self, query, *, max_results, page_token=None):
        self.list_calls.append({"query": query, "max_results": max_results, "page_token": page_token})
        ids = list(self.messages)[:max_results]
        response: Dict[str, Any] = {"messages": [{"id": mid} for mid in ids], "resultSizeEstimate": len(ids)}
        if self.next_page_token:
            response["nextPageToken"] = self.next_page_token
        return response

    def get_message(self, message_id, *, format_="full", metadata_headers=None):
        return self.messages[message_id]

    def modify(self, message_id, *, add_label_ids=(), remove_label_ids=()):
        self.modified.append({"id": message_id, "add": list(add_label_ids), "remove": list(remove_label_ids)})
        return {}

    def batch_modify(self, message_ids, *, add_label_ids=(), remove_label_ids=()):
        self.batch_modified.append({"ids": list(message_ids), "remove": list(remove_label_ids)})

    def trash(self, message_id):
        self.trashed.append(message_id)
        return {}

    def get_attachment(self, message_id, attachment_id):
        return self.attachments[attachment_id]

    def get_profile(self):
        return self.profile

    def result_size_estimate(self, query):
        return self.estimates.get(query, 0)

    def start_watch(self, topic_name, label_ids=("INBOX",)):
        self.watches.append(topic_name)
        return {"historyId": "5000", "expiration": "1900000000000"}

    def fetch_history(self, start_history_id, *, history_types=("messageAdded",), label_id="INBOX"):
        self.history_calls.append(start_history_id)
        return self.history


def failing_refresher(refresh_token: str) -> TokenGrant:
    raise RefreshFailed("invalid_grant")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        telegram_token="123:abc",
        bot_secret="s3cret",
        google_client_id="client-id",
        google_client_secret="client-secret",
        pubsub_topic="projects/demo/topics/gmail",
        public_base_url="https://bot.example.com",
    )


@pytest.fixture
def kv(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def store(kv, clock):
    return CorrelationStore(kv, clock=clock)


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def gateway():
    return FakeGateway(
        [
            gmail_message("m1", subject="First"),
            gmail_message("m2", subject="Second", labels=["INBOX", "STARRED"]),
        ]
    )


@pytest.fixture
def bot(settings, store, telegram, gateway, clock):
    return GmailBot(
        settings,
        store,
        telegram,
        refresher=failing_refresher,
        gateway_factory=lambda access_token: gateway,
        clock=clock,
    )


@pytest.fixture
def linked_bot(bot, clock):
    bot.credentials.link_account(USER, ACCOUNT, TokenGrant("access-1", expiry=clock() + 3600, refresh_token="refresh-1"))
    return bot
