import base64
import json
from unittest.mock import MagicMock

import pytest

from gmail_gateway import MailboxGateway, parse_gmail_push_data


def encoded(payload):
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def test_parse_gmail_push_data():
    notification = {"emailAddress": "me@example.com", "historyId": 12345}
    assert parse_gmail_push_data({"data": encoded(notification)}) == notification
    assert parse_gmail_push_data({"data": encoded({"historyId": 1})}) is None
    assert parse_gmail_push_data({"data": "!!!"}) is None
    assert parse_gmail_push_data({}) is None


def test_fetch_history_follows_pages():
    service = MagicMock()
    history_list = service.users.return_value.history.return_value.list
    history_list.return_value.execute.side_effect = [
        {"history": [{"id": "1"}], "historyId": "10", "nextPageToken": "p2"},
        {"history": [{"id": "2"}], "historyId": "11"},
    ]

    result = MailboxGateway(service).fetch_history("5")

    assert result == {"history": [{"id": "1"}, {"id": "2"}], "historyId": "11"}
    first, second = history_list.call_args_list
    assert first.kwargs == {
        "userId": "me",
        "startHistoryId": "5",
        "historyTypes": ["messageAdded"],
        "labelId": "INBOX",
    }
    assert second.kwargs["pageToken"] == "p2"


def test_fetch_history_requires_start_id():
    with pytest.raises(ValueError):
        MailboxGateway(MagicMock()).fetch_history("")


def test_batch_modify_skips_empty_list():
    service = MagicMock()
    MailboxGateway(service).batch_modify([], remove_label_ids=["UNREAD"])
    service.users.return_value.messages.return_value.batchModify.assert_not_called()


def test_get_attachment_decodes_data():
    service = MagicMock()
    attachments = service.users.return_value.messages.return_value.attachments.return_value
    attachments.get.return_value.execute.return_value = {"data": "aGVsbG8"}

    assert MailboxGateway(service).get_attachment("m1", "a1") == b"hello"
    attachments.get.assert_called_once_with(userId="me", messageId="m1", id="a1")


def test_start_watch_body():
    service = MagicMock()
    service.users.return_value.watch.return_value.execute.return_value = {"historyId": "7"}

    assert MailboxGateway(service).start_watch("projects/p/topics/t") == {"historyId": "7"}
    service.users.return_value.watch.assert_called_once_with(
        userId="me",
        body={"topicName": "projects/p/topics/t", "labelIds": ["INBOX"], "labelFilterAction": "include"},
    )
