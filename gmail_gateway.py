"""
Thin request layer over the Gmail v1 API for one authorized mailbox.

These utilities rely on google-auth and google-api-python-client. Install them with:
    pip install google-api-python-client google-auth google-auth-oauthlib
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from google.oauth2.credentials import Credentials

from content_pipeline import decode_base64url

# Read plus label changes (read/unread, star, trash); nothing here sends mail.
GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.modify",
]

LIST_METADATA_HEADERS = ["From", "Subject", "Date"]


def build_gmail_service(access_token: str):
    """Create a Gmail API client that authenticates with a bare access token."""
    credentials = Credentials(token=access_token)
    return build("gmail", "v1", credentials=credentials, cache_discovery=False)


def http_error_detail(exc: HttpError) -> str:
    raw = getattr(exc, "content", b"")
    try:
        detail = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
    except UnicodeDecodeError:
        detail = str(exc)
    return detail or str(exc)


class MailboxGateway:
    """
    Gmail operations for the mailbox the service was authorized for.

    ``user_id`` stays ``"me"``: the access token already pins the mailbox.
    """

    def __init__(self, service, user_id: str = "me") -> None:
        self.service = service
        self.user_id = user_id

    @classmethod
    def for_token(cls, access_token: str) -> "MailboxGateway":
        return cls(build_gmail_service(access_token))

    def _messages(self):
        return self.service.users().messages()

    def list_messages(
        self,
        query: str,
        *,
        max_results: int,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"userId": self.user_id, "q": query, "maxResults": max_results}
        if page_token:
            kwargs["pageToken"] = page_token
        return self._messages().list(**kwargs).execute()

    def get_message(
        self,
        message_id: str,
        *,
        format_: str = "full",
        metadata_headers: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"userId": self.user_id, "id": message_id, "format": format_}
        if format_ == "metadata":
            kwargs["metadataHeaders"] = list(metadata_headers or LIST_METADATA_HEADERS)
        return self._messages().get(**kwargs).execute()

    def modify(
        self,
        message_id: str,
        *,
        add_label_ids: Sequence[str] = (),
        remove_label_ids: Sequence[str] = (),
    ) -> Dict[str, Any]:
        body = {"addLabelIds": list(add_label_ids), "removeLabelIds": list(remove_label_ids)}
        return self._messages().modify(userId=self.user_id, id=message_id, body=body).execute()

    def batch_modify(
        self,
        message_ids: Sequence[str],
        *,
        add_label_ids: Sequence[str] = (),
        remove_label_ids: Sequence[str] = (),
    ) -> None:
        ids = [mid for mid in message_ids if mid]
        if not ids:
            return
        body = {"ids": ids, "addLabelIds": list(add_label_ids), "removeLabelIds": list(remove_label_ids)}
        self._messages().batchModify(userId=self.user_id, body=body).execute()

    def trash(self, message_id: str) -> Dict[str, Any]:
        return self._messages().trash(userId=self.user_id, id=message_id).execute()

    def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        response = (
            self._messages()
            .attachments()
            .get(userId=self.user_id, messageId=message_id, id=attachment_id)
            .execute()
        )
        return decode_base64url(response.get("data") or "")

    def get_profile(self) -> Dict[str, Any]:
        return self.service.users().getProfile(userId=self.user_id).execute()

    def result_size_estimate(self, query: str) -> int:
        response = self.list_messages(query, max_results=1)
        return int(response.get("resultSizeEstimate") or 0)

    def start_watch(self, topic_name: str, label_ids: Sequence[str] = ("INBOX",)) -> Dict[str, Any]:
        """
        Register Gmail push notifications for the mailbox.
        Returns the watch response containing historyId and expiration.
        """
        body = {"topicName": topic_name, "labelIds": list(label_ids), "labelFilterAction": "include"}
        return self.service.users().watch(userId=self.user_id, body=body).execute()

    def fetch_history(
        self,
        start_history_id: str,
        *,
        history_types: Sequence[str] = ("messageAdded",),
        label_id: Optional[str] = "INBOX",
    ) -> Dict[str, Any]:
        """
        Fetch all history records since start_history_id, following pagination.
        The returned dict carries the merged ``history`` list and the latest ``historyId``.
        """
        if not start_history_id:
            raise ValueError("start_history_id is required to fetch history.")
        records: List[Dict[str, Any]] = []
        latest_history_id: Optional[str] = None
        page_token: Optional[str] = None
        while True:
            kwargs: Dict[str, Any] = {
                "userId": self.user_id,
                "startHistoryId": start_history_id,
                "historyTypes": list(history_types),
            }
            if label_id:
                kwargs["labelId"] = label_id
            if page_token:
                kwargs["pageToken"] = page_token
            response = self.service.users().history().list(**kwargs).execute()
            records.extend(response.get("history", []) or [])
            latest_history_id = response.get("historyId", latest_history_id)
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return {"history": records, "historyId": latest_history_id}


def parse_gmail_push_data(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Decode Gmail push message payload from Pub/Sub.
    Returns the JSON decoded Gmail notification or None if the message is not for Gmail.
    """
    data = message.get("data")
    if not data:
        return None
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        decoded = json.loads(decode_base64url(data).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    if isinstance(decoded, dict) and "emailAddress" in decoded:
        return decoded
    return None
