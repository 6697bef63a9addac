"""
Typed access to every short-lived indirection record the bot keeps.

Each record kind lives under its own key prefix so that one user's index map,
page cursors, preview tokens and nonces never collide, and so the push
sweeps can enumerate ``push:`` keys directly. Every write replaces the prior
value outright; a record whose TTL elapsed reads exactly like one that was
never written, so callers must re-derive state on ``None``.
"""
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from kv_store import BaseKeyValueStore

logger = logging.getLogger(__name__)

NOTICE_GUARD_TTL = 24 * 60 * 60
INDEX_MAP_TTL = 60 * 60
PAGE_CURSOR_TTL = 60 * 60
PREVIEW_TOKEN_TTL = 60 * 60
AUTH_NONCE_TTL = 10 * 60
CURRENT_MESSAGE_TTL = 60 * 60
LAST_QUERY_TTL = 60 * 60
ACCOUNT_INDEX_TTL = 60 * 60

PUSH_PREFIX = "push:"


@dataclass
class PageCursor:
    query: str
    token: str


@dataclass
class PreviewGrant:
    user_id: str
    message_id: str
    account: str


@dataclass
class PushSubscription:
    enabled: bool = False
    history_id: Optional[str] = None
    expiration: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"enabled": self.enabled}
        if self.history_id is not None:
            data["historyId"] = self.history_id
        if self.expiration is not None:
            data["expiry"] = self.expiration
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "PushSubscription":
        history_id = data.get("historyId")
        expiration = data.get("expiry")
        return PushSubscription(
            enabled=bool(data.get("enabled", False)),
            history_id=str(history_id) if history_id is not None else None,
            expiration=str(expiration) if expiration is not None else None,
        )


class CorrelationStore:
    def __init__(self, kv: BaseKeyValueStore, *, clock: Callable[[], float] = time.time) -> None:
        self.kv = kv
        self.clock = clock

    # ---------- Internal helpers ----------
    def _get_json(self, key: str, default: Any = None) -> Any:
        raw = self.kv.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed JSON stored under %s", key)
            return default

    def _put_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        self.kv.put(key, json.dumps(value, ensure_ascii=False), ttl=ttl)

    # ---------- Account set ----------
    def get_active_account(self, user_id: str) -> Optional[str]:
        return self.kv.get(f"active:{user_id}") or None

    def set_active_account(self, user_id: str, account: str) -> None:
        self.kv.put(f"active:{user_id}", account)

    def clear_active_account(self, user_id: str) -> None:
        self.kv.delete(f"active:{user_id}")

    def get_accounts(self, user_id: str) -> List[str]:
        raw = self._get_json(f"accounts:{user_id}", [])
        if not isinstance(raw, list):
            return []
        accounts: List[str] = []
        for item in raw:
            if isinstance(item, str) and item and item not in accounts:
                accounts.append(item)
        return accounts

    def put_accounts(self, user_id: str, accounts: Sequence[str]) -> None:
        self._put_json(f"accounts:{user_id}", list(accounts))

    def put_account_index(self, user_id: str, accounts: Sequence[str]) -> None:
        self._put_json(f"accmap:{user_id}", list(accounts), ACCOUNT_INDEX_TTL)

    def get_indexed_account(self, user_id: str, index: int) -> Optional[str]:
        accounts = self._get_json(f"accmap:{user_id}", [])
        if not isinstance(accounts, list) or not 0 <= index < len(accounts):
            return None
        value = accounts[index]
        return value if isinstance(value, str) and value else None

    # ---------- Credentials ----------
    def get_credential_record(self, user_id: str, account: str) -> Optional[str]:
        return self.kv.get(f"token:{user_id}:{account}")

    def put_credential_record(self, user_id: str, account: str, record: str) -> None:
        self.kv.put(f"token:{user_id}:{account}", record)

    def delete_credential_record(self, user_id: str, account: str) -> None:
        self.kv.delete(f"token:{user_id}:{account}")

    def is_expiry_notified(self, user_id: str, account: str) -> bool:
        return self.kv.get(f"notified:{user_id}:{account}") is not None

    def mark_expiry_notified(self, user_id: str, account: str) -> None:
        self.kv.put(f"notified:{user_id}:{account}", "true", ttl=NOTICE_GUARD_TTL)

    def clear_expiry_notified(self, user_id: str, account: str) -> None:
        self.kv.delete(f"notified:{user_id}:{account}")

    # ---------- List index map ----------
    def put_index_map(self, user_id: str, message_ids: Sequence[str]) -> Dict[str, str]:
        mapping = {str(index): message_id for index, message_id in enumerate(message_ids)}
        self._put_json(f"mailmap:{user_id}", mapping, INDEX_MAP_TTL)
        return mapping

    def get_indexed_message(self, user_id: str, index: int) -> Optional[str]:
        mapping = self._get_json(f"mailmap:{user_id}", {})
        if not isinstance(mapping, dict):
            return None
        value = mapping.get(str(index))
        return value if isinstance(value, str) and value else None

    # ---------- Pagination ----------
    def put_page_cursor(self, user_id: str, query: str, token: str) -> str:
        page_key = str(int(self.clock() * 1000))
        self._put_json(f"page:{user_id}:{page_key}", {"query": query, "token": token}, PAGE_CURSOR_TTL)
        return page_key

    def get_page_cursor(self, user_id: str, page_key: str) -> Optional[PageCursor]:
        data = self._get_json(f"page:{user_id}:{page_key}")
        if not isinstance(data, dict):
            return None
        query = data.get("query")
        token = data.get("token")
        if not isinstance(query, str) or not isinstance(token, str) or not token:
            return None
        return PageCursor(query=query, token=token)

    def put_last_query(self, user_id: str, query: str) -> None:
        self.kv.put(f"lastquery:{user_id}", query, ttl=LAST_QUERY_TTL)

    def get_last_query(self, user_id: str) -> Optional[str]:
        return self.kv.get(f"lastquery:{user_id}") or None

    # ---------- Preview tokens ----------
    def issue_preview_token(self, user_id: str, message_id: str, account: str) -> str:
        token = uuid.uuid4().hex
        self._put_json(
            f"view:{token}",
            {"userId": user_id, "mailId": message_id, "email": account},
            PREVIEW_TOKEN_TTL,
        )
        return token

    def get_preview_grant(self, token: str) -> Optional[PreviewGrant]:
        if not token:
            return None
        data = self._get_json(f"view:{token}")
        if not isinstance(data, dict):
            return None
        user_id, message_id, account = data.get("userId"), data.get("mailId"), data.get("email")
        if not (user_id and message_id and account):
            return None
        return PreviewGrant(user_id=str(user_id), message_id=str(message_id), account=str(account))

    # ---------- OAuth nonces ----------
    def issue_nonce(self, user_id: str) -> str:
        nonce = uuid.uuid4().hex
        self.kv.put(f"nonce:{user_id}", nonce, ttl=AUTH_NONCE_TTL)
        return nonce

    def nonce_matches(self, user_id: str, presented: Optional[str]) -> bool:
        stored = self.kv.get(f"nonce:{user_id}")
        return bool(stored) and bool(presented) and stored == presented

    def discard_nonce(self, user_id: str) -> None:
        self.kv.delete(f"nonce:{user_id}")

    # ---------- Current message pointer ----------
    def set_current_message(self, user_id: str, message_id: str) -> None:
        self.kv.put(f"current:{user_id}", message_id, ttl=CURRENT_MESSAGE_TTL)

    def get_current_message(self, user_id: str) -> Optional[str]:
        return self.kv.get(f"current:{user_id}") or None

    # ---------- Push subscriptions ----------
    def get_push_subscription(self, user_id: str, account: str) -> Optional[PushSubscription]:
        data = self._get_json(f"{PUSH_PREFIX}{user_id}:{account}")
        if not isinstance(data, dict):
            return None
        return PushSubscription.from_dict(data)

    def put_push_subscription(self, user_id: str, account: str, subscription: PushSubscription) -> None:
        self._put_json(f"{PUSH_PREFIX}{user_id}:{account}", subscription.to_dict())

    def delete_push_subscription(self, user_id: str, account: str) -> None:
        self.kv.delete(f"{PUSH_PREFIX}{user_id}:{account}")

    def iter_push_subscriptions(self) -> Iterator[Tuple[str, str, PushSubscription]]:
        """Yield ``(user_id, account, subscription)`` for every stored push record."""
        for key in self.kv.list_keys(PUSH_PREFIX):
            user_id, _, account = key[len(PUSH_PREFIX):].partition(":")
            if not user_id or not account:
                continue
            subscription = self.get_push_subscription(user_id, account)
            if subscription is None:
                continue
            yield user_id, account, subscription

    # ---------- Misc ----------
    def get_origin(self) -> Optional[str]:
        return self.kv.get("origin") or None

    def set_origin(self, origin: str) -> None:
        self.kv.put("origin", origin)
