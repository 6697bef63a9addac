import json
import os
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import requests


class KeyValueConfigurationError(RuntimeError):
    """Raised when Supabase credentials are missing."""


def _utc_iso(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class BaseKeyValueStore:
    """
    String-keyed store with optional per-key time-to-live.

    A key whose TTL has elapsed must read exactly like a key that was never
    written: ``get`` returns None and ``list_keys`` omits it.
    """

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def put(self, key: str, value: str, *, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def list_keys(self, prefix: str) -> List[str]:
        raise NotImplementedError


class SupabaseKeyValueStore(BaseKeyValueStore):
    """
    Minimal Supabase REST client backed by a single ``key/value/expires_at`` table.

    Keys are stored with the namespace prefix so several bots can share one table.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        service_role_key: Optional[str] = None,
        *,
        table: str = "kv_entries",
        namespace: str = "gmail_bot",
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.url = url or os.getenv("SUPABASE_URL")
        self.key = service_role_key or os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not self.url or not self.key:
            raise KeyValueConfigurationError("Supabase URL and service role key must be configured.")
        self.table = table
        self.namespace = namespace
        self.session = session or requests.Session()
        self.clock = clock
        self._headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
        }

    def _rest(self, path: str) -> str:
        return f"{self.url}/rest/v1/{path.lstrip('/')}"

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _live_filter(self) -> str:
        return f"(expires_at.is.null,expires_at.gt.{_utc_iso(self.clock())})"

    def get(self, key: str) -> Optional[str]:
        response = self.session.get(
            self._rest(self.table),
            params={
                "key": f"eq.{self._full_key(key)}",
                "or": self._live_filter(),
                "select": "value",
                "limit": 1,
            },
            headers=self._headers,
            timeout=30,
        )
        response.raise_for_status()
        rows = response.json() or []
        if not rows:
            return None
        return rows[0].get("value")

    def put(self, key: str, value: str, *, ttl: Optional[int] = None) -> None:
        payload = {
            "key": self._full_key(key),
            "value": value,
            "expires_at": _utc_iso(self.clock() + ttl) if ttl else None,
        }
        response = self.session.post(
            self._rest(self.table),
            headers={**self._headers, "Prefer": "return=minimal,resolution=merge-duplicates"},
            data=json.dumps(payload),
            timeout=30,
        )
        # Some configurations return 201, some 204
        if response.status_code not in (200, 201, 204):
            response.raise_for_status()

    def delete(self, key: str) -> None:
        response = self.session.delete(
            self._rest(self.table),
            params={"key": f"eq.{self._full_key(key)}"},
            headers=self._headers,
            timeout=30,
        )
        response.raise_for_status()

    def list_keys(self, prefix: str) -> List[str]:
        full_prefix = self._full_key(prefix)
        response = self.session.get(
            self._rest(self.table),
            params={
                "key": f"like.{full_prefix}*",
                "or": self._live_filter(),
                "select": "key",
                "order": "key.asc",
            },
            headers=self._headers,
            timeout=30,
        )
        response.raise_for_status()
        strip = len(self.namespace) + 1
        keys: List[str] = []
        for row in response.json() or []:
            full_key = row.get("key") or ""
            # LIKE treats "_" as a wildcard, so re-check the literal prefix.
            if full_key.startswith(full_prefix):
                keys.append(full_key[strip:])
        return keys


class InMemoryKeyValueStore(BaseKeyValueStore):
    """
    In-memory fallback when Supabase is not yet configured.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self.clock() >= expires_at

    def _purge_expired(self) -> None:
        # Caller holds the lock.
        stale = [key for key, (_, expires_at) in self._entries.items() if self._expired(expires_at)]
        for key in stale:
            del self._entries[key]

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._expired(expires_at):
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: str, *, ttl: Optional[int] = None) -> None:
        expires_at = self.clock() + ttl if ttl else None
        with self._lock:
            self._purge_expired()
            self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def list_keys(self, prefix: str) -> List[str]:
        with self._lock:
            self._purge_expired()
            return sorted(key for key in self._entries if key.startswith(prefix))


def get_kv_store(
    url: Optional[str] = None,
    service_role_key: Optional[str] = None,
    *,
    table: str = "kv_entries",
    namespace: str = "gmail_bot",
) -> BaseKeyValueStore:
    try:
        return SupabaseKeyValueStore(url=url, service_role_key=service_role_key, table=table, namespace=namespace)
    except KeyValueConfigurationError:
        return InMemoryKeyValueStore()
